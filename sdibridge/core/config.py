from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "SDI Bridge"
    APP_PORT: int = 9210
    DEBUG: bool = False

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "sdibridge"
    POSTGRES_PORT: int = 5432
    SQLALCHEMY_DATABASE_URI: Optional[str] = None  # overrides the Postgres parts

    # Paths
    LOGS_PATH: str = "/tmp/sdibridge_logs"

    # Fiscal
    HOME_COUNTRY: str = "IT"
    DEFAULT_VAT_RATE: int = 22
    PAYMENT_METHOD: str = "MP05"  # bank transfer
    PAYMENT_TERMS_DAYS: int = 30

    # Supplier identity printed on every document
    SUPPLIER_VAT_NUMBER: str = ""
    SUPPLIER_TAX_CODE: str = ""
    SUPPLIER_COMPANY_NAME: str = ""
    SUPPLIER_ADDRESS_LINE1: str = ""
    SUPPLIER_CITY: str = ""
    SUPPLIER_PROVINCE: str = ""
    SUPPLIER_POSTAL_CODE: str = ""

    # SDI provider (empty token = mock mode)
    SDI_BASE_URL: str = "https://api.openapi.it/sdi"
    SDI_TOKEN: str = ""
    SDI_TIMEOUT_SECONDS: float = 30.0

    # Shopify customer directory
    SHOPIFY_SHOP: str = ""
    SHOPIFY_ACCESS_TOKEN: str = ""
    SHOPIFY_API_VERSION: str = "2024-01"
    SHOPIFY_TIMEOUT_SECONDS: float = 15.0

    # Invoice job queue
    INVOICE_JOB_BATCH_SIZE: int = 10
    INVOICE_JOB_MAX_ATTEMPTS: int = 3
    INVOICE_JOB_RETRY_DELAY_MINUTES: int = 5
    INVOICE_JOB_RETENTION_DAYS: int = 7

    # In-process retry trigger (cron endpoint / scheduler.py are the default triggers)
    RETRY_SCHEDULER_ENABLED: bool = False
    RETRY_INTERVAL_MINUTES: int = 5

    @property
    def DATABASE_URL(self) -> str:
        if self.SQLALCHEMY_DATABASE_URI:
            return self.SQLALCHEMY_DATABASE_URI
        return f"postgresql+psycopg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def directory_configured(self) -> bool:
        return bool(self.SHOPIFY_SHOP and self.SHOPIFY_ACCESS_TOKEN)

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
