"""
Billing Profile Schemas
"""
import re
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List

VAT_RE = re.compile(r"^(IT)?[0-9]{11}$")
TAX_CODE_RE = re.compile(r"^[A-Z0-9]{16}$")
PEC_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class BillingProfileData(BaseModel):
    """Validated tax identity, from webhooks, the directory or an operator"""
    is_business: bool = False
    company_name: Optional[str] = None
    vat_number: Optional[str] = None
    tax_code: Optional[str] = None
    sdi_code: Optional[str] = None
    pec: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country_code: Optional[str] = None

    @field_validator(
        "company_name", "vat_number", "tax_code", "sdi_code", "pec",
        "address_line1", "address_line2", "city", "province", "postal_code", "country_code",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)

    @field_validator("vat_number")
    @classmethod
    def check_vat(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = re.sub(r"\s", "", v).upper()
        if not VAT_RE.match(v):
            raise ValueError("Invalid VAT number: 11 digits, optionally prefixed by IT")
        return v

    @field_validator("tax_code")
    @classmethod
    def check_tax_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = re.sub(r"\s", "", v).upper()
        if not TAX_CODE_RE.match(v):
            # Companies may use their 11 digit VAT number as fiscal code
            if not re.match(r"^[0-9]{11}$", v):
                raise ValueError("Invalid fiscal code: 16 alphanumeric characters")
        return v

    @field_validator("sdi_code")
    @classmethod
    def check_sdi_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 7:
            raise ValueError("Invalid routing code: 7 characters")
        return v

    @field_validator("pec")
    @classmethod
    def check_pec(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not PEC_RE.match(v):
            raise ValueError("Invalid PEC address")
        return v

    @field_validator("country_code")
    @classmethod
    def upper_country(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v

    @property
    def is_qualified(self) -> bool:
        return bool(self.is_business and (self.vat_number or self.tax_code))


class MarkBusinessRequest(BaseModel):
    external_customer_id: str
    is_business: bool
    company_name: Optional[str] = None
    vat_number: Optional[str] = None
    tax_code: Optional[str] = None
    pec: Optional[str] = None
    sdi_code: Optional[str] = None


class SyncCustomersRequest(BaseModel):
    limit: int = Field(50, ge=1, le=1000)
    since_id: Optional[str] = None


class IssueInvoiceRequest(BaseModel):
    external_order_id: str


class IssueCreditNoteRequest(BaseModel):
    external_order_id: str
    reason: str = Field(..., min_length=1)


class OrderBatchAction(BaseModel):
    action: str  # retry_invoices, reset_errors
    order_ids: List[str]


class ManualRetryRequest(BaseModel):
    job_id: Optional[str] = None
    external_order_id: Optional[str] = None
