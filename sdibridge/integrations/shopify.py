"""
Shopify Admin API Client - customer directory and billing metafields
API Documentation: https://shopify.dev/docs/api/admin-rest
"""
from typing import Optional, Dict, Any, List
import httpx
import logging

from sdibridge.core.config import settings
from .base import CustomerDirectory

logger = logging.getLogger(__name__)


# Normalized metafield key -> billing field
METAFIELD_ALIASES = {
    "fatturaautomaticamente": "auto_invoice",
    "fatturaautomatica": "auto_invoice",
    "autofattura": "auto_invoice",
    "clienteue": "eu_customer",
    "clienteunione": "eu_customer",
    "clienteeuropa": "eu_customer",
    "codicesdi": "sdi_code",
    "sdi": "sdi_code",
    "codicedestinatario": "sdi_code",
    "codicefiscale": "tax_code",
    "cf": "tax_code",
    "taxcode": "tax_code",
    "partitaiva": "vat_number",
    "piva": "vat_number",
    "vatnumber": "vat_number",
    "ragionesociale": "company_name",
    "companyname": "company_name",
    "azienda": "company_name",
    "pec": "pec",
}

BOOLEAN_FIELDS = {"auto_invoice", "eu_customer"}


def extract_billing_data(metafields: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Billing fields found in customer metafields, any namespace.
    Returns None when no billing metafield is present.
    """
    if not metafields:
        return None

    billing: Dict[str, Any] = {}
    for metafield in metafields:
        key = str(metafield.get("key", "")).lower().replace("_", "").replace("-", "")
        target = METAFIELD_ALIASES.get(key)
        if not target:
            continue

        value = metafield.get("value")
        if target in BOOLEAN_FIELDS:
            billing[target] = value is True or str(value).lower() == "true"
        else:
            billing[target] = str(value).strip() if value not in (None, "") else None

    return billing or None


def is_business_customer(metafields: List[Dict[str, Any]]) -> bool:
    """A customer is a business when it has a VAT number or a company name"""
    billing = extract_billing_data(metafields)
    if not billing:
        return False
    return bool(billing.get("vat_number") or billing.get("company_name"))


class ShopifyDirectoryClient(CustomerDirectory):
    """
    Read-only Shopify Admin REST client for customers
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout or settings.SHOPIFY_TIMEOUT_SECONDS

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                f"{self.base_url}{endpoint}",
                params=params,
                headers={
                    "X-Shopify-Access-Token": self.access_token,
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            return response.json()

    # ========== Customers ==========

    async def get_customers(self, limit: int = 50, since_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": min(limit, 250)}
        if since_id:
            params["since_id"] = since_id
        data = await self._get("/customers.json", params)
        return data.get("customers") or []

    async def get_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self._get(f"/customers/{customer_id}.json")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        return data.get("customer")

    async def get_customer_metafields(self, customer_id: str) -> List[Dict[str, Any]]:
        data = await self._get(f"/customers/{customer_id}/metafields.json")
        return data.get("metafields") or []


def create_directory_client() -> Optional[ShopifyDirectoryClient]:
    """Directory client, or None when Shopify credentials are not configured"""
    if not settings.directory_configured:
        return None
    return ShopifyDirectoryClient(settings.SHOPIFY_SHOP, settings.SHOPIFY_ACCESS_TOKEN)
