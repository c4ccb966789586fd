"""
SDI Client - electronic invoices through the OpenAPI SDI provider
"""
from datetime import datetime, timezone
from typing import Dict, Any
import time
import httpx
import logging
from dateutil import parser as date_parser

from sdibridge.core.config import settings
from sdibridge.core.exceptions import IssuerError, IssuerTimeout
from .base import InvoiceIssuer, InvoiceDocument, CreditNoteDocument, IssueResult, PostalAddress

logger = logging.getLogger(__name__)


def _address_payload(address: PostalAddress) -> Dict[str, Any]:
    return {
        "address_line1": address.address_line1,
        "address_line2": address.address_line2,
        "city": address.city,
        "province": address.province,
        "postal_code": address.postal_code,
        "country_code": address.country_code,
    }


def _parse_issued_at(value) -> datetime:
    if not value:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    parsed = date_parser.parse(str(value))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class SdiClient(InvoiceIssuer):
    """
    OpenAPI SDI REST client.
    Without a token the client runs in mock mode and never leaves the process.
    """

    def __init__(self, base_url: str = None, token: str = None, timeout: float = None):
        self.base_url = (base_url or settings.SDI_BASE_URL).rstrip("/")
        self.token = token if token is not None else settings.SDI_TOKEN
        self.timeout = timeout or settings.SDI_TIMEOUT_SECONDS

        if not self.token:
            logger.warning("SDI_TOKEN not configured, SDI client running in mock mode")

    @property
    def is_mock(self) -> bool:
        return not self.token

    # ========== Payloads ==========

    def _document_payload(self, document: InvoiceDocument) -> Dict[str, Any]:
        return {
            "supplier": {
                "vat_number": document.supplier.vat_number,
                "tax_code": document.supplier.tax_code,
                "company_name": document.supplier.company_name,
                "address": _address_payload(document.supplier.address),
            },
            "customer": {
                "vat_number": document.customer.vat_number,
                "tax_code": document.customer.tax_code,
                "company_name": document.customer.company_name,
                "first_name": document.customer.first_name,
                "last_name": document.customer.last_name,
                "address": _address_payload(document.customer.address),
                "pec": document.customer.pec,
                "sdi_code": document.customer.sdi_code,
            },
        }

    def _body_payload(self, document: InvoiceDocument) -> Dict[str, Any]:
        return {
            "date": document.date.isoformat(),
            "currency": document.currency,
            "items": [
                {
                    "description": line.description,
                    "quantity": line.quantity,
                    "unit_price": float(line.unit_price),
                    "vat_rate": line.vat_rate,
                    "total_amount": float(line.total_amount),
                }
                for line in document.lines
            ],
            "total_amount": float(document.total_amount),
            "total_vat": float(document.total_vat),
            "payment_method": document.payment_method,
            "payment_due_date": document.payment_due_date.isoformat() if document.payment_due_date else None,
        }

    # ========== Transport ==========

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.is_mock:
            logger.info(f"[MOCK] SDI {endpoint}")
            return {
                "id": f"MOCK-{int(time.time() * 1000)}",
                "date": datetime.now(timezone.utc).isoformat(),
                "status": "issued",
            }

        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.token}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise IssuerTimeout(f"SDI request timed out: {endpoint}") from e
        except httpx.HTTPError as e:
            raise IssuerError(f"SDI request failed: {e}") from e

        if response.status_code >= 400:
            body = response.text[:500]
            logger.error(f"SDI error {response.status_code} on {endpoint}: {body}")
            raise IssuerError(f"SDI error: {response.status_code} - {body}")

        data = response.json()
        if not data.get("id"):
            raise IssuerError(f"SDI response without document id: {str(data)[:200]}")
        return data

    # ========== Documents ==========

    async def issue_invoice(self, document: InvoiceDocument) -> IssueResult:
        payload = self._document_payload(document)
        payload["invoice"] = {"number": document.number, **self._body_payload(document)}

        result = await self._post("/supplier-invoice", payload)
        logger.info(f"SDI invoice {document.number} issued: {result['id']}")
        return IssueResult(external_id=str(result["id"]), issued_at=_parse_issued_at(result.get("date")), raw=result)

    async def issue_credit_note(self, document: CreditNoteDocument) -> IssueResult:
        payload = self._document_payload(document)
        payload["credit_note"] = {
            "invoice_number": document.invoice_number,
            "reason": document.reason,
            **self._body_payload(document),
        }

        result = await self._post("/credit-note", payload)
        logger.info(f"SDI credit note for {document.invoice_number} issued: {result['id']}")
        return IssueResult(external_id=str(result["id"]), issued_at=_parse_issued_at(result.get("date")), raw=result)


def create_sdi_client() -> SdiClient:
    return SdiClient()
