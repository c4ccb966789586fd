"""
Base Clients - documents exchanged with the clearinghouse and the client interfaces
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from dataclasses import dataclass, field
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)


@dataclass
class PostalAddress:
    address_line1: str
    city: str
    postal_code: str
    country_code: str
    province: str = ""
    address_line2: Optional[str] = None


@dataclass
class SupplierData:
    vat_number: str
    tax_code: str
    company_name: str
    address: PostalAddress


@dataclass
class CustomerData:
    address: PostalAddress
    company_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    vat_number: Optional[str] = None
    tax_code: Optional[str] = None
    pec: Optional[str] = None
    sdi_code: Optional[str] = None


@dataclass
class DocumentLine:
    description: str
    quantity: int
    unit_price: Decimal
    vat_rate: int
    total_amount: Decimal


@dataclass
class InvoiceDocument:
    """
    Provider-agnostic invoice. Serialization to the provider format happens in the client.
    """
    number: str
    date: date
    supplier: SupplierData
    customer: CustomerData
    lines: List[DocumentLine] = field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    total_vat: Decimal = Decimal("0")
    currency: str = "EUR"
    payment_method: Optional[str] = None
    payment_due_date: Optional[date] = None


@dataclass
class CreditNoteDocument(InvoiceDocument):
    invoice_number: str = ""
    reason: str = ""


@dataclass
class IssueResult:
    external_id: str
    issued_at: datetime
    raw: Dict[str, Any] = field(default_factory=dict)


class InvoiceIssuer(ABC):
    """
    Clearinghouse seam. Any exception raised here is a failed issuance;
    callers do not try to tell transient and permanent failures apart.
    """

    @abstractmethod
    async def issue_invoice(self, document: InvoiceDocument) -> IssueResult:
        pass

    @abstractmethod
    async def issue_credit_note(self, document: CreditNoteDocument) -> IssueResult:
        pass


@dataclass
class DirectoryCustomer:
    """Customer as seen by the directory, with its billing metafields"""
    external_customer_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    addresses: List[Dict[str, Any]] = field(default_factory=list)
    metafields: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def primary_address(self) -> Dict[str, Any]:
        return self.addresses[0] if self.addresses else {}


class CustomerDirectory(ABC):
    """Source of truth for business classification of customers"""

    @abstractmethod
    async def get_customers(self, limit: int = 50, since_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """One page of raw customers with id greater than since_id"""
        pass

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_customer_metafields(self, customer_id: str) -> List[Dict[str, Any]]:
        pass

    async def fetch(self, customer_id: str) -> Optional[DirectoryCustomer]:
        """Customer plus metafields in one object"""
        raw = await self.get_customer(customer_id)
        if raw is None:
            return None
        metafields = await self.get_customer_metafields(customer_id)
        return DirectoryCustomer(
            external_customer_id=str(raw.get("id", customer_id)),
            email=raw.get("email"),
            first_name=raw.get("first_name"),
            last_name=raw.get("last_name"),
            addresses=raw.get("addresses") or [],
            metafields=metafields,
        )
