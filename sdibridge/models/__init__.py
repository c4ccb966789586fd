from .base import TimestampMixin, UUIDMixin, utcnow
from .customer import Customer, BillingProfile
from .order import OrderSnapshot
from .invoice import InvoiceJob, CreditNote, JobType, JobStatus, CreditNoteStatus

__all__ = [
    # Base
    "TimestampMixin", "UUIDMixin", "utcnow",
    # Customer
    "Customer", "BillingProfile",
    # Order
    "OrderSnapshot",
    # Invoice
    "InvoiceJob", "CreditNote", "JobType", "JobStatus", "CreditNoteStatus",
]
