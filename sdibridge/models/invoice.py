"""
Invoice Models - Invoice job queue and credit notes
"""
import enum

from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, Text, Index, JSON, Uuid
from sqlalchemy.orm import relationship
from sdibridge.core import Base
from .base import UUIDMixin, TimestampMixin, utcnow


class JobType(str, enum.Enum):
    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CreditNoteStatus(str, enum.Enum):
    PENDING = "PENDING"
    ISSUED = "ISSUED"
    FOREIGN = "FOREIGN"
    ERROR = "ERROR"


class InvoiceJob(Base, UUIDMixin, TimestampMixin):
    """
    Durable work item for the retry engine.
    Rows are only ever claimed through InvoiceJobQueue.try_claim.
    """
    __tablename__ = "invoice_job"

    job_type = Column(String(20), nullable=False, default=JobType.INVOICE.value)
    order_ref = Column(String(100), nullable=False)  # external order id
    payload = Column(JSON)

    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    scheduled_at = Column(DateTime, nullable=False, default=utcnow)
    last_error = Column(Text)
    processed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_invoice_job_due", "status", "scheduled_at"),
        Index("ix_invoice_job_order_ref", "order_ref"),
    )

    @property
    def is_last_attempt(self) -> bool:
        return self.attempts >= self.max_attempts

    def __repr__(self):
        return f"<InvoiceJob {self.id} {self.job_type}:{self.order_ref} {self.status} {self.attempts}/{self.max_attempts}>"


class CreditNote(Base, UUIDMixin, TimestampMixin):
    """Compensating document reversing an issued invoice"""
    __tablename__ = "credit_note"

    order_id = Column(Uuid(as_uuid=True), ForeignKey("order_snapshot.id"), nullable=False, index=True)
    reason = Column(Text)
    total_amount = Column(Numeric(12, 2), default=0)
    external_id = Column(String(100))
    status = Column(String(20), nullable=False, default=CreditNoteStatus.PENDING.value)
    issued_at = Column(DateTime)
    last_error = Column(Text)

    # Relationships
    order = relationship("OrderSnapshot", back_populates="credit_notes")

    def __repr__(self):
        return f"<CreditNote {self.id} order={self.order_id} {self.status}>"
