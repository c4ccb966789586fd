"""
Order Models
"""
from sqlalchemy import Column, String, Numeric, Boolean, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from sdibridge.core import Base
from .base import UUIDMixin, TimestampMixin


class OrderSnapshot(Base, UUIDMixin, TimestampMixin):
    """Order as received from Shopify, plus its invoice lifecycle"""
    __tablename__ = "order_snapshot"

    # Immutable part, keyed by the Shopify order id
    external_order_id = Column(String(100), nullable=False, unique=True, index=True)
    order_number = Column(String(50))
    currency = Column(String(3))
    total_price = Column(Numeric(12, 2), default=0)
    external_created_at = Column(DateTime)
    billing_country = Column(String(2))

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customer.id"), nullable=False)

    # Invoice lifecycle
    has_vat_profile = Column(Boolean, default=False, nullable=False)
    invoice_status = Column(String(20), default="PENDING", nullable=False, index=True)
    last_error = Column(Text)
    invoice_id = Column(String(100))
    invoice_date = Column(DateTime)

    # Relationships
    customer = relationship("Customer", back_populates="orders")
    credit_notes = relationship("CreditNote", back_populates="order", order_by="CreditNote.created_at")

    def __repr__(self):
        return f"<OrderSnapshot {self.external_order_id} {self.invoice_status}>"
