"""
Customer Models - Shopify customers and their cached billing identity
"""
from sqlalchemy import Column, String, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sdibridge.core import Base
from .base import UUIDMixin, TimestampMixin


class Customer(Base, UUIDMixin, TimestampMixin):
    """Customer known from the commerce platform"""
    __tablename__ = "customer"

    external_customer_id = Column(String(100), nullable=False, unique=True, index=True)
    email = Column(String(200))
    first_name = Column(String(100))
    last_name = Column(String(100))
    country_code = Column(String(2))  # home country, ISO 3166-1 alpha-2

    # Relationships
    billing_profile = relationship(
        "BillingProfile", back_populates="customer", uselist=False, cascade="all, delete-orphan"
    )
    orders = relationship("OrderSnapshot", back_populates="customer")

    @property
    def display_name(self) -> str:
        return " ".join(filter(None, [self.first_name, self.last_name])) or (self.email or "")

    def __repr__(self):
        return f"<Customer {self.external_customer_id}>"


class BillingProfile(Base, UUIDMixin, TimestampMixin):
    """
    Cached tax identity of a customer.
    The Shopify customer directory is the source of truth; this row is refreshed from it.
    """
    __tablename__ = "billing_profile"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customer.id"), nullable=False, unique=True)

    is_business = Column(Boolean, default=False, nullable=False)
    company_name = Column(String(200))
    vat_number = Column(String(20))  # Partita IVA
    tax_code = Column(String(20))  # Codice Fiscale
    sdi_code = Column(String(7))  # Codice Destinatario
    pec = Column(String(200))

    # Address
    address_line1 = Column(String(200))
    address_line2 = Column(String(200))
    city = Column(String(100))
    province = Column(String(100))
    postal_code = Column(String(20))
    country_code = Column(String(2))

    # Relationships
    customer = relationship("Customer", back_populates="billing_profile")

    @property
    def is_qualified(self) -> bool:
        """Business profile carrying at least one fiscal identifier"""
        return bool(self.is_business and (self.vat_number or self.tax_code))

    def __repr__(self):
        return f"<BillingProfile {self.customer_id} business={self.is_business}>"
