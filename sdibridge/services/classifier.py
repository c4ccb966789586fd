"""
Order Classifier - decides how an order is billed
"""
from dataclasses import dataclass
from typing import Optional

from sdibridge.models import BillingProfile
from .invoice_state import InvoiceStatus


@dataclass(frozen=True)
class Disposition:
    invoice_status: InvoiceStatus
    has_vat_profile: bool = False
    enqueue: bool = False
    reason: str = ""


def classify_order(
    billing_country: Optional[str],
    profile: Optional[BillingProfile],
    home_country: str,
) -> Disposition:
    """
    FOREIGN        billing country outside the home jurisdiction, never billed
    PENDING+job    home jurisdiction and a qualified business profile
    CORRISPETTIVO  home jurisdiction without a qualified profile (retail receipt)
    PENDING        billing country unknown, waiting for data correction
    """
    country = (billing_country or "").upper() or None

    if country and country != home_country:
        return Disposition(InvoiceStatus.FOREIGN, reason=f"billing country {country}")

    if country is None:
        return Disposition(InvoiceStatus.PENDING, reason="billing country unknown")

    if profile is not None and profile.is_qualified:
        return Disposition(InvoiceStatus.PENDING, has_vat_profile=True, enqueue=True, reason="business customer")

    return Disposition(InvoiceStatus.CORRISPETTIVO, reason="no qualified billing profile")


def is_foreign(country: Optional[str], home_country: str) -> bool:
    return bool(country) and country.upper() != home_country
