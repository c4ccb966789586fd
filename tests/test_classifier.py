from sdibridge.models import BillingProfile
from sdibridge.services.classifier import classify_order, is_foreign
from sdibridge.services.invoice_state import InvoiceStatus


def profile(is_business=True, vat_number="12345678901", tax_code=None):
    return BillingProfile(is_business=is_business, vat_number=vat_number, tax_code=tax_code)


def test_foreign_billing_country_is_never_queued():
    disposition = classify_order("DE", profile(), "IT")
    assert disposition.invoice_status == InvoiceStatus.FOREIGN
    assert not disposition.enqueue


def test_qualified_business_at_home_is_queued():
    disposition = classify_order("IT", profile(), "IT")
    assert disposition.invoice_status == InvoiceStatus.PENDING
    assert disposition.has_vat_profile
    assert disposition.enqueue


def test_fiscal_code_alone_qualifies():
    disposition = classify_order("IT", profile(vat_number=None, tax_code="RSSMRA80A01F205X"), "IT")
    assert disposition.enqueue


def test_private_customer_gets_retail_receipt():
    assert classify_order("IT", None, "IT").invoice_status == InvoiceStatus.CORRISPETTIVO
    assert classify_order("IT", profile(is_business=False), "IT").invoice_status == InvoiceStatus.CORRISPETTIVO


def test_business_without_identifiers_gets_retail_receipt():
    disposition = classify_order("IT", profile(vat_number=None), "IT")
    assert disposition.invoice_status == InvoiceStatus.CORRISPETTIVO
    assert not disposition.enqueue
    assert not disposition.has_vat_profile


def test_unknown_country_waits():
    disposition = classify_order(None, profile(), "IT")
    assert disposition.invoice_status == InvoiceStatus.PENDING
    assert not disposition.enqueue


def test_country_comparison_ignores_case():
    assert classify_order("it", profile(), "IT").enqueue
    assert not is_foreign("it", "IT")
    assert is_foreign("FR", "IT")
    assert not is_foreign(None, "IT")
