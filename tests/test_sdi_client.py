from datetime import date
from decimal import Decimal

from sdibridge.integrations import (
    SdiClient, InvoiceDocument, CreditNoteDocument, SupplierData, CustomerData, PostalAddress, DocumentLine,
)
from conftest import run


def document(cls=InvoiceDocument, **extra):
    address = PostalAddress(address_line1="Via Roma 1", city="Milano", postal_code="20100", country_code="IT")
    return cls(
        number="INV-2026-1001",
        date=date(2026, 1, 15),
        supplier=SupplierData(vat_number="01234567890", tax_code="01234567890", company_name="Shop Srl", address=address),
        customer=CustomerData(address=address, company_name="Acme Srl", vat_number="12345678901", sdi_code="ABC1234"),
        lines=[DocumentLine("Order 1001", 1, Decimal("100.00"), 22, Decimal("100.00"))],
        total_amount=Decimal("122.00"),
        total_vat=Decimal("22.00"),
        **extra,
    )


def test_mock_mode_without_token():
    client = SdiClient(token="")
    assert client.is_mock

    result = run(client.issue_invoice(document()))

    assert result.external_id.startswith("MOCK-")
    assert result.issued_at.tzinfo is None


def test_mock_credit_note():
    result = run(SdiClient(token="").issue_credit_note(
        document(CreditNoteDocument, invoice_number="SDI-1", reason="cancelled"),
    ))
    assert result.external_id.startswith("MOCK-")


def test_payload_carries_document_fields():
    client = SdiClient(token="secret")
    payload = client._document_payload(document())
    body = client._body_payload(document())

    assert payload["customer"]["sdi_code"] == "ABC1234"
    assert body["total_amount"] == 122.0
    assert body["items"][0]["vat_rate"] == 22
