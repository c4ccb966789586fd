import os

# Must be set before sdibridge reads its settings
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
os.environ["SDI_TOKEN"] = ""
os.environ["SHOPIFY_SHOP"] = ""
os.environ["SHOPIFY_ACCESS_TOKEN"] = ""
os.environ["RETRY_SCHEDULER_ENABLED"] = "false"

import asyncio
from datetime import datetime
from typing import Optional, Dict, List, Any

import pytest

from sdibridge.core.database import Base, engine, SessionLocal, get_db
from sdibridge.core.exceptions import IssuerError
from sdibridge.integrations import InvoiceIssuer, CustomerDirectory, IssueResult
from sdibridge.models import Customer, BillingProfile
from sdibridge.schemas.webhook import ShopifyOrderWebhook, ShopifyOrderUpdatedWebhook
from sdibridge.services import OrderService


class FakeIssuer(InvoiceIssuer):
    """Records every document; fails with `error` while set"""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.invoices = []
        self.credit_notes = []
        self.on_call = None

    async def issue_invoice(self, document):
        self.invoices.append(document)
        if self.on_call:
            self.on_call(document)
        if self.error:
            raise self.error
        return IssueResult(external_id=f"SDI-INV-{len(self.invoices)}", issued_at=datetime(2026, 1, 15, 10, 0))

    async def issue_credit_note(self, document):
        self.credit_notes.append(document)
        if self.error:
            raise self.error
        return IssueResult(external_id=f"SDI-NC-{len(self.credit_notes)}", issued_at=datetime(2026, 1, 20, 10, 0))


class SlowIssuer(FakeIssuer):
    """Answers only after `delay` seconds"""

    def __init__(self, delay: float = 1.0):
        super().__init__()
        self.delay = delay

    async def issue_invoice(self, document):
        await asyncio.sleep(self.delay)
        return await super().issue_invoice(document)


class FakeDirectory(CustomerDirectory):
    def __init__(self):
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.metafields: Dict[str, List[Dict[str, Any]]] = {}
        self.down = False

    def add(self, customer_id: str, country: str = "IT", metafields=None, company=None, **fields):
        self.customers[customer_id] = {
            "id": int(customer_id),
            "email": fields.get("email", f"{customer_id}@example.com"),
            "first_name": fields.get("first_name", "Mario"),
            "last_name": fields.get("last_name", "Rossi"),
            "addresses": [{"country_code": country, "company": company, "city": "Milano", "zip": "20100"}],
        }
        self.metafields[customer_id] = metafields or []

    async def get_customers(self, limit=50, since_id=None):
        if self.down:
            raise IssuerError("directory down")
        ids = sorted(self.customers, key=int)
        if since_id:
            ids = [i for i in ids if int(i) > int(since_id)]
        return [self.customers[i] for i in ids[:limit]]

    async def get_customer(self, customer_id):
        if self.down:
            raise ConnectionError("directory down")
        return self.customers.get(customer_id)

    async def get_customer_metafields(self, customer_id):
        if self.down:
            raise ConnectionError("directory down")
        return self.metafields.get(customer_id, [])


def business_metafields(vat="12345678901", company="Acme Srl", sdi="ABC1234"):
    return [
        {"namespace": "custom", "key": "partita_iva", "value": vat},
        {"namespace": "custom", "key": "ragione_sociale", "value": company},
        {"namespace": "custom", "key": "codice_sdi", "value": sdi},
    ]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def issuer():
    return FakeIssuer()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def make_customer(db):
    def _make(customer_id="1001", country="IT", business=None, **profile):
        customer = Customer(
            external_customer_id=customer_id,
            email=f"{customer_id}@example.com",
            first_name="Mario",
            last_name="Rossi",
            country_code=country,
        )
        db.add(customer)
        if business is not None:
            values = {
                "company_name": "Acme Srl",
                "vat_number": "12345678901",
                "sdi_code": "ABC1234",
                "address_line1": "Via Roma 1",
                "city": "Milano",
                "province": "MI",
                "postal_code": "20100",
                "country_code": country,
            }
            values.update(profile)
            db.add(BillingProfile(customer=customer, is_business=business, **values))
        db.commit()
        return customer
    return _make


def order_event(order_id="5001", customer_id="1001", country: Optional[str] = "IT", total="122.00", **extra):
    payload = {
        "id": int(order_id),
        "order_number": extra.pop("order_number", 1000 + int(order_id) % 1000),
        "customer": {"id": int(customer_id), "email": f"{customer_id}@example.com"},
        "currency": "EUR",
        "total_price": total,
        "created_at": "2026-01-10T09:30:00+01:00",
        "billing_address": {"country_code": country, "city": "Milano"} if country else None,
    }
    payload.update(extra)
    return ShopifyOrderWebhook(**payload)


def cancel_event(order_id="5001", reason="customer"):
    return ShopifyOrderUpdatedWebhook(id=int(order_id), cancelled_at="2026-01-12T10:00:00Z", cancel_reason=reason)


@pytest.fixture
def create_order(db):
    def _create(order_id="5001", customer_id="1001", country: Optional[str] = "IT", total="122.00"):
        OrderService.handle_order_created(db, order_event(order_id, customer_id, country, total))
        return OrderService.get_order_by_external_id(db, order_id)
    return _create


@pytest.fixture
def client(db, issuer, directory):
    from fastapi.testclient import TestClient
    from main import app
    from sdibridge.api.deps import get_issuer, get_directory

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_issuer] = lambda: issuer
    app.dependency_overrides[get_directory] = lambda: directory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
