from sdibridge.core.database import SessionLocal
from sdibridge.models import InvoiceJob, CreditNote, Customer, JobType
from sdibridge.services import OrderService
from sdibridge.services.invoice_state import InvoiceStatus
from conftest import order_event, cancel_event


def jobs_for(db, order_id, job_type=JobType.INVOICE):
    return db.query(InvoiceJob).filter(
        InvoiceJob.order_ref == order_id,
        InvoiceJob.job_type == job_type.value,
    ).all()


def test_business_order_is_queued_once(db, make_customer):
    make_customer("1001", business=True)

    result = OrderService.handle_order_created(db, order_event("5001", "1001"))

    assert result["created"]
    order = OrderService.get_order_by_external_id(db, "5001")
    assert order.invoice_status == "PENDING"
    assert order.has_vat_profile
    assert len(jobs_for(db, "5001")) == 1


def test_redelivered_order_creates_nothing(db, make_customer):
    make_customer("1001", business=True)
    OrderService.handle_order_created(db, order_event("5001", "1001"))

    result = OrderService.handle_order_created(db, order_event("5001", "1001", total="999.00"))

    assert not result["created"]
    order = OrderService.get_order_by_external_id(db, "5001")
    assert str(order.total_price) == "122.00"
    assert len(jobs_for(db, "5001")) == 1


def test_private_order_is_retail_receipt(db, make_customer):
    make_customer("1001")
    OrderService.handle_order_created(db, order_event("5001", "1001"))

    order = OrderService.get_order_by_external_id(db, "5001")
    assert order.invoice_status == "CORRISPETTIVO"
    assert jobs_for(db, "5001") == []


def test_foreign_order_is_never_queued(db, make_customer):
    make_customer("1001", business=True)
    OrderService.handle_order_created(db, order_event("5001", "1001", country="FR"))

    order = OrderService.get_order_by_external_id(db, "5001")
    assert order.invoice_status == "FOREIGN"
    assert jobs_for(db, "5001") == []


def test_unknown_customer_is_created(db):
    OrderService.handle_order_created(db, order_event("5001", "2002"))

    customer = db.query(Customer).filter(Customer.external_customer_id == "2002").one()
    assert customer.country_code == "IT"
    assert customer.orders[0].invoice_status == "CORRISPETTIVO"


def test_billing_country_falls_back_to_customer_country(db, make_customer):
    make_customer("1001", country="ES")
    OrderService.handle_order_created(db, order_event("5001", "1001", country=None))

    order = OrderService.get_order_by_external_id(db, "5001")
    assert order.billing_country == "ES"
    assert order.invoice_status == "FOREIGN"


# ========== Cancellation ==========

def test_cancel_without_invoice(db, make_customer):
    make_customer("1001")
    OrderService.handle_order_created(db, order_event("5001", "1001"))

    result = OrderService.handle_order_updated(db, cancel_event("5001", reason="fraud"))

    assert result["action"] == "cancelled"
    order = OrderService.get_order_by_external_id(db, "5001")
    assert order.invoice_status == "CANCELLED"
    assert "fraud" in order.last_error
    assert db.query(CreditNote).count() == 0


def test_cancel_issued_order_opens_credit_note(db, make_customer):
    make_customer("1001", business=True)
    OrderService.handle_order_created(db, order_event("5001", "1001"))
    order = OrderService.get_order_by_external_id(db, "5001")
    order.invoice_status = InvoiceStatus.ISSUED.value
    order.invoice_id = "SDI-1"
    db.commit()

    result = OrderService.handle_order_updated(db, cancel_event("5001"))

    assert result["action"] == "credit_note_created"
    db.refresh(order)
    assert order.invoice_status == "CANCELLED"
    notes = db.query(CreditNote).all()
    assert len(notes) == 1
    assert notes[0].status == "PENDING"
    assert str(notes[0].total_amount) == "122.00"
    assert len(jobs_for(db, "5001", JobType.CREDIT_NOTE)) == 1


def test_cancel_issued_order_with_existing_note(db, make_customer):
    make_customer("1001", business=True)
    OrderService.handle_order_created(db, order_event("5001", "1001"))
    order = OrderService.get_order_by_external_id(db, "5001")
    order.invoice_status = InvoiceStatus.ISSUED.value
    order.invoice_id = "SDI-1"
    db.add(CreditNote(order=order, reason="partial refund", total_amount=10, status="ISSUED"))
    db.commit()

    result = OrderService.handle_order_updated(db, cancel_event("5001"))

    assert result["action"] == "cancelled"
    assert db.query(CreditNote).count() == 1
    assert jobs_for(db, "5001", JobType.CREDIT_NOTE) == []


def test_concurrent_cancellations_open_one_credit_note(db, make_customer):
    make_customer("1001", business=True)
    OrderService.handle_order_created(db, order_event("5001", "1001"))
    order = OrderService.get_order_by_external_id(db, "5001")
    order.invoice_status = InvoiceStatus.ISSUED.value
    order.invoice_id = "SDI-1"
    db.commit()

    first, second = SessionLocal(), SessionLocal()
    try:
        # both deliveries read the order while it is still ISSUED
        for session in (first, second):
            assert OrderService.get_order_by_external_id(session, "5001").invoice_status == "ISSUED"

        results = [
            OrderService.handle_order_updated(first, cancel_event("5001")),
            OrderService.handle_order_updated(second, cancel_event("5001")),
        ]
    finally:
        first.close()
        second.close()

    assert [r["action"] for r in results] == ["credit_note_created", "already_cancelled"]
    assert db.query(CreditNote).count() == 1
    assert len(jobs_for(db, "5001", JobType.CREDIT_NOTE)) == 1


def test_cancel_twice_is_noop(db, make_customer):
    make_customer("1001")
    OrderService.handle_order_created(db, order_event("5001", "1001"))
    OrderService.handle_order_updated(db, cancel_event("5001"))

    result = OrderService.handle_order_updated(db, cancel_event("5001"))

    assert result["action"] == "already_cancelled"


def test_non_cancel_update_and_unknown_order(db, make_customer):
    make_customer("1001")
    OrderService.handle_order_created(db, order_event("5001", "1001"))

    from sdibridge.schemas.webhook import ShopifyOrderUpdatedWebhook
    result = OrderService.handle_order_updated(db, ShopifyOrderUpdatedWebhook(id=5001, financial_status="paid"))
    assert result["action"] == "updated"
    assert OrderService.get_order_by_external_id(db, "5001").invoice_status == "CORRISPETTIVO"

    assert OrderService.handle_order_updated(db, cancel_event("9999"))["action"] == "order_not_found"
