from datetime import timedelta

import pytest

from sdibridge.core.database import SessionLocal
from sdibridge.core.exceptions import IssuerError
from sdibridge.models import InvoiceJob, CreditNote, JobStatus, JobType, utcnow
from sdibridge.services import RetryEngine, InvoiceJobQueue, OrderService
from conftest import FakeIssuer, SlowIssuer, run, cancel_event


def only_job(db, order_id="5001", job_type=JobType.INVOICE):
    return db.query(InvoiceJob).filter(
        InvoiceJob.order_ref == order_id,
        InvoiceJob.job_type == job_type.value,
    ).one()


@pytest.fixture
def business_order(make_customer, create_order):
    make_customer("1001", business=True)
    return create_order("5001", "1001")


def test_successful_issuance(db, issuer, business_order):
    summary = run(RetryEngine(db, issuer).run())

    assert summary["processed"] == 1
    assert summary["completed"] == 1
    db.refresh(business_order)
    assert business_order.invoice_status == "ISSUED"
    assert business_order.invoice_id == "SDI-INV-1"
    assert only_job(db).status == "COMPLETED"
    assert only_job(db).attempts == 1

    document = issuer.invoices[0]
    assert document.total_amount == 122
    assert document.total_vat + document.lines[0].total_amount == document.total_amount
    assert document.customer.vat_number == "12345678901"


def test_failure_backs_off_then_fails_after_three_attempts(db, business_order):
    issuer = FakeIssuer(error=IssuerError("SDI rejected the document"))
    engine = RetryEngine(db, issuer)

    summary = run(engine.run())
    assert summary["retried"] == 1
    job = only_job(db)
    assert job.status == "PENDING"
    assert job.attempts == 1
    assert job.scheduled_at > utcnow() + timedelta(minutes=4)

    # not due yet
    assert run(engine.run())["processed"] == 0

    later = utcnow() + timedelta(minutes=6)
    assert run(engine.run(now=later))["retried"] == 1
    summary = run(engine.run(now=later + timedelta(minutes=6)))
    assert summary["failed"] == 1

    job = only_job(db)
    db.refresh(job)
    assert job.status == "FAILED"
    assert job.attempts == 3
    db.refresh(business_order)
    assert business_order.invoice_status == "ERROR"
    assert "rejected" in business_order.last_error
    assert len(issuer.invoices) == 3

    # exhausted jobs are never claimed again
    assert run(engine.run(now=later + timedelta(hours=1)))["processed"] == 0


def test_missing_profile_consumes_budget(db, make_customer, create_order, issuer):
    make_customer("1001", business=True)
    order = create_order("5001", "1001")
    order.customer.billing_profile.vat_number = None
    db.commit()

    summary = run(RetryEngine(db, issuer).run())

    assert summary["retried"] == 1
    assert "billing profile" in only_job(db).last_error
    assert issuer.invoices == []


def test_missing_order_fails_job_without_retry(db, issuer):
    InvoiceJobQueue(db).enqueue("404")
    db.commit()

    summary = run(RetryEngine(db, issuer).run())

    assert summary["failed"] == 1
    assert only_job(db, "404").status == "FAILED"


def test_cancelled_order_is_not_issued(db, issuer, business_order):
    OrderService.handle_order_updated(db, cancel_event("5001"))

    summary = run(RetryEngine(db, issuer).run())

    assert summary["completed"] == 1
    assert issuer.invoices == []
    db.refresh(business_order)
    assert business_order.invoice_status == "CANCELLED"


def test_already_issued_order_counts_as_success(db, issuer, business_order):
    business_order.invoice_status = "ISSUED"
    business_order.invoice_id = "SDI-0"
    db.commit()

    run(RetryEngine(db, issuer).run())

    assert issuer.invoices == []
    assert only_job(db).status == "COMPLETED"


def test_cancellation_during_issuance_opens_credit_note(db, issuer, business_order):
    def cancel_meanwhile(document):
        other = SessionLocal()
        try:
            OrderService.handle_order_updated(other, cancel_event("5001"))
        finally:
            other.close()

    issuer.on_call = cancel_meanwhile
    run(RetryEngine(db, issuer).run())

    db.refresh(business_order)
    assert business_order.invoice_status == "CANCELLED"
    assert business_order.invoice_id == "SDI-INV-1"
    note = db.query(CreditNote).one()
    assert note.status == "PENDING"
    assert only_job(db, job_type=JobType.CREDIT_NOTE).status == "PENDING"


def test_stale_candidates_are_claimed_once(db, issuer, business_order):
    queue = InvoiceJobQueue(db)
    candidates = queue.find_due()
    assert len(candidates) == 1

    other = SessionLocal()
    try:
        assert run(RetryEngine(other, issuer).run())["completed"] == 1
    finally:
        other.close()

    assert queue.try_claim(candidates[0]) is False
    assert len(issuer.invoices) == 1


def test_purge_removes_old_finished_jobs(db, issuer):
    old = utcnow() - timedelta(days=8)
    db.add_all([
        InvoiceJob(order_ref="1", status=JobStatus.COMPLETED.value, processed_at=old, scheduled_at=old),
        InvoiceJob(order_ref="2", status=JobStatus.FAILED.value, processed_at=old, scheduled_at=old, attempts=3),
        InvoiceJob(order_ref="3", status=JobStatus.COMPLETED.value, processed_at=utcnow(), scheduled_at=old),
    ])
    db.commit()

    summary = run(RetryEngine(db, issuer).run())

    assert summary["purged"] == 2
    assert [j.order_ref for j in db.query(InvoiceJob).all()] == ["3"]


def test_manual_retry_restores_budget_and_resets_order(db, business_order):
    failing = FakeIssuer(error=IssuerError("down"))
    engine = RetryEngine(db, failing)
    now = utcnow()
    for step in range(3):
        run(engine.run(now=now + timedelta(minutes=6 * step)))
    db.refresh(business_order)
    assert business_order.invoice_status == "ERROR"

    job = engine.retry_job(str(only_job(db).id))
    assert job.status == "PENDING"
    assert job.attempts == 0
    assert job.last_error is None
    db.refresh(business_order)
    assert business_order.invoice_status == "PENDING"

    working = FakeIssuer()
    run(RetryEngine(db, working).run(now=utcnow() + timedelta(seconds=1)))
    db.refresh(business_order)
    assert business_order.invoice_status == "ISSUED"


def test_slow_issuer_times_out_and_is_retried(db, business_order):
    engine = RetryEngine(db, SlowIssuer())
    engine.invoices.timeout = 0.2

    summary = run(engine.run())

    assert summary["retried"] == 1
    job = only_job(db)
    assert job.status == "PENDING"
    assert job.attempts == 1
    assert job.last_error == "Issuer call exceeded 0.2s"
    db.refresh(business_order)
    assert business_order.invoice_status == "PENDING"


def test_retry_order_jobs(db, issuer, business_order):
    engine = RetryEngine(db, FakeIssuer(error=IssuerError("down")))
    run(engine.run())

    result = engine.retry_order_jobs("5001")

    assert result["reset_count"] == 1
    assert only_job(db).attempts == 0


def test_credit_note_job(db, issuer, business_order):
    run(RetryEngine(db, issuer).run())
    OrderService.handle_order_updated(db, cancel_event("5001", reason="returned"))

    summary = run(RetryEngine(db, issuer).run())

    assert summary["completed"] == 1
    note = db.query(CreditNote).one()
    assert note.status == "ISSUED"
    assert note.external_id == "SDI-NC-1"
    document = issuer.credit_notes[0]
    assert document.invoice_number == "SDI-INV-1"
    assert "returned" in document.reason


def test_credit_note_for_foreign_customer_is_local(db, issuer, business_order):
    run(RetryEngine(db, issuer).run())
    business_order.customer.country_code = "DE"
    db.commit()
    OrderService.handle_order_updated(db, cancel_event("5001"))

    run(RetryEngine(db, issuer).run())

    assert db.query(CreditNote).one().status == "FOREIGN"
    assert issuer.credit_notes == []


def test_engine_never_raises(db, business_order):
    class Exploding(FakeIssuer):
        async def issue_invoice(self, document):
            raise RuntimeError("unexpected")

    summary = run(RetryEngine(db, Exploding()).run())

    assert summary["retried"] == 1
    assert only_job(db).last_error == "unexpected"
