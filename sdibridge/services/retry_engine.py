"""
Retry Engine - drains the invoice job queue

Runs may overlap (cron endpoint, in-process scheduler, standalone scheduler);
the conditional claim in InvoiceJobQueue is the only mutual exclusion needed.
"""
from datetime import datetime
from typing import Optional, Dict, Any, Union
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from sdibridge.core.config import settings
from sdibridge.core.database import SessionLocal
from sdibridge.core.exceptions import NotFound, PreconditionFailed
from sdibridge.integrations import InvoiceIssuer, CustomerDirectory, create_sdi_client, create_directory_client
from sdibridge.models import InvoiceJob, CreditNote, CreditNoteStatus, JobType
from .classifier import is_foreign
from .customer_service import ProfileResolver, customer_country
from .invoice_service import InvoiceService, MISSING_PROFILE, get_order, latest_credit_note
from .invoice_state import InvoiceStatus, InvoiceEvent, apply_transition, current_status
from .job_queue import InvoiceJobQueue, _as_uuid

logger = logging.getLogger(__name__)

COMPLETED = "completed"
RETRIED = "retried"
FAILED = "failed"


class RetryEngine:
    """
    Claims due jobs and processes them one by one.
    run() never raises: every outcome ends up in the returned summary.
    """

    def __init__(
        self,
        db: Session,
        issuer: InvoiceIssuer,
        directory: Optional[CustomerDirectory] = None,
        queue: Optional[InvoiceJobQueue] = None,
    ):
        self.db = db
        self.queue = queue or InvoiceJobQueue(db)
        self.invoices = InvoiceService(db, issuer, ProfileResolver(db, directory))

    async def run(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        summary = {"processed": 0, "completed": 0, "retried": 0, "failed": 0, "purged": 0}

        try:
            jobs = self.queue.claim_batch(limit, now)
        except Exception as e:
            self.db.rollback()
            logger.exception("Invoice retry run could not claim jobs")
            summary["error"] = str(e)
            return summary

        for job in jobs:
            summary["processed"] += 1
            outcome = await self.process_job(job)
            summary[outcome] += 1

        try:
            summary["purged"] = self.queue.purge_finished(now)
        except Exception as e:
            self.db.rollback()
            logger.exception("Invoice job purge failed")
            summary["error"] = str(e)

        if summary["processed"] or summary["purged"]:
            logger.info(
                f"[OK] Retry run: {summary['processed']} processed, {summary['completed']} completed, "
                f"{summary['retried']} retried, {summary['failed']} failed, {summary['purged']} purged"
            )
        return summary

    async def process_job(self, job: InvoiceJob) -> str:
        job_id, order_ref, attempt = job.id, job.order_ref, job.attempts
        try:
            if job.job_type == JobType.CREDIT_NOTE.value:
                return await self._process_credit_note(job)
            return await self._process_invoice(job)
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Job {job_id} for order {order_ref} failed on attempt {attempt}: {e}")
            return self._handle_failure(job_id, str(e) or e.__class__.__name__)

    # ========== Handlers ==========

    async def _process_invoice(self, job: InvoiceJob) -> str:
        order = get_order(self.db, job.order_ref)
        if order is None:
            self.queue.fail_permanently(job, "Order not found")
            self.db.commit()
            logger.error(f"Job {job.id}: order {job.order_ref} not found")
            return FAILED

        status = current_status(order)
        if status == InvoiceStatus.ISSUED:
            self.queue.complete(job, "Invoice already issued")
            self.db.commit()
            return COMPLETED
        if status != InvoiceStatus.PENDING:
            self.queue.complete(job, f"Skipped, order is {status.value}")
            self.db.commit()
            logger.info(f"Job {job.id}: order {job.order_ref} is {status.value}, nothing to issue")
            return COMPLETED

        customer = order.customer
        if is_foreign(order.billing_country or customer_country(customer), settings.HOME_COUNTRY):
            apply_transition(order, InvoiceEvent.MARK_FOREIGN)
            self.queue.complete(job, "Foreign customer")
            self.db.commit()
            return COMPLETED

        profile = await self.invoices.resolver.resolve(customer)
        if profile is None or not profile.is_qualified:
            raise PreconditionFailed(MISSING_PROFILE)

        order.has_vat_profile = True
        result = await self.invoices.send_invoice(order, profile)

        self.queue.complete(job)
        final_status = self.invoices.record_issued_invoice(order, result)
        logger.info(f"[OK] Job {job.id}: invoice {result.external_id} for order {job.order_ref} ({final_status.value})")
        return COMPLETED

    async def _process_credit_note(self, job: InvoiceJob) -> str:
        note = None
        note_id = (job.payload or {}).get("credit_note_id")
        if note_id:
            note = self.db.get(CreditNote, _as_uuid(note_id))
        if note is None:
            order = get_order(self.db, job.order_ref)
            note = latest_credit_note(self.db, order) if order else None
        if note is None:
            self.queue.fail_permanently(job, "Credit note not found")
            self.db.commit()
            logger.error(f"Job {job.id}: no credit note for order {job.order_ref}")
            return FAILED

        if note.status in (CreditNoteStatus.ISSUED.value, CreditNoteStatus.FOREIGN.value):
            self.queue.complete(job, f"Credit note already {note.status}")
            self.db.commit()
            return COMPLETED

        await self.invoices.issue_credit_note(note)
        self.queue.complete(job)
        self.db.commit()
        return COMPLETED

    def _handle_failure(self, job_id: UUID, error: str) -> str:
        try:
            job = self.db.get(InvoiceJob, job_id)
            final = self.queue.fail_with_backoff(job, error)

            if final:
                if job.job_type == JobType.CREDIT_NOTE.value:
                    self._mark_credit_note_error(job, error)
                else:
                    order = get_order(self.db, job.order_ref)
                    if order is not None and current_status(order) == InvoiceStatus.PENDING:
                        apply_transition(order, InvoiceEvent.ISSUE_FAILED, error=error)
                logger.error(f"Job {job.id} for order {job.order_ref} failed permanently after {job.attempts} attempts: {error}")

            self.db.commit()
            return FAILED if final else RETRIED
        except Exception:
            self.db.rollback()
            logger.exception(f"Could not record failure of job {job_id}")
            return FAILED

    def _mark_credit_note_error(self, job: InvoiceJob, error: str) -> None:
        note_id = (job.payload or {}).get("credit_note_id")
        note = self.db.get(CreditNote, _as_uuid(note_id)) if note_id else None
        if note is not None and note.status == CreditNoteStatus.PENDING.value:
            note.status = CreditNoteStatus.ERROR.value
            note.last_error = error

    # ========== Manual retry ==========

    def _reset_order(self, order_ref: str) -> None:
        order = get_order(self.db, order_ref)
        if order is not None and current_status(order) == InvoiceStatus.ERROR:
            apply_transition(order, InvoiceEvent.OPERATOR_RESET)

    def _reset_credit_note(self, job: InvoiceJob) -> None:
        note_id = (job.payload or {}).get("credit_note_id")
        note = self.db.get(CreditNote, _as_uuid(note_id)) if note_id else None
        if note is not None and note.status == CreditNoteStatus.ERROR.value:
            note.status = CreditNoteStatus.PENDING.value
            note.last_error = None

    def retry_job(self, job_id: Union[str, UUID]) -> InvoiceJob:
        job = self.queue.reset_job(job_id)
        if job.job_type == JobType.CREDIT_NOTE.value:
            self._reset_credit_note(job)
        else:
            self._reset_order(job.order_ref)
        self.db.commit()
        logger.info(f"Job {job.id} for order {job.order_ref} reset by operator")
        return job

    def retry_order_jobs(self, external_order_id: str) -> Dict[str, Any]:
        order = get_order(self.db, external_order_id)
        if order is None:
            raise NotFound("Order not found")

        self._reset_order(external_order_id)
        reset = self.queue.reset_jobs_for_order(external_order_id)

        job = None
        if reset == 0 and current_status(order) == InvoiceStatus.PENDING:
            job = self.queue.enqueue(external_order_id)

        self.db.commit()
        logger.info(f"Order {external_order_id}: {reset} jobs reset by operator")
        return {
            "order_id": external_order_id,
            "reset_count": reset,
            "invoice_status": order.invoice_status,
            "job_id": str(job.id) if job else None,
        }


async def run_retry_batch(
    issuer: Optional[InvoiceIssuer] = None,
    directory: Optional[CustomerDirectory] = None,
) -> Dict[str, Any]:
    """One engine run in its own session, for schedulers"""
    db = SessionLocal()
    try:
        engine = RetryEngine(
            db,
            issuer or create_sdi_client(),
            directory if directory is not None else create_directory_client(),
        )
        return await engine.run()
    except Exception as e:
        logger.exception("Invoice retry run failed")
        return {"processed": 0, "completed": 0, "retried": 0, "failed": 0, "purged": 0, "error": str(e)}
    finally:
        db.close()
