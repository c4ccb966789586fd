"""
Invoice Job Queue - durable, at-least-once work list on top of the invoice_job table
"""
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Union
from uuid import UUID
import logging

from sqlalchemy import update, delete
from sqlalchemy.orm import Session

from sdibridge.core.config import settings
from sdibridge.core.exceptions import NotFound
from sdibridge.models import InvoiceJob, JobStatus, JobType, utcnow

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
FINISHED_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


def _as_uuid(job_id: Union[str, UUID]) -> UUID:
    if isinstance(job_id, UUID):
        return job_id
    try:
        return UUID(str(job_id))
    except ValueError:
        raise NotFound(f"Job {job_id} not found") from None


class InvoiceJobQueue:
    """
    enqueue -> claim (PENDING -> PROCESSING, attempts+1) -> complete | fail_with_backoff

    Only try_claim and purge_finished commit on their own; every other
    mutation joins the caller's transaction.
    """

    def __init__(
        self,
        db: Session,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[timedelta] = None,
        retention: Optional[timedelta] = None,
    ):
        self.db = db
        self.max_attempts = max_attempts or settings.INVOICE_JOB_MAX_ATTEMPTS
        self.retry_delay = retry_delay or timedelta(minutes=settings.INVOICE_JOB_RETRY_DELAY_MINUTES)
        self.retention = retention or timedelta(days=settings.INVOICE_JOB_RETENTION_DAYS)

    # ========== Producers ==========

    def active_job(self, order_ref: str, job_type: JobType = JobType.INVOICE) -> Optional[InvoiceJob]:
        return self.db.query(InvoiceJob).filter(
            InvoiceJob.order_ref == order_ref,
            InvoiceJob.job_type == job_type.value,
            InvoiceJob.status.in_(ACTIVE_STATUSES),
        ).first()

    def has_active_job(self, order_ref: str, job_type: JobType = JobType.INVOICE) -> bool:
        return self.active_job(order_ref, job_type) is not None

    def enqueue(
        self,
        order_ref: str,
        job_type: JobType = JobType.INVOICE,
        payload: Optional[Dict[str, Any]] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> InvoiceJob:
        """Add a job unless one is already waiting or running for the same order"""
        existing = self.active_job(order_ref, job_type)
        if existing:
            logger.debug(f"Job already queued for {job_type.value}:{order_ref} ({existing.id})")
            return existing

        job = InvoiceJob(
            job_type=job_type.value,
            order_ref=order_ref,
            payload=payload or {"external_order_id": order_ref},
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=self.max_attempts,
            scheduled_at=scheduled_at or utcnow(),
        )
        self.db.add(job)
        self.db.flush()
        logger.info(f"Enqueued {job_type.value} job {job.id} for order {order_ref}")
        return job

    # ========== Consumers ==========

    def find_due(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[UUID]:
        """Ids of claimable jobs, oldest scheduled_at first"""
        now = now or utcnow()
        rows = self.db.query(InvoiceJob.id).filter(
            InvoiceJob.status == JobStatus.PENDING.value,
            InvoiceJob.attempts < InvoiceJob.max_attempts,
            InvoiceJob.scheduled_at <= now,
        ).order_by(InvoiceJob.scheduled_at.asc()).limit(limit or settings.INVOICE_JOB_BATCH_SIZE).all()
        return [row[0] for row in rows]

    def try_claim(self, job_id: UUID) -> bool:
        """
        Atomic conditional update: only one caller can move a given row out of
        PENDING. The attempt is consumed and committed before any external call.
        """
        result = self.db.execute(
            update(InvoiceJob)
            .where(
                InvoiceJob.id == job_id,
                InvoiceJob.status == JobStatus.PENDING.value,
                InvoiceJob.attempts < InvoiceJob.max_attempts,
            )
            .values(
                status=JobStatus.PROCESSING.value,
                attempts=InvoiceJob.attempts + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def claim_batch(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[InvoiceJob]:
        claimed = []
        for job_id in self.find_due(limit, now):
            if self.try_claim(job_id):
                job = self.db.get(InvoiceJob, job_id)
                self.db.refresh(job)
                claimed.append(job)
            else:
                logger.debug(f"Job {job_id} claimed by another worker")
        return claimed

    def complete(self, job: InvoiceJob, note: Optional[str] = None) -> None:
        job.status = JobStatus.COMPLETED.value
        job.processed_at = utcnow()
        job.last_error = note

    def fail_with_backoff(self, job: InvoiceJob, error: str, now: Optional[datetime] = None) -> bool:
        """
        Returns True when this was the last allowed attempt and the job is now FAILED.
        Otherwise the job goes back to PENDING after a fixed delay.
        """
        now = now or utcnow()
        job.last_error = error
        if job.is_last_attempt:
            job.status = JobStatus.FAILED.value
            job.processed_at = now
            return True

        job.status = JobStatus.PENDING.value
        job.scheduled_at = now + self.retry_delay
        return False

    def fail_permanently(self, job: InvoiceJob, error: str) -> None:
        job.status = JobStatus.FAILED.value
        job.processed_at = utcnow()
        job.last_error = error

    # ========== Housekeeping ==========

    def purge_finished(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - self.retention
        result = self.db.execute(
            delete(InvoiceJob)
            .where(
                InvoiceJob.status.in_(FINISHED_STATUSES),
                InvoiceJob.processed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount or 0

    # ========== Operator ==========

    def _reset_values(self) -> Dict[str, Any]:
        return {
            "status": JobStatus.PENDING.value,
            "attempts": 0,
            "last_error": None,
            "processed_at": None,
            "scheduled_at": utcnow(),
        }

    def reset_job(self, job_id: Union[str, UUID]) -> InvoiceJob:
        job = self.db.get(InvoiceJob, _as_uuid(job_id))
        if not job:
            raise NotFound(f"Job {job_id} not found")
        for field, value in self._reset_values().items():
            setattr(job, field, value)
        return job

    def reset_jobs_for_order(self, order_ref: str, job_type: JobType = JobType.INVOICE) -> int:
        jobs = self.db.query(InvoiceJob).filter(
            InvoiceJob.order_ref == order_ref,
            InvoiceJob.job_type == job_type.value,
        ).all()
        for job in jobs:
            for field, value in self._reset_values().items():
                setattr(job, field, value)
        return len(jobs)

    def get_jobs(
        self,
        status: Optional[str] = None,
        order_ref: Optional[str] = None,
        limit: int = 100,
    ) -> List[InvoiceJob]:
        query = self.db.query(InvoiceJob)
        if status:
            query = query.filter(InvoiceJob.status == status)
        if order_ref:
            query = query.filter(InvoiceJob.order_ref == order_ref)
        return query.order_by(InvoiceJob.scheduled_at.desc()).limit(limit).all()
