"""
Cron API Endpoints - external trigger for the retry engine and manual retries
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from sdibridge.core.database import get_db
from sdibridge.core.exceptions import BridgeError
from sdibridge.integrations import InvoiceIssuer, CustomerDirectory
from sdibridge.schemas.billing import ManualRetryRequest
from sdibridge.services import RetryEngine
from .deps import get_issuer, get_directory, http_error

logger = logging.getLogger(__name__)

cron_router = APIRouter(prefix="/cron", tags=["cron"])


@cron_router.get("/retry-pending")
async def retry_pending(
    db: Session = Depends(get_db),
    issuer: InvoiceIssuer = Depends(get_issuer),
    directory: Optional[CustomerDirectory] = Depends(get_directory),
):
    """One retry engine run; always answers 200 with the run summary"""
    summary = await RetryEngine(db, issuer, directory).run()
    return {"success": "error" not in summary, **summary}


@cron_router.post("/retry")
def manual_retry(
    request: ManualRetryRequest,
    db: Session = Depends(get_db),
    issuer: InvoiceIssuer = Depends(get_issuer),
):
    """Reset one job, or every job of an order, to PENDING with a fresh budget"""
    if not request.job_id and not request.external_order_id:
        raise HTTPException(status_code=422, detail="job_id or external_order_id is required")

    engine = RetryEngine(db, issuer)
    try:
        if request.job_id:
            job = engine.retry_job(request.job_id)
            return {
                "success": True,
                "job_id": str(job.id),
                "order_id": job.order_ref,
                "status": job.status,
            }
        return {"success": True, **engine.retry_order_jobs(request.external_order_id)}
    except BridgeError as e:
        raise http_error(e)
