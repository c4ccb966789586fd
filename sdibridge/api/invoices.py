"""
Invoice API Endpoints - manual issuance
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from sdibridge.core.database import get_db
from sdibridge.core.exceptions import BridgeError
from sdibridge.integrations import InvoiceIssuer, CustomerDirectory
from sdibridge.schemas.billing import IssueInvoiceRequest
from sdibridge.services import InvoiceService, InvoiceJobQueue, ProfileResolver, OrderService
from .deps import get_issuer, get_directory, http_error

logger = logging.getLogger(__name__)

invoices_router = APIRouter(prefix="/invoices", tags=["invoices"])


@invoices_router.post("/issue")
async def issue_invoice(
    request: IssueInvoiceRequest,
    db: Session = Depends(get_db),
    issuer: InvoiceIssuer = Depends(get_issuer),
    directory: Optional[CustomerDirectory] = Depends(get_directory),
):
    """Issue one invoice now; failures are reported, not retried"""
    service = InvoiceService(db, issuer, ProfileResolver(db, directory))
    try:
        result = await service.issue_invoice_now(request.external_order_id)
    except BridgeError as e:
        raise http_error(e)
    return {"success": True, "order_id": request.external_order_id, **result}


@invoices_router.get("/{external_order_id}")
def get_invoice_status(external_order_id: str, db: Session = Depends(get_db)):
    order = OrderService.get_order_by_external_id(db, external_order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    jobs = InvoiceJobQueue(db).get_jobs(order_ref=external_order_id, limit=20)
    return {
        "order_id": order.external_order_id,
        "order_number": order.order_number,
        "invoice_status": order.invoice_status,
        "has_vat_profile": order.has_vat_profile,
        "invoice_id": order.invoice_id,
        "invoice_date": order.invoice_date.isoformat() if order.invoice_date else None,
        "last_error": order.last_error,
        "jobs": [
            {
                "id": str(job.id),
                "job_type": job.job_type,
                "status": job.status,
                "attempts": job.attempts,
                "max_attempts": job.max_attempts,
                "scheduled_at": job.scheduled_at.isoformat() if job.scheduled_at else None,
                "last_error": job.last_error,
            }
            for job in jobs
        ],
    }
