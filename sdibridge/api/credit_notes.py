"""
Credit Note API Endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from sdibridge.core.database import get_db
from sdibridge.core.exceptions import BridgeError
from sdibridge.integrations import InvoiceIssuer, CustomerDirectory
from sdibridge.models import CreditNote
from sdibridge.schemas.billing import IssueCreditNoteRequest
from sdibridge.services import InvoiceService, ProfileResolver
from .deps import get_issuer, get_directory, http_error

credit_notes_router = APIRouter(prefix="/credit-notes", tags=["credit-notes"])


def credit_note_to_dict(note: CreditNote) -> dict:
    return {
        "id": str(note.id),
        "order_id": note.order.external_order_id,
        "order_number": note.order.order_number,
        "reason": note.reason,
        "total_amount": float(note.total_amount or 0),
        "status": note.status,
        "external_id": note.external_id,
        "issued_at": note.issued_at.isoformat() if note.issued_at else None,
        "last_error": note.last_error,
        "created_at": note.created_at.isoformat() if note.created_at else None,
    }


@credit_notes_router.post("/issue")
async def issue_credit_note(
    request: IssueCreditNoteRequest,
    db: Session = Depends(get_db),
    issuer: InvoiceIssuer = Depends(get_issuer),
    directory: Optional[CustomerDirectory] = Depends(get_directory),
):
    service = InvoiceService(db, issuer, ProfileResolver(db, directory))
    try:
        note = await service.issue_credit_note_now(request.external_order_id, request.reason)
    except BridgeError as e:
        raise http_error(e)
    return {"success": True, "credit_note": credit_note_to_dict(note)}


@credit_notes_router.get("")
def list_credit_notes(
    order_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    issuer: InvoiceIssuer = Depends(get_issuer),
):
    notes, total = InvoiceService(db, issuer).get_credit_notes(order_id, status, page, per_page)
    return {
        "credit_notes": [credit_note_to_dict(n) for n in notes],
        "total": total,
        "page": page,
        "per_page": per_page,
    }
