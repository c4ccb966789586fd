"""
Invoice State Machine - the only place where OrderSnapshot.invoice_status changes
"""
import enum
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from sdibridge.core.exceptions import InvalidTransition
from sdibridge.models import OrderSnapshot, utcnow


class InvoiceStatus(str, enum.Enum):
    PENDING = "PENDING"
    ISSUED = "ISSUED"
    ERROR = "ERROR"
    FOREIGN = "FOREIGN"
    CORRISPETTIVO = "CORRISPETTIVO"
    CANCELLED = "CANCELLED"


class InvoiceEvent(str, enum.Enum):
    ISSUE_SUCCEEDED = "ISSUE_SUCCEEDED"
    ISSUE_FAILED = "ISSUE_FAILED"
    MARK_FOREIGN = "MARK_FOREIGN"
    OPERATOR_RESET = "OPERATOR_RESET"
    CANCEL = "CANCEL"


# (current status, event) -> next status
TRANSITIONS = {
    (InvoiceStatus.PENDING, InvoiceEvent.ISSUE_SUCCEEDED): InvoiceStatus.ISSUED,
    (InvoiceStatus.PENDING, InvoiceEvent.ISSUE_FAILED): InvoiceStatus.ERROR,
    (InvoiceStatus.PENDING, InvoiceEvent.MARK_FOREIGN): InvoiceStatus.FOREIGN,
    (InvoiceStatus.ERROR, InvoiceEvent.MARK_FOREIGN): InvoiceStatus.FOREIGN,
    (InvoiceStatus.ERROR, InvoiceEvent.OPERATOR_RESET): InvoiceStatus.PENDING,
}
for _status in InvoiceStatus:
    if _status is not InvoiceStatus.CANCELLED:
        TRANSITIONS[(_status, InvoiceEvent.CANCEL)] = InvoiceStatus.CANCELLED

# Statuses the retry engine will still try to invoice
ISSUABLE = {InvoiceStatus.PENDING}


def current_status(order: OrderSnapshot) -> InvoiceStatus:
    return InvoiceStatus(order.invoice_status)


def can_apply(order: OrderSnapshot, event: InvoiceEvent) -> bool:
    return (current_status(order), event) in TRANSITIONS


def next_status(status: InvoiceStatus, event: InvoiceEvent) -> InvoiceStatus:
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransition(status.value, event.value) from None


def _transition_values(
    event: InvoiceEvent,
    error: Optional[str] = None,
    invoice_id: Optional[str] = None,
    invoice_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    if event == InvoiceEvent.ISSUE_SUCCEEDED:
        return {"invoice_id": invoice_id, "invoice_date": invoice_date or utcnow(), "last_error": None}
    if event == InvoiceEvent.ISSUE_FAILED:
        return {"last_error": error or "Invoice issuance failed"}
    if event in (InvoiceEvent.MARK_FOREIGN, InvoiceEvent.OPERATOR_RESET):
        return {"last_error": None}
    if event == InvoiceEvent.CANCEL:
        return {"last_error": error}
    return {}


def apply_transition(
    order: OrderSnapshot,
    event: InvoiceEvent,
    *,
    error: Optional[str] = None,
    invoice_id: Optional[str] = None,
    invoice_date: Optional[datetime] = None,
) -> InvoiceStatus:
    """
    Move the order along the graph and set the fields that go with the move.
    Does not commit; callers own the transaction.
    """
    new_status = next_status(current_status(order), event)

    for field, value in _transition_values(event, error, invoice_id, invoice_date).items():
        setattr(order, field, value)

    order.invoice_status = new_status.value
    return new_status


def apply_transition_if_current(
    db: Session,
    order: OrderSnapshot,
    event: InvoiceEvent,
    *,
    error: Optional[str] = None,
    invoice_id: Optional[str] = None,
    invoice_date: Optional[datetime] = None,
) -> Optional[InvoiceStatus]:
    """
    Conditional form of apply_transition: the row only moves if its stored
    status is still the one this session read, so of two writers racing on the
    same order exactly one makes the move. Returns None when the row had
    already moved; `order` is refreshed either way. Does not commit.
    """
    expected = current_status(order)
    new_status = next_status(expected, event)

    values = _transition_values(event, error, invoice_id, invoice_date)
    values["invoice_status"] = new_status.value

    db.flush()
    result = db.execute(
        update(OrderSnapshot)
        .where(
            OrderSnapshot.id == order.id,
            OrderSnapshot.invoice_status == expected.value,
        )
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(order)
    return new_status if result.rowcount == 1 else None
