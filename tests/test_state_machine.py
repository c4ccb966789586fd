import pytest

from sdibridge.core.exceptions import InvalidTransition, PreconditionFailed
from sdibridge.models import OrderSnapshot
from sdibridge.services.invoice_state import (
    InvoiceStatus, InvoiceEvent, TRANSITIONS, apply_transition, next_status, can_apply,
)


def snapshot(status):
    return OrderSnapshot(external_order_id="1", invoice_status=status.value)


@pytest.mark.parametrize("status,event,expected", [
    (InvoiceStatus.PENDING, InvoiceEvent.ISSUE_SUCCEEDED, InvoiceStatus.ISSUED),
    (InvoiceStatus.PENDING, InvoiceEvent.ISSUE_FAILED, InvoiceStatus.ERROR),
    (InvoiceStatus.PENDING, InvoiceEvent.MARK_FOREIGN, InvoiceStatus.FOREIGN),
    (InvoiceStatus.ERROR, InvoiceEvent.MARK_FOREIGN, InvoiceStatus.FOREIGN),
    (InvoiceStatus.ERROR, InvoiceEvent.OPERATOR_RESET, InvoiceStatus.PENDING),
    (InvoiceStatus.ISSUED, InvoiceEvent.CANCEL, InvoiceStatus.CANCELLED),
    (InvoiceStatus.CORRISPETTIVO, InvoiceEvent.CANCEL, InvoiceStatus.CANCELLED),
])
def test_allowed_transitions(status, event, expected):
    assert next_status(status, event) == expected


@pytest.mark.parametrize("status,event", [
    (InvoiceStatus.ISSUED, InvoiceEvent.ISSUE_SUCCEEDED),
    (InvoiceStatus.ISSUED, InvoiceEvent.ISSUE_FAILED),
    (InvoiceStatus.CANCELLED, InvoiceEvent.CANCEL),
    (InvoiceStatus.CANCELLED, InvoiceEvent.OPERATOR_RESET),
    (InvoiceStatus.CORRISPETTIVO, InvoiceEvent.ISSUE_SUCCEEDED),
    (InvoiceStatus.FOREIGN, InvoiceEvent.ISSUE_SUCCEEDED),
    (InvoiceStatus.PENDING, InvoiceEvent.OPERATOR_RESET),
])
def test_forbidden_transitions(status, event):
    with pytest.raises(InvalidTransition):
        next_status(status, event)


def test_invalid_transition_is_a_precondition_error():
    order = snapshot(InvoiceStatus.ISSUED)
    with pytest.raises(PreconditionFailed):
        apply_transition(order, InvoiceEvent.ISSUE_SUCCEEDED, invoice_id="X")
    assert order.invoice_status == "ISSUED"


def test_issued_and_cancelled_have_no_way_back():
    for (status, _event), target in TRANSITIONS.items():
        assert status != InvoiceStatus.CANCELLED
        if status == InvoiceStatus.ISSUED:
            assert target == InvoiceStatus.CANCELLED


def test_success_sets_invoice_fields_and_clears_error():
    order = snapshot(InvoiceStatus.PENDING)
    order.last_error = "boom"
    apply_transition(order, InvoiceEvent.ISSUE_SUCCEEDED, invoice_id="SDI-1")

    assert order.invoice_status == "ISSUED"
    assert order.invoice_id == "SDI-1"
    assert order.invoice_date is not None
    assert order.last_error is None


def test_failure_records_error_and_reset_clears_it():
    order = snapshot(InvoiceStatus.PENDING)
    apply_transition(order, InvoiceEvent.ISSUE_FAILED, error="timeout")
    assert order.invoice_status == "ERROR"
    assert order.last_error == "timeout"

    assert can_apply(order, InvoiceEvent.OPERATOR_RESET)
    apply_transition(order, InvoiceEvent.OPERATOR_RESET)
    assert order.invoice_status == "PENDING"
    assert order.last_error is None
