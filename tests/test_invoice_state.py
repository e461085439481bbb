import pytest

from invoiceflow.core.models import Invoice
from invoiceflow.services.invoice_state import (
    InvoiceStateError,
    Transition,
    assert_transition,
    assert_valid_approval_transition,
    assert_valid_status_transition,
    ensure_pending,
)


def _invoice(status="pending", approval_status="pending"):
    return Invoice(id="INV-1", company_id="CMP-1", status=status, approval_status=approval_status)


def test_pending_can_complete_or_be_deleted():
    assert_valid_status_transition("pending", "completed")
    assert_valid_status_transition("pending", "deleted")
    assert_valid_status_transition("pending_extraction", "pending")


def test_deleted_is_terminal():
    for target in ("pending", "completed", "error", "deleted"):
        with pytest.raises(InvoiceStateError):
            assert_valid_status_transition("deleted", target)


def test_unknown_status_is_rejected():
    with pytest.raises(InvoiceStateError, match="Unknown status transition"):
        assert_valid_status_transition("pending", "archived")


@pytest.mark.parametrize("decided", ["approved", "rejected", "auto_approved"])
def test_decisions_are_final(decided):
    with pytest.raises(InvoiceStateError, match="already been processed"):
        assert_valid_approval_transition(decided, "approved")


def test_transition_checks_both_dimensions():
    invoice = _invoice(status="completed", approval_status="approved")

    with pytest.raises(InvoiceStateError):
        assert_transition(invoice, Transition(approval_status="rejected"))
    assert_transition(invoice, Transition(status="deleted"))


def test_ensure_pending_distinguishes_deleted_from_processed():
    with pytest.raises(InvoiceStateError, match="deleted"):
        ensure_pending(_invoice(status="deleted"))
    with pytest.raises(InvoiceStateError, match="already been processed"):
        ensure_pending(_invoice(status="completed", approval_status="auto_approved"))
    ensure_pending(_invoice(status="pending_extraction"))


def test_state_errors_map_to_conflict():
    from invoiceflow.services.errors import status_code_for

    with pytest.raises(InvoiceStateError) as excinfo:
        ensure_pending(_invoice(approval_status="rejected"))
    assert status_code_for(excinfo.value) == 409
