"""Invoice state machine: document status and approval decision."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from invoiceflow.core.models import ApprovalStatus, InvoiceStatus
from invoiceflow.services.errors import ConflictError


INVOICE_STATUSES = {status.value for status in InvoiceStatus}
APPROVAL_STATUSES = {status.value for status in ApprovalStatus}


VALID_STATUS_TRANSITIONS: Dict[str, set[str]] = {
    "pending_extraction": {"pending", "processing", "completed", "error", "deleted"},
    "processing": {"pending", "completed", "error", "deleted"},
    "pending": {"pending", "completed", "error", "deleted"},
    "error": {"pending", "deleted"},
    "completed": {"deleted"},
    "deleted": set(),  # terminal, no undelete
}


VALID_APPROVAL_TRANSITIONS: Dict[str, set[str]] = {
    "pending": {"approved", "rejected", "auto_approved"},
    "approved": set(),
    "rejected": set(),
    "auto_approved": set(),
}


class InvoiceStateError(ConflictError):
    """Raised when an invalid transition is attempted."""


@dataclass(frozen=True)
class Transition:
    """Target state for one invoice write; None leaves a dimension unchanged."""
    status: Optional[str] = None
    approval_status: Optional[str] = None


def assert_valid_status_transition(from_status: str, to_status: str) -> None:
    if from_status not in INVOICE_STATUSES or to_status not in INVOICE_STATUSES:
        raise InvoiceStateError(f"Unknown status transition: {from_status} -> {to_status}")
    if to_status not in VALID_STATUS_TRANSITIONS.get(from_status, set()):
        raise InvoiceStateError(f"Invalid status transition: {from_status} -> {to_status}")


def assert_valid_approval_transition(from_status: str, to_status: str) -> None:
    if from_status not in APPROVAL_STATUSES or to_status not in APPROVAL_STATUSES:
        raise InvoiceStateError(f"Unknown approval transition: {from_status} -> {to_status}")
    if to_status not in VALID_APPROVAL_TRANSITIONS.get(from_status, set()):
        raise InvoiceStateError(
            "Invoice has already been processed",
            context={"approval_status": from_status},
        )


def assert_transition(invoice, transition: Transition) -> None:
    """Check both dimensions of a transition against the invoice's current state."""
    if transition.status is not None:
        assert_valid_status_transition(invoice.status, transition.status)
    if transition.approval_status is not None:
        assert_valid_approval_transition(invoice.approval_status, transition.approval_status)


def ensure_pending(invoice) -> None:
    """Decisions and edits are legal only on a live invoice awaiting approval."""
    if invoice.status == InvoiceStatus.DELETED.value:
        raise InvoiceStateError("Invoice has been deleted", context={"status": invoice.status})
    if invoice.approval_status != ApprovalStatus.PENDING.value:
        raise InvoiceStateError(
            "Invoice has already been processed",
            context={"approval_status": invoice.approval_status},
        )
