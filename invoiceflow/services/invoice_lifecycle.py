"""
Invoice Lifecycle

Entry point for every invoice mutation: creation (manual or upload),
validation, approve/reject, edit and soft delete. Guards run in a fixed
order: role, input, existence, company boundary, state. A request denied
by any guard leaves the invoice and the audit log untouched.
"""
from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from invoiceflow.core.audit import AuditAction, AuditRecorder
from invoiceflow.core.auth import CurrentUser
from invoiceflow.core.database import DuplicateRecordError
from invoiceflow.core.event_bus import EventBus, EventType
from invoiceflow.core.models import (
    ApprovalStatus,
    Company,
    Invoice,
    InvoiceStatus,
    amount_to_json,
    to_amount,
)
from invoiceflow.core.permissions import Permission, ensure_same_company, require_permission
from invoiceflow.services.approval_engine import ApprovalEngine, DecisionResult, RoutingOutcome
from invoiceflow.services.commands import (
    EDITABLE_INVOICE_FIELDS,
    ApproveCommand,
    DeleteCommand,
    InvoiceCreate,
    InvoiceEdit,
    RejectCommand,
    changes,
    parse_command,
)
from invoiceflow.services.errors import ConflictError, NotFoundError, ValidationError
from invoiceflow.services.invoice_state import (
    assert_valid_status_transition,
    ensure_pending,
)

logger = logging.getLogger(__name__)

MIN_DELETION_REASON_LENGTH = 5
MAX_PAGE_SIZE = 100
HISTORY_LIMIT = 20

_AMOUNT_FIELDS = ("total_amount", "tax_amount", "discount_amount")
_REQUIRED_FIELDS = ("supplier_name", "invoice_number", "total_amount")

# Extraction payload key -> invoice column
_EXTRACTED_FIELDS = {
    "invoice_number": "invoice_number",
    "invoice_series": "invoice_series",
    "supplier_name": "supplier_name",
    "supplier_cnpj": "supplier_tax_id",
    "supplier_tax_id": "supplier_tax_id",
    "invoice_date": "invoice_date",
    "due_date": "due_date",
    "total_amount": "total_amount",
    "tax_amount": "tax_amount",
    "discount_amount": "discount_amount",
    "description": "description",
    "po_number": "po_number",
}


def snapshot(invoice: Invoice) -> Dict[str, Any]:
    """Editable fields plus state, JSON-ready, for audit before/after."""
    data = {}
    for name in EDITABLE_INVOICE_FIELDS:
        value = getattr(invoice, name)
        data[name] = amount_to_json(value) if name in _AMOUNT_FIELDS else value
    data["status"] = invoice.status
    data["approval_status"] = invoice.approval_status
    return data


class InvoiceLifecycle:
    def __init__(self, db, engine: ApprovalEngine, audit: AuditRecorder, events: EventBus):
        self.db = db
        self.engine = engine
        self.audit = audit
        self.events = events

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _company(self, company_id: str) -> Company:
        company = Company.from_row(self.db.get_company(company_id))
        if company is None:
            raise NotFoundError("Company", company_id)
        return company

    def _load_for(self, actor: CurrentUser, invoice_id: str) -> Invoice:
        invoice = Invoice.from_row(self.db.get_invoice(invoice_id))
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        ensure_same_company(actor, invoice.company_id, "invoice")
        return invoice

    def _reload(self, invoice_id: str) -> Invoice:
        return Invoice.from_row(self.db.get_invoice(invoice_id))

    def _ensure_number_free(self, company_id: str, invoice_number: Optional[str], invoice_id: Optional[str] = None):
        if not invoice_number:
            return
        existing = self.db.get_invoice_by_number(company_id, invoice_number)
        if existing and existing["id"] != invoice_id:
            raise ConflictError(
                "An invoice with this number already exists",
                context={"invoice_number": invoice_number, "existing_id": existing["id"]},
            )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, actor: CurrentUser, payload: Any) -> DecisionResult:
        """Manual entry. The company limit applies immediately since the amount is known."""
        command = parse_command(InvoiceCreate, payload)
        require_permission(actor, Permission.EDIT_INVOICE)
        company = self._company(actor.company_id)
        self._ensure_number_free(company.id, command.invoice_number)

        row = command.model_dump()
        for name in _AMOUNT_FIELDS:
            row[name] = to_amount(row.get(name))
        row["debit_account_code"] = row.get("debit_account_code") or company.default_debit_account
        row["credit_account_code"] = row.get("credit_account_code") or company.default_credit_account
        row.update({"company_id": company.id, "created_by": actor.user_id})

        return self._insert_and_route(actor, company, row, AuditAction.CREATE_INVOICE)

    def register_upload(
        self,
        actor: CurrentUser,
        file_url: str,
        file_type: str,
        extracted: Optional[Dict[str, Any]] = None,
        extraction_log_id: Optional[str] = None,
    ) -> DecisionResult:
        """Create an invoice from an uploaded document and whatever extraction returned."""
        require_permission(actor, Permission.EDIT_INVOICE)
        company = self._company(actor.company_id)

        row: Dict[str, Any] = {}
        for source, column in _EXTRACTED_FIELDS.items():
            value = (extracted or {}).get(source)
            if value not in (None, "") and column not in row:
                row[column] = value
        for name in _AMOUNT_FIELDS:
            if name in row:
                try:
                    row[name] = to_amount(row[name])
                except ValueError:
                    logger.warning(f"Discarding unparseable extracted {name}: {row[name]!r}")
                    row.pop(name)
                if name in row and row[name] < 0:
                    row.pop(name)
        if row.get("invoice_number") is not None:
            row["invoice_number"] = str(row["invoice_number"])
        self._ensure_number_free(company.id, row.get("invoice_number"))

        row.update({
            "company_id": company.id,
            "created_by": actor.user_id,
            "original_file_url": file_url,
            "file_type": file_type,
            "extraction_log_id": extraction_log_id,
            "debit_account_code": company.default_debit_account,
            "credit_account_code": company.default_credit_account,
            "status": InvoiceStatus.PENDING.value if row else InvoiceStatus.PENDING_EXTRACTION.value,
            "approval_status": ApprovalStatus.PENDING.value,
        })
        return self._insert_and_route(actor, company, row, AuditAction.UPLOAD_INVOICE)

    def _insert_and_route(
        self,
        actor: CurrentUser,
        company: Company,
        row: Dict[str, Any],
        action: AuditAction,
    ) -> DecisionResult:
        outcome: Optional[RoutingOutcome] = None
        if row.get("total_amount") is not None:
            draft = Invoice.from_row({"id": "", **row})
            outcome = self.engine.decide_at_creation(company, draft.total_amount)
            row.update(self.engine.routing_fields(outcome, draft, company))

        try:
            invoice = Invoice.from_row(self.db.create_invoice(row))
        except DuplicateRecordError:
            raise ConflictError(
                "An invoice with this number already exists",
                context={"invoice_number": row.get("invoice_number")},
            )

        entry = None
        if outcome is not None:
            entry = self.engine.after_routing(invoice, outcome, actor.user_id)

        new_values = snapshot(invoice)
        new_values["routing"] = outcome.to_dict() if outcome else None
        self.audit.record(
            company_id=company.id,
            actor_id=actor.user_id,
            invoice_id=invoice.id,
            action=action,
            new_values=new_values,
        )
        self.events.emit(
            EventType.INVOICE_CREATED,
            company.id,
            {"invoice_id": invoice.id, "status": invoice.status, "approval_status": invoice.approval_status},
            user_id=actor.user_id,
        )
        logger.info(f"Invoice {invoice.id} created ({action.value}) status={invoice.status}")
        return DecisionResult(invoice=invoice, outcome=outcome, accounting_entry=entry)

    # ------------------------------------------------------------------
    # Routing and decisions
    # ------------------------------------------------------------------

    def validate(self, actor: CurrentUser, invoice_id: str) -> DecisionResult:
        require_permission(actor, Permission.EDIT_INVOICE)
        invoice = self._load_for(actor, invoice_id)
        company = self._company(invoice.company_id)
        return self.engine.apply_routing(invoice, company, actor.user_id)

    def approve(self, actor: CurrentUser, invoice_id: str, payload: Any = None) -> DecisionResult:
        require_permission(actor, Permission.DECIDE_INVOICE)
        command = parse_command(ApproveCommand, payload)
        invoice = self._load_for(actor, invoice_id)
        company = self._company(invoice.company_id)
        return self.engine.approve(
            invoice,
            company,
            actor.user_id,
            notes=command.notes,
            debit_account_code=command.debit_account_code,
            credit_account_code=command.credit_account_code,
        )

    def reject(self, actor: CurrentUser, invoice_id: str, payload: Any = None) -> DecisionResult:
        require_permission(actor, Permission.DECIDE_INVOICE)
        command = parse_command(RejectCommand, payload)
        reason = command.reason.strip()
        if not reason:
            raise ValidationError("A rejection reason is required")
        invoice = self._load_for(actor, invoice_id)
        return self.engine.reject(invoice, actor.user_id, reason)

    # ------------------------------------------------------------------
    # Edit and delete
    # ------------------------------------------------------------------

    def edit(self, actor: CurrentUser, invoice_id: str, payload: Any) -> Invoice:
        require_permission(actor, Permission.EDIT_INVOICE)
        updates = changes(parse_command(InvoiceEdit, payload))
        if not updates:
            raise ValidationError("No editable fields supplied")
        for name in _REQUIRED_FIELDS:
            if name in updates and updates[name] is None:
                raise ValidationError(f"{name} cannot be cleared")

        invoice = self._load_for(actor, invoice_id)
        ensure_pending(invoice)
        if "invoice_number" in updates:
            self._ensure_number_free(invoice.company_id, updates["invoice_number"], invoice.id)

        fields = dict(updates)
        for name in _AMOUNT_FIELDS:
            if name in fields:
                fields[name] = to_amount(fields[name])
        amount = fields.get("total_amount", invoice.total_amount)
        if invoice.status == InvoiceStatus.PENDING_EXTRACTION.value and amount is not None:
            assert_valid_status_transition(invoice.status, InvoiceStatus.PENDING.value)
            fields["status"] = InvoiceStatus.PENDING.value

        try:
            updated = self.db.update_invoice(
                invoice.id,
                expected_approval_status=ApprovalStatus.PENDING.value,
                exclude_status=InvoiceStatus.DELETED.value,
                **fields,
            )
        except DuplicateRecordError:
            raise ConflictError("An invoice with this number already exists")
        if not updated:
            raise ConflictError("Invoice has already been processed", context={"invoice_id": invoice.id})

        after = self._reload(invoice.id)
        self.audit.record(
            company_id=invoice.company_id,
            actor_id=actor.user_id,
            invoice_id=invoice.id,
            action=AuditAction.UPDATE_INVOICE,
            old_values=snapshot(invoice),
            new_values=snapshot(after),
        )
        self.events.emit(
            EventType.INVOICE_UPDATED,
            invoice.company_id,
            {"invoice_id": invoice.id, "fields": sorted(updates)},
            user_id=actor.user_id,
        )
        return after

    def soft_delete(self, actor: CurrentUser, invoice_id: str, payload: Any) -> Invoice:
        require_permission(actor, Permission.DELETE_INVOICE)
        reason = parse_command(DeleteCommand, payload).reason.strip()
        if len(reason) < MIN_DELETION_REASON_LENGTH:
            raise ValidationError(
                f"Deletion reason must have at least {MIN_DELETION_REASON_LENGTH} characters"
            )

        invoice = self._load_for(actor, invoice_id)
        if invoice.is_deleted:
            raise ConflictError("Invoice is already deleted", context={"invoice_id": invoice.id})
        assert_valid_status_transition(invoice.status, InvoiceStatus.DELETED.value)

        deleted = self.db.update_invoice(
            invoice.id,
            exclude_status=InvoiceStatus.DELETED.value,
            status=InvoiceStatus.DELETED.value,
            deleted_at=datetime.now(timezone.utc).isoformat(),
            deleted_by=actor.user_id,
            deletion_reason=reason,
        )
        if not deleted:
            raise ConflictError("Invoice is already deleted", context={"invoice_id": invoice.id})

        after = self._reload(invoice.id)
        self.audit.record(
            company_id=invoice.company_id,
            actor_id=actor.user_id,
            invoice_id=invoice.id,
            action=AuditAction.DELETE_INVOICE,
            old_values={"status": invoice.status},
            new_values={"status": after.status, "deletion_reason": reason},
        )
        self.events.emit(
            EventType.INVOICE_DELETED,
            invoice.company_id,
            {"invoice_id": invoice.id, "reason": reason},
            user_id=actor.user_id,
        )
        logger.info(f"Invoice {invoice.id} soft-deleted by {actor.user_id}")
        return after

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, actor: CurrentUser, invoice_id: str) -> Dict[str, Any]:
        invoice = self._load_for(actor, invoice_id)
        return {
            "invoice": invoice.to_dict(),
            "history": self.audit.history(invoice.company_id, invoice.id, limit=HISTORY_LIMIT),
            "accounting_entries": [entry.to_dict() for entry in self.engine.ledger.entries_for(invoice.id)],
        }

    def list_invoices(
        self,
        actor: CurrentUser,
        status: Optional[str] = None,
        approval_status: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        supplier_name: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        if page < 1:
            raise ValidationError("page must be at least 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if status and status not in {s.value for s in InvoiceStatus}:
            raise ValidationError(f"Unknown status: {status}")
        if approval_status and approval_status not in {s.value for s in ApprovalStatus}:
            raise ValidationError(f"Unknown approval status: {approval_status}")

        filters: Dict[str, Any] = {
            "status": status,
            "approval_status": approval_status,
            "supplier_name": supplier_name,
        }
        if date_from:
            filters["created_from"] = _parse_date(date_from, "date_from").isoformat()
        if date_to:
            filters["created_before"] = (_parse_date(date_to, "date_to") + timedelta(days=1)).isoformat()

        total = self.db.count_invoices(actor.company_id, filters)
        rows = self.db.list_invoices(actor.company_id, filters, limit=limit, offset=(page - 1) * limit)
        return {
            "invoices": [Invoice.from_row(row).to_dict() for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)")
