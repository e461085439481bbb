"""
Approval Engine

Decides how an invoice is routed and applies approval decisions.

Routing, first match wins:
1. amount <= company auto-approve limit      -> auto-approved (no rule lookup)
2. matching rule with auto_approve            -> auto-approved by rule
3. otherwise                                  -> pending, assigned to the rule's
                                                 approver when a rule matched

Creation applies step 1 only; step 2 waits for validation.

Every state write is conditional on ``approval_status = 'pending'`` so a
concurrent decision loses with ConflictError instead of overwriting.
Ledger entries, notifications and events are best effort and run only
after the invoice write succeeded.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from invoiceflow.core.audit import AuditAction, AuditRecorder
from invoiceflow.core.event_bus import EventBus, EventType
from invoiceflow.core.models import (
    AccountingEntry,
    ApprovalRule,
    ApprovalStatus,
    Company,
    Invoice,
    InvoiceStatus,
    amount_to_json,
)
from invoiceflow.services.errors import ConflictError, ValidationError
from invoiceflow.services.invoice_state import Transition, assert_transition, ensure_pending
from invoiceflow.services.ledger import LedgerService
from invoiceflow.services.metrics import record_decision
from invoiceflow.services.notifications import NotificationService, NotificationType
from invoiceflow.services.rule_resolver import RuleResolver, resolve_rule

logger = logging.getLogger(__name__)


class RoutingDecision(str, Enum):
    AUTO_APPROVED = "auto_approved"
    AUTO_APPROVED_BY_RULE = "auto_approved_by_rule"
    PENDING_APPROVAL = "pending_approval"


@dataclass(frozen=True)
class RoutingOutcome:
    decision: RoutingDecision
    rule_level: Optional[int] = None
    approver_id: Optional[str] = None

    @property
    def is_auto_approved(self) -> bool:
        return self.decision != RoutingDecision.PENDING_APPROVAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.value,
            "rule_level": self.rule_level,
            "approver_id": self.approver_id,
        }


@dataclass
class DecisionResult:
    """What an approve/reject/validate call produced."""
    invoice: Invoice
    outcome: Optional[RoutingOutcome] = None
    accounting_entry: Optional[AccountingEntry] = None
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "invoice": self.invoice.to_dict(),
            "warnings": self.warnings,
        }
        if self.outcome is not None:
            data["routing"] = self.outcome.to_dict()
        if self.accounting_entry is not None:
            data["accounting_entry"] = self.accounting_entry.to_dict()
        return data


def route(amount: Decimal, auto_approve_limit: Decimal, rules: Iterable[ApprovalRule]) -> RoutingOutcome:
    """Pure routing decision for one amount."""
    if amount <= auto_approve_limit:
        return RoutingOutcome(RoutingDecision.AUTO_APPROVED)
    rule = resolve_rule(rules, amount)
    if rule is None:
        return RoutingOutcome(RoutingDecision.PENDING_APPROVAL)
    if rule.auto_approve:
        return RoutingOutcome(RoutingDecision.AUTO_APPROVED_BY_RULE, rule_level=rule.approval_level)
    return RoutingOutcome(
        RoutingDecision.PENDING_APPROVAL,
        rule_level=rule.approval_level,
        approver_id=rule.approver_id,
    )


def resolve_accounts(
    invoice: Invoice,
    company: Company,
    debit_account_code: Optional[str] = None,
    credit_account_code: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """Request value, then the invoice's own, then the company default."""
    debit = debit_account_code or invoice.debit_account_code or company.default_debit_account
    credit = credit_account_code or invoice.credit_account_code or company.default_credit_account
    return debit, credit


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ApprovalEngine:
    def __init__(
        self,
        db,
        resolver: RuleResolver,
        ledger: LedgerService,
        notifications: NotificationService,
        audit: AuditRecorder,
        events: EventBus,
    ):
        self.db = db
        self.resolver = resolver
        self.ledger = ledger
        self.notifications = notifications
        self.audit = audit
        self.events = events

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def decide(self, company: Company, amount: Decimal) -> RoutingOutcome:
        if amount <= company.auto_approve_limit:
            return RoutingOutcome(RoutingDecision.AUTO_APPROVED)
        return route(amount, company.auto_approve_limit, self.resolver.active_rules(company.id))

    def decide_at_creation(self, company: Company, amount: Decimal) -> RoutingOutcome:
        """
        Routing for a newly created invoice.

        Only the company limit can approve at creation. A matching rule just
        assigns its approver and level, even when it auto-approves; that rule
        fires on validation.
        """
        if amount <= company.auto_approve_limit:
            return RoutingOutcome(RoutingDecision.AUTO_APPROVED)
        rule = resolve_rule(self.resolver.active_rules(company.id), amount)
        if rule is None:
            return RoutingOutcome(RoutingDecision.PENDING_APPROVAL)
        return RoutingOutcome(
            RoutingDecision.PENDING_APPROVAL,
            rule_level=rule.approval_level,
            approver_id=rule.approver_id,
        )

    def routing_fields(
        self,
        outcome: RoutingOutcome,
        invoice: Invoice,
        company: Company,
    ) -> Dict[str, Any]:
        """Invoice columns implied by a routing outcome."""
        if outcome.is_auto_approved:
            debit, credit = resolve_accounts(invoice, company)
            if outcome.decision == RoutingDecision.AUTO_APPROVED:
                note = "Auto-approved: amount within company limit"
            else:
                note = f"Auto-approved by rule level {outcome.rule_level}"
            return {
                "status": InvoiceStatus.COMPLETED.value,
                "approval_status": ApprovalStatus.AUTO_APPROVED.value,
                "approved_at": _now(),
                "approval_notes": note,
                "approval_level": outcome.rule_level,
                "debit_account_code": debit,
                "credit_account_code": credit,
            }
        return {
            "status": InvoiceStatus.PENDING.value,
            "approval_status": ApprovalStatus.PENDING.value,
            "assigned_approver_id": outcome.approver_id,
            "approval_level": outcome.rule_level,
        }

    def after_routing(self, invoice: Invoice, outcome: RoutingOutcome, actor_id: Optional[str]) -> Optional[AccountingEntry]:
        """Side effects of a routing outcome already persisted on ``invoice``."""
        record_decision(outcome.decision.value)
        if outcome.is_auto_approved:
            entry = self.ledger.post_entry(
                invoice,
                invoice.debit_account_code,
                invoice.credit_account_code,
                actor_id,
            )
            self.events.emit(
                EventType.INVOICE_AUTO_APPROVED,
                invoice.company_id,
                {"invoice_id": invoice.id, **outcome.to_dict()},
                user_id=actor_id,
            )
            logger.info(f"Invoice {invoice.id} {outcome.decision.value} (level={outcome.rule_level})")
            return entry

        if outcome.approver_id:
            self.notifications.notify(
                company_id=invoice.company_id,
                user_id=outcome.approver_id,
                notification_type=NotificationType.APPROVAL_REQUIRED,
                title="Invoice awaiting your approval",
                message=(
                    f"Invoice {invoice.invoice_number or invoice.id} from "
                    f"{invoice.supplier_name or 'unknown supplier'} for {invoice.total_amount} "
                    f"requires approval at level {outcome.rule_level}"
                ),
                invoice_id=invoice.id,
            )
        else:
            logger.info(f"Invoice {invoice.id} pending with no assigned approver")
        self.events.emit(
            EventType.INVOICE_ROUTED,
            invoice.company_id,
            {"invoice_id": invoice.id, **outcome.to_dict()},
            user_id=actor_id,
        )
        return None

    def apply_routing(self, invoice: Invoice, company: Company, actor_id: Optional[str]) -> DecisionResult:
        """Route an existing pending invoice and persist the outcome."""
        ensure_pending(invoice)
        if invoice.total_amount is None:
            raise ValidationError("Invoice amount is required before validation")

        outcome = self.decide(company, invoice.total_amount)
        fields = self.routing_fields(outcome, invoice, company)
        assert_transition(invoice, Transition(
            status=fields["status"],
            approval_status=fields["approval_status"] if outcome.is_auto_approved else None,
        ))
        self._conditional_update(invoice.id, fields)
        updated = self._reload(invoice.id)

        entry = self.after_routing(updated, outcome, actor_id)
        action = AuditAction.AUTO_APPROVE_INVOICE if outcome.is_auto_approved else AuditAction.ROUTE_INVOICE
        self.audit.record(
            company_id=invoice.company_id,
            actor_id=actor_id,
            invoice_id=invoice.id,
            action=action,
            old_values={
                "status": invoice.status,
                "approval_status": invoice.approval_status,
                "assigned_approver_id": invoice.assigned_approver_id,
                "approval_level": invoice.approval_level,
            },
            new_values={
                "status": updated.status,
                "approval_status": updated.approval_status,
                "assigned_approver_id": updated.assigned_approver_id,
                "approval_level": updated.approval_level,
                "total_amount": amount_to_json(updated.total_amount),
                "auto_approve_limit": amount_to_json(company.auto_approve_limit),
                "routing": outcome.decision.value,
            },
        )
        return DecisionResult(invoice=updated, outcome=outcome, accounting_entry=entry)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def approve(
        self,
        invoice: Invoice,
        company: Company,
        actor_id: str,
        notes: Optional[str] = None,
        debit_account_code: Optional[str] = None,
        credit_account_code: Optional[str] = None,
    ) -> DecisionResult:
        ensure_pending(invoice)
        assert_transition(invoice, Transition(
            status=InvoiceStatus.COMPLETED.value,
            approval_status=ApprovalStatus.APPROVED.value,
        ))
        if invoice.total_amount is None:
            raise ValidationError("Invoice amount is required before approval")

        notes = (notes or "").strip() or None
        warnings = self._approver_warnings(invoice, actor_id)
        if warnings and not notes:
            raise ValidationError(
                "A note is required when acting on an invoice assigned to another approver",
                context={"assigned_approver_id": invoice.assigned_approver_id},
            )

        debit, credit = resolve_accounts(invoice, company, debit_account_code, credit_account_code)
        self._conditional_update(invoice.id, {
            "approval_status": ApprovalStatus.APPROVED.value,
            "status": InvoiceStatus.COMPLETED.value,
            "approver_id": actor_id,
            "approved_at": _now(),
            "approval_notes": notes,
            "debit_account_code": debit,
            "credit_account_code": credit,
        })
        updated = self._reload(invoice.id)
        record_decision(ApprovalStatus.APPROVED.value)

        entry = self.ledger.post_entry(updated, debit, credit, actor_id)
        self.audit.record(
            company_id=invoice.company_id,
            actor_id=actor_id,
            invoice_id=invoice.id,
            action=AuditAction.APPROVE_INVOICE,
            old_values={"approval_status": invoice.approval_status, "status": invoice.status},
            new_values={
                "approval_status": updated.approval_status,
                "status": updated.status,
                "approver_id": actor_id,
                "assigned_approver_id": invoice.assigned_approver_id,
                "is_assigned_approver": not warnings,
                "approval_note": notes,
                "debit_account_code": debit,
                "credit_account_code": credit,
            },
        )
        if invoice.created_by and invoice.created_by != actor_id:
            self.notifications.notify(
                company_id=invoice.company_id,
                user_id=invoice.created_by,
                notification_type=NotificationType.INVOICE_APPROVED,
                title="Invoice approved",
                message=f"Invoice {invoice.invoice_number or invoice.id} was approved",
                invoice_id=invoice.id,
            )
        self.events.emit(
            EventType.INVOICE_APPROVED,
            invoice.company_id,
            {"invoice_id": invoice.id, "approver_id": actor_id},
            user_id=actor_id,
        )
        logger.info(f"Invoice {invoice.id} approved by {actor_id}")
        return DecisionResult(invoice=updated, accounting_entry=entry, warnings=warnings)

    def reject(self, invoice: Invoice, actor_id: str, reason: str) -> DecisionResult:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required")
        ensure_pending(invoice)
        assert_transition(invoice, Transition(approval_status=ApprovalStatus.REJECTED.value))

        warnings = self._approver_warnings(invoice, actor_id)
        # status is left as is; only the decision changes
        self._conditional_update(invoice.id, {
            "approval_status": ApprovalStatus.REJECTED.value,
            "approver_id": actor_id,
            "approved_at": _now(),
            "approval_notes": reason,
        })
        updated = self._reload(invoice.id)
        record_decision(ApprovalStatus.REJECTED.value)

        self.audit.record(
            company_id=invoice.company_id,
            actor_id=actor_id,
            invoice_id=invoice.id,
            action=AuditAction.REJECT_INVOICE,
            old_values={"approval_status": invoice.approval_status},
            new_values={
                "approval_status": updated.approval_status,
                "approver_id": actor_id,
                "assigned_approver_id": invoice.assigned_approver_id,
                "is_assigned_approver": not warnings,
                "rejection_reason": reason,
            },
        )
        if invoice.created_by and invoice.created_by != actor_id:
            self.notifications.notify(
                company_id=invoice.company_id,
                user_id=invoice.created_by,
                notification_type=NotificationType.INVOICE_REJECTED,
                title="Invoice rejected",
                message=f"Invoice {invoice.invoice_number or invoice.id} was rejected: {reason}",
                invoice_id=invoice.id,
            )
        self.events.emit(
            EventType.INVOICE_REJECTED,
            invoice.company_id,
            {"invoice_id": invoice.id, "approver_id": actor_id, "reason": reason},
            user_id=actor_id,
        )
        logger.info(f"Invoice {invoice.id} rejected by {actor_id}")
        return DecisionResult(invoice=updated, warnings=warnings)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _approver_warnings(invoice: Invoice, actor_id: str) -> List[Dict[str, Any]]:
        if not invoice.assigned_approver_id or invoice.assigned_approver_id == actor_id:
            return []
        return [{
            "type": "approver_mismatch",
            "message": "You are not the approver assigned to this invoice",
            "assigned_approver_id": invoice.assigned_approver_id,
        }]

    def _conditional_update(self, invoice_id: str, fields: Dict[str, Any]) -> None:
        updated = self.db.update_invoice(
            invoice_id,
            expected_approval_status=ApprovalStatus.PENDING.value,
            exclude_status=InvoiceStatus.DELETED.value,
            **fields,
        )
        if not updated:
            logger.warning(f"Lost concurrent update on invoice {invoice_id}")
            raise ConflictError("Invoice has already been processed", context={"invoice_id": invoice_id})

    def _reload(self, invoice_id: str) -> Invoice:
        return Invoice.from_row(self.db.get_invoice(invoice_id))
