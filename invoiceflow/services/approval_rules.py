"""
Approval rule administration.

Rules are never removed; deleting one clears ``is_active``. Approval
levels are unique per company, including inactive rules. Every response
carries the current overlap/gap warnings for the company's active rules.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from invoiceflow.core.audit import AuditAction, AuditRecorder
from invoiceflow.core.auth import CurrentUser
from invoiceflow.core.database import DuplicateRecordError
from invoiceflow.core.event_bus import EventBus, EventType
from invoiceflow.core.models import ApprovalRule, User
from invoiceflow.core.permissions import Permission, ensure_same_company, require_permission
from invoiceflow.services.commands import ApprovalRuleCreate, ApprovalRuleUpdate, changes, parse_command
from invoiceflow.services.errors import ConflictError, NotFoundError, ValidationError
from invoiceflow.services.rule_resolver import RuleResolver, find_rule_conflicts

logger = logging.getLogger(__name__)


class ApprovalRuleService:
    def __init__(self, db, resolver: RuleResolver, audit: AuditRecorder, events: EventBus):
        self.db = db
        self.resolver = resolver
        self.audit = audit
        self.events = events

    def _load(self, actor: CurrentUser, rule_id: str) -> ApprovalRule:
        rule = ApprovalRule.from_row(self.db.get_approval_rule(rule_id))
        if rule is None:
            raise NotFoundError("Approval rule", rule_id)
        ensure_same_company(actor, rule.company_id, "approval rule")
        return rule

    def _check_approver(self, actor: CurrentUser, approver_id: str, field_name: str) -> None:
        approver = User.from_row(self.db.get_user(approver_id))
        if approver is None or approver.company_id != actor.company_id:
            raise ValidationError(f"{field_name} must reference a user of this company")
        if not approver.is_active:
            raise ValidationError(f"{field_name} references an inactive user")

    def warnings(self, company_id: str) -> List[Dict[str, object]]:
        warnings = find_rule_conflicts(self.resolver.active_rules(company_id))
        for warning in warnings:
            logger.warning(f"Approval rule configuration for {company_id}: {warning['message']}")
        return warnings

    def list_rules(self, actor: CurrentUser, include_inactive: bool = False) -> Dict[str, Any]:
        require_permission(actor, Permission.VIEW_RULES)
        rows = self.db.list_approval_rules(actor.company_id, active_only=not include_inactive)
        return {
            "rules": [ApprovalRule.from_row(row).to_dict() for row in rows],
            "warnings": find_rule_conflicts(self.resolver.active_rules(actor.company_id)),
        }

    def get_rule(self, actor: CurrentUser, rule_id: str) -> Dict[str, Any]:
        require_permission(actor, Permission.VIEW_RULES)
        return self._load(actor, rule_id).to_dict()

    def create_rule(self, actor: CurrentUser, payload: Any) -> Dict[str, Any]:
        require_permission(actor, Permission.MANAGE_RULES)
        command = parse_command(ApprovalRuleCreate, payload)
        if command.max_amount is not None and command.max_amount < command.min_amount:
            raise ValidationError("max_amount must be greater than or equal to min_amount")
        if not command.auto_approve and not command.approver_id:
            logger.info(f"Rule level {command.approval_level} for {actor.company_id} has no approver")
        for name in ("approver_id", "escalation_approver_id"):
            value = getattr(command, name)
            if value:
                self._check_approver(actor, value, name)

        data = command.model_dump()
        data["company_id"] = actor.company_id
        try:
            row = self.db.create_approval_rule(data)
        except DuplicateRecordError:
            raise ConflictError(
                f"Approval level {command.approval_level} already exists",
                context={"approval_level": command.approval_level},
            )
        rule = ApprovalRule.from_row(row)

        self.audit.record(
            company_id=actor.company_id,
            actor_id=actor.user_id,
            action=AuditAction.CREATE_APPROVAL_RULE,
            resource_type="approval_rule",
            resource_id=rule.id,
            new_values=rule.to_dict(),
        )
        self.events.emit(EventType.APPROVAL_RULE_CREATED, actor.company_id, {"rule_id": rule.id}, actor.user_id)
        return {"rule": rule.to_dict(), "warnings": self.warnings(actor.company_id)}

    def update_rule(self, actor: CurrentUser, rule_id: str, payload: Any) -> Dict[str, Any]:
        require_permission(actor, Permission.MANAGE_RULES)
        updates = changes(parse_command(ApprovalRuleUpdate, payload))
        if not updates:
            raise ValidationError("No rule fields supplied")
        for name in ("approval_level", "min_amount", "auto_approve", "is_active", "priority", "approval_deadline_hours"):
            if name in updates and updates[name] is None:
                raise ValidationError(f"{name} cannot be null")

        rule = self._load(actor, rule_id)
        min_amount = updates.get("min_amount", rule.min_amount)
        max_amount = updates.get("max_amount", rule.max_amount)
        if max_amount is not None and max_amount < min_amount:
            raise ValidationError("max_amount must be greater than or equal to min_amount")
        for name in ("approver_id", "escalation_approver_id"):
            if updates.get(name):
                self._check_approver(actor, updates[name], name)

        try:
            self.db.update_approval_rule(rule.id, **updates)
        except DuplicateRecordError:
            raise ConflictError(
                f"Approval level {updates.get('approval_level')} already exists",
                context={"approval_level": updates.get("approval_level")},
            )
        updated = ApprovalRule.from_row(self.db.get_approval_rule(rule.id))

        self.audit.record(
            company_id=actor.company_id,
            actor_id=actor.user_id,
            action=AuditAction.UPDATE_APPROVAL_RULE,
            resource_type="approval_rule",
            resource_id=rule.id,
            old_values=rule.to_dict(),
            new_values=updated.to_dict(),
        )
        self.events.emit(EventType.APPROVAL_RULE_UPDATED, actor.company_id, {"rule_id": rule.id}, actor.user_id)
        return {"rule": updated.to_dict(), "warnings": self.warnings(actor.company_id)}

    def delete_rule(self, actor: CurrentUser, rule_id: str) -> Dict[str, Any]:
        """Soft delete: the rule stops matching but keeps its level."""
        require_permission(actor, Permission.MANAGE_RULES)
        rule = self._load(actor, rule_id)
        if not rule.is_active:
            raise ConflictError("Approval rule is already inactive", context={"rule_id": rule.id})

        self.db.update_approval_rule(rule.id, is_active=False)
        self.audit.record(
            company_id=actor.company_id,
            actor_id=actor.user_id,
            action=AuditAction.DELETE_APPROVAL_RULE,
            resource_type="approval_rule",
            resource_id=rule.id,
            old_values={"is_active": True, "approval_level": rule.approval_level},
            new_values={"is_active": False},
        )
        self.events.emit(EventType.APPROVAL_RULE_DELETED, actor.company_id, {"rule_id": rule.id}, actor.user_id)
        return {"deleted": True, "rule_id": rule.id, "warnings": self.warnings(actor.company_id)}
