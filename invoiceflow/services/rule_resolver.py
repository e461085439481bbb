"""Approval rule resolution.

Rules are scanned in ascending ``approval_level`` order and the first
active rule whose band contains the amount wins. Overlapping bands are
allowed; the lower level takes precedence. ``find_rule_conflicts`` reports
overlaps and gaps so administrators can see them.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from invoiceflow.core.models import ApprovalRule


logger = logging.getLogger(__name__)


def resolve_rule(rules: Iterable[ApprovalRule], amount: Decimal) -> Optional[ApprovalRule]:
    """First-match-wins scan; inclusive bounds; a null max is unbounded."""
    candidates = [rule for rule in rules if rule.is_active and rule.min_amount <= amount]
    candidates.sort(key=lambda rule: rule.approval_level)
    for rule in candidates:
        if rule.max_amount is None or amount <= rule.max_amount:
            return rule
    return None


def find_rule_conflicts(rules: Iterable[ApprovalRule]) -> List[Dict[str, object]]:
    """Describe overlapping bands, gaps and unusable rules among active rules."""
    active = sorted((rule for rule in rules if rule.is_active), key=lambda rule: rule.approval_level)
    warnings: List[Dict[str, object]] = []

    for rule in active:
        if not rule.auto_approve and not rule.approver_id:
            warnings.append({
                "type": "missing_approver",
                "levels": [rule.approval_level],
                "message": f"Level {rule.approval_level} neither auto-approves nor names an approver",
            })

    for i, first in enumerate(active):
        for second in active[i + 1:]:
            if _overlaps(first, second):
                warnings.append({
                    "type": "overlap",
                    "levels": [first.approval_level, second.approval_level],
                    "message": (
                        f"Levels {first.approval_level} and {second.approval_level} overlap; "
                        f"level {first.approval_level} takes precedence"
                    ),
                })

    by_min = sorted(active, key=lambda rule: rule.min_amount)
    covered_to: Optional[Decimal] = None
    for rule in by_min:
        if covered_to is not None and rule.min_amount > covered_to + Decimal("0.01"):
            warnings.append({
                "type": "gap",
                "levels": [rule.approval_level],
                "message": f"No rule covers amounts between {covered_to} and {rule.min_amount}",
            })
        if rule.max_amount is None:
            break
        if covered_to is None or rule.max_amount > covered_to:
            covered_to = rule.max_amount

    return warnings


def _overlaps(first: ApprovalRule, second: ApprovalRule) -> bool:
    first_max = first.max_amount
    second_max = second.max_amount
    if first_max is not None and second.min_amount > first_max:
        return False
    if second_max is not None and first.min_amount > second_max:
        return False
    return True


class RuleResolver:
    """Loads a company's active rules from the store and resolves one."""

    def __init__(self, db):
        self.db = db

    def active_rules(self, company_id: str) -> List[ApprovalRule]:
        return [ApprovalRule.from_row(row) for row in self.db.list_approval_rules(company_id, active_only=True)]

    def resolve(self, company_id: str, amount: Decimal) -> Optional[ApprovalRule]:
        rule = resolve_rule(self.active_rules(company_id), amount)
        if rule is None:
            logger.info("No approval rule matches %s for company %s", amount, company_id)
        return rule
