"""Company policy: auto-approve limit and default ledger accounts."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from invoiceflow.core.audit import AuditAction, AuditRecorder
from invoiceflow.core.auth import CurrentUser, hash_password
from invoiceflow.core.event_bus import EventBus, EventType
from invoiceflow.core.models import Company, Role, amount_to_db, to_amount
from invoiceflow.core.permissions import Permission, require_permission
from invoiceflow.services.commands import CompanyConfigUpdate, changes, parse_command
from invoiceflow.services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class CompanyService:
    def __init__(self, db, audit: AuditRecorder, events: EventBus):
        self.db = db
        self.audit = audit
        self.events = events

    def get_company(self, company_id: str) -> Company:
        company = Company.from_row(self.db.get_company(company_id))
        if company is None:
            raise NotFoundError("Company", company_id)
        return company

    def get_config(self, actor: CurrentUser) -> Dict[str, Any]:
        return self.get_company(actor.company_id).to_dict()

    def update_config(self, actor: CurrentUser, payload: Any) -> Dict[str, Any]:
        require_permission(actor, Permission.UPDATE_COMPANY_CONFIG)
        updates = changes(parse_command(CompanyConfigUpdate, payload))
        if not updates:
            raise ValidationError("No configuration fields supplied")

        before = self.get_company(actor.company_id)
        if "auto_approve_limit" in updates:
            # Clearing the limit means no company-level auto-approval
            updates["auto_approve_limit"] = amount_to_db(to_amount(updates["auto_approve_limit"]) or to_amount(0))
        self.db.update_company(before.id, **updates)
        after = self.get_company(before.id)

        keys = sorted(updates)
        self.audit.record(
            company_id=before.id,
            actor_id=actor.user_id,
            action=AuditAction.UPDATE_COMPANY_CONFIG,
            resource_type="company",
            resource_id=before.id,
            old_values={k: before.to_dict()[k] for k in keys},
            new_values={k: after.to_dict()[k] for k in keys},
        )
        self.events.emit(EventType.COMPANY_UPDATED, before.id, {"fields": keys}, actor.user_id)
        logger.info(f"Company {before.id} config updated: {', '.join(keys)}")
        return after.to_dict()


def bootstrap_company(
    db,
    name: str,
    admin_name: str,
    admin_email: str,
    admin_password: str,
    tax_id: Optional[str] = None,
    auto_approve_limit: Any = 0,
) -> Dict[str, Any]:
    """Create a company with its first super_admin. Used by scripts/bootstrap_company.py."""
    email = admin_email.strip().lower()
    if db.get_user_by_email(email):
        raise ValidationError(f"A user with email {email} already exists")
    try:
        limit = to_amount(auto_approve_limit) or to_amount(0)
    except ValueError as exc:
        raise ValidationError(str(exc))
    if limit < 0:
        raise ValidationError("auto_approve_limit must be zero or positive")
    company = db.create_company({
        "name": name,
        "tax_id": tax_id,
        "auto_approve_limit": amount_to_db(limit),
    })
    admin = db.create_user({
        "company_id": company["id"],
        "name": admin_name,
        "email": email,
        "role": Role.SUPER_ADMIN.value,
        "password_hash": hash_password(admin_password),
    })
    logger.info(f"Bootstrapped company {company['id']} with admin {admin['id']}")
    return {"company": Company.from_row(company).to_dict(), "admin_id": admin["id"]}
