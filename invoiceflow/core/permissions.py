"""Role permission matrix and company-boundary checks."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, FrozenSet

from invoiceflow.core.models import Role
from invoiceflow.services.errors import ForbiddenError


logger = logging.getLogger(__name__)


class Permission(str, Enum):
    VIEW_RULES = "view_rules"
    MANAGE_RULES = "manage_rules"
    DECIDE_INVOICE = "decide_invoice"  # approve / reject
    DELETE_INVOICE = "delete_invoice"
    EDIT_INVOICE = "edit_invoice"  # pending only, own company
    VIEW_USERS = "view_users"
    MANAGE_USERS = "manage_users"
    UPDATE_COMPANY_CONFIG = "update_company_config"


ROLE_PERMISSIONS: Dict[str, FrozenSet[Permission]] = {
    Role.SUPER_ADMIN.value: frozenset(Permission),
    Role.MASTER.value: frozenset({
        Permission.VIEW_RULES,
        Permission.DECIDE_INVOICE,
        Permission.DELETE_INVOICE,
        Permission.EDIT_INVOICE,
        Permission.VIEW_USERS,
    }),
    Role.USER.value: frozenset({
        Permission.EDIT_INVOICE,
    }),
}


def has_permission(role: str, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def require_permission(actor, permission: Permission) -> None:
    """Raise ForbiddenError unless the actor's role grants the permission."""
    if not has_permission(actor.role, permission):
        logger.info(
            "Denied %s for user %s with role %s",
            permission.value,
            actor.user_id,
            actor.role,
        )
        raise ForbiddenError(
            "Your role does not allow this action",
            context={"permission": permission.value, "role": actor.role},
        )


def ensure_same_company(actor, company_id: str, resource: str = "record") -> None:
    """Cross-company access is denied without touching state or audit."""
    if actor.company_id != company_id:
        logger.warning(
            "Cross-company access to %s denied for user %s (company %s)",
            resource,
            actor.user_id,
            actor.company_id,
        )
        raise ForbiddenError(f"Access denied to this {resource}")
