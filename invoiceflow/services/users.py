"""User management within a company."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from invoiceflow.core.audit import AuditAction, AuditRecorder
from invoiceflow.core.auth import CurrentUser, hash_password
from invoiceflow.core.database import DuplicateRecordError
from invoiceflow.core.event_bus import EventBus, EventType
from invoiceflow.core.models import User
from invoiceflow.core.permissions import Permission, ensure_same_company, require_permission
from invoiceflow.services.commands import UserCreate, UserUpdate, changes, parse_command
from invoiceflow.services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db, audit: AuditRecorder, events: EventBus):
        self.db = db
        self.audit = audit
        self.events = events

    def _load(self, actor: CurrentUser, user_id: str) -> User:
        user = User.from_row(self.db.get_user(user_id))
        if user is None:
            raise NotFoundError("User", user_id)
        ensure_same_company(actor, user.company_id, "user")
        return user

    def list_users(self, actor: CurrentUser) -> List[Dict[str, Any]]:
        require_permission(actor, Permission.VIEW_USERS)
        return [User.from_row(row).to_dict() for row in self.db.list_users(actor.company_id)]

    def get_user(self, actor: CurrentUser, user_id: str) -> Dict[str, Any]:
        if user_id != actor.user_id:
            require_permission(actor, Permission.VIEW_USERS)
        return self._load(actor, user_id).to_dict()

    def create_user(self, actor: CurrentUser, payload: Any) -> Dict[str, Any]:
        require_permission(actor, Permission.MANAGE_USERS)
        command = parse_command(UserCreate, payload)
        if self.db.get_user_by_email(command.email):
            raise ConflictError("A user with this email already exists", context={"email": command.email})

        data = {
            "company_id": actor.company_id,
            "name": command.name,
            "email": command.email,
            "role": command.role.value,
            "department": command.department,
            "password_hash": hash_password(command.password) if command.password else None,
        }
        try:
            user = User.from_row(self.db.create_user(data))
        except DuplicateRecordError:
            raise ConflictError("A user with this email already exists", context={"email": command.email})

        self.audit.record(
            company_id=actor.company_id,
            actor_id=actor.user_id,
            action=AuditAction.CREATE_USER,
            resource_type="user",
            resource_id=user.id,
            new_values=user.to_dict(),
        )
        self.events.emit(EventType.USER_CREATED, actor.company_id, {"user_id": user.id}, actor.user_id)
        return user.to_dict()

    def update_user(self, actor: CurrentUser, user_id: str, payload: Any) -> Dict[str, Any]:
        require_permission(actor, Permission.MANAGE_USERS)
        updates = changes(parse_command(UserUpdate, payload))
        if not updates:
            raise ValidationError("No user fields supplied")
        for name in ("name", "role", "is_active"):
            if name in updates and updates[name] is None:
                raise ValidationError(f"{name} cannot be null")

        user = self._load(actor, user_id)
        if user.id == actor.user_id and updates.get("is_active") is False:
            raise ValidationError("You cannot deactivate your own account")

        fields = dict(updates)
        if "role" in fields:
            fields["role"] = fields["role"].value
        password = fields.pop("password", None)
        if password:
            fields["password_hash"] = hash_password(password)
        self.db.update_user(user.id, **fields)
        updated = User.from_row(self.db.get_user(user.id))

        self.audit.record(
            company_id=actor.company_id,
            actor_id=actor.user_id,
            action=AuditAction.UPDATE_USER,
            resource_type="user",
            resource_id=user.id,
            old_values=user.to_dict(),
            new_values=updated.to_dict(),
        )
        self.events.emit(EventType.USER_UPDATED, actor.company_id, {"user_id": user.id}, actor.user_id)
        return updated.to_dict()

    def deactivate_user(self, actor: CurrentUser, user_id: str) -> Dict[str, Any]:
        """Users are deactivated, never removed, so audit references stay valid."""
        require_permission(actor, Permission.MANAGE_USERS)
        user = self._load(actor, user_id)
        if user.id == actor.user_id:
            raise ValidationError("You cannot deactivate your own account")
        if not user.is_active:
            raise ConflictError("User is already inactive", context={"user_id": user.id})

        self.db.update_user(user.id, is_active=False)
        self.audit.record(
            company_id=actor.company_id,
            actor_id=actor.user_id,
            action=AuditAction.DELETE_USER,
            resource_type="user",
            resource_id=user.id,
            old_values={"is_active": True},
            new_values={"is_active": False},
        )
        self.events.emit(EventType.USER_DEACTIVATED, actor.company_id, {"user_id": user.id}, actor.user_id)
        logger.info(f"User {user.id} deactivated by {actor.user_id}")
        return {"deactivated": True, "user_id": user.id}
