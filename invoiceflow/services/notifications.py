"""
Invoiceflow Notifications

In-app notification inbox. Sends are fire-and-forget: a failed write is
logged and the calling workflow step still succeeds.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from invoiceflow.core.models import Notification


logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    APPROVAL_REQUIRED = "approval_required"
    INVOICE_APPROVED = "invoice_approved"
    INVOICE_REJECTED = "invoice_rejected"


class NotificationService:
    def __init__(self, db):
        self.db = db

    def notify(
        self,
        company_id: str,
        user_id: Optional[str],
        notification_type: NotificationType,
        title: str,
        message: str,
        invoice_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """Create a notification for one user. Returns None if nothing was sent."""
        if not user_id:
            return None
        try:
            row = self.db.create_notification({
                "company_id": company_id,
                "user_id": user_id,
                "invoice_id": invoice_id,
                "type": notification_type.value,
                "title": title,
                "message": message,
            })
        except Exception as exc:
            logger.error("Notification %s to %s failed: %s", notification_type.value, user_id, exc)
            return None
        return Notification.from_row(row)

    def inbox(self, user_id: str, limit: int = 20, unread_only: bool = False) -> Dict[str, Any]:
        rows = self.db.list_notifications(user_id, limit=limit, unread_only=unread_only)
        return {
            "notifications": [Notification.from_row(row).to_dict() for row in rows],
            "unread_count": self.db.count_unread_notifications(user_id),
        }

    def mark_read(
        self,
        user_id: str,
        notification_ids: Optional[List[str]] = None,
        mark_all: bool = False,
    ) -> int:
        """Only the owner's notifications are touched; foreign ids are ignored."""
        if mark_all:
            return self.db.mark_notifications_read(user_id)
        return self.db.mark_notifications_read(user_id, notification_ids or [])
