"""Notification inbox endpoints."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from invoiceflow.api.deps import get_notification_service
from invoiceflow.core.auth import CurrentUser, get_current_user
from invoiceflow.services.errors import ValidationError
from invoiceflow.services.notifications import NotificationService


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class MarkReadRequest(BaseModel):
    notification_ids: Optional[List[str]] = None
    mark_all_read: bool = False


@router.get("")
def list_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False),
    user: CurrentUser = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service),
):
    return notifications.inbox(user.user_id, limit=limit, unread_only=unread_only)


@router.post("")
def mark_read(
    request: MarkReadRequest,
    user: CurrentUser = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service),
):
    if not request.mark_all_read and not request.notification_ids:
        raise ValidationError("Provide notification_ids or mark_all_read")
    updated = notifications.mark_read(
        user.user_id,
        notification_ids=request.notification_ids,
        mark_all=request.mark_all_read,
    )
    return {"updated": updated}
