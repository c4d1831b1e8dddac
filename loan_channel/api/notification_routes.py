from fastapi import APIRouter, Depends, Query
from typing import Any, Dict
import logging

from loan_channel.core.auth_dependencies import get_current_active_user
from loan_channel.database.models.user_model import User
from loan_channel.helpers.response_builder import serialize_document, serialize_documents
from loan_channel.services.notification_service import NotificationService, notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def get_notification_service() -> NotificationService:
    return notification_service


# Lists the caller's inbox, newest first
@router.get("", response_model=Dict[str, Any])
async def list_notifications(
    unread_only: bool = Query(default=False, description="Only return unread notifications"),
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(get_current_active_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    notifications = await notifier.list_notifications(current_user.id, unread_only=unread_only, limit=limit)
    return {"count": len(notifications), "notifications": serialize_documents(notifications)}


@router.post("/{notification_id}/read", response_model=Dict[str, Any])
async def mark_notification_read(
    notification_id: str,
    current_user: User = Depends(get_current_active_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    notification = await notifier.mark_read(current_user.id, notification_id)
    return {"message": "Notification marked as read", "notification": serialize_document(notification)}
