"""
Notification fan-out for application and target changes.

Every notification is persisted per recipient first (so inboxes survive a
lost webhook), then the event is optionally POSTed to an external webhook
such as a socket gateway. Webhook failures are logged and never roll back
the change that produced the event.
"""

import calendar
import logging
from typing import Any, Dict, List, Optional

import httpx
from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from loan_channel.core.config import settings
from loan_channel.core.exceptions import NotFoundError
from loan_channel.database.models.loan_application_model import ApplicationStatus, LoanApplication
from loan_channel.database.models.notification_model import Notification
from loan_channel.database.models.payout_model import Payout
from loan_channel.database.models.target_model import Target
from loan_channel.schemas.event_schema import ApplicationEvent
from loan_channel.utils.ids import as_object_id

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    ApplicationStatus.SUBMITTED: "Application {app_no} for {customer} was submitted for review",
    ApplicationStatus.DOC_INCOMPLETE: "Documents are incomplete on application {app_no}",
    ApplicationStatus.DOC_COMPLETE: "Documents are complete on application {app_no}",
    ApplicationStatus.UNDER_REVIEW: "Application {app_no} is under review",
    ApplicationStatus.APPROVED: "Application {app_no} for {customer} was approved",
    ApplicationStatus.AGREEMENT: "Application {app_no} moved to agreement",
    ApplicationStatus.DISBURSED: "Application {app_no} was disbursed",
    ApplicationStatus.REJECTED: "Application {app_no} for {customer} was rejected",
}


def _millis(value) -> int:
    return int(value.timestamp() * 1000)


class NotificationService:
    """Persists inbox notifications and forwards events to an optional webhook."""

    def __init__(self, webhook_url: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = 10.0):
        """
        Args:
            webhook_url: Endpoint receiving every event as JSON. None disables delivery.
            transport: Custom httpx transport, used by tests to capture requests.
            timeout: Per-request timeout in seconds.
        """
        self.webhook_url = webhook_url
        self.transport = transport
        self.timeout = timeout
        if self.webhook_url:
            logger.info("Notification webhook configured")
        else:
            logger.warning("NOTIFICATION_WEBHOOK_URL not set, notifications are stored only")

    async def _store(self, user_id: PydanticObjectId, type: str, category: str, title: str,
                     message: str, data: Dict[str, Any], notification_id: str) -> Notification:
        existing = await Notification.find_one({"user_id": user_id, "notification_id": notification_id})
        if existing is not None:
            return existing
        notification = Notification(
            user_id=user_id,
            type=type,
            category=category,
            title=title[:200],
            message=message[:1000],
            data=data,
            notification_id=notification_id,
        )
        try:
            await notification.insert()
        except DuplicateKeyError:
            # Lost a race with an identical notification
            return await Notification.find_one({"user_id": user_id, "notification_id": notification_id})
        return notification

    async def _post_webhook(self, event_type: str, payload: Dict[str, Any]) -> bool:
        """
        POST an event to the configured webhook.

        Returns:
            bool: True when the webhook accepted the event, False when it is not
            configured or delivery failed.
        """
        if not self.webhook_url:
            return False
        body = {"event": event_type, "data": payload}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.webhook_url, json=body)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Webhook delivery of {event_type} failed: {str(e)}")
            return False
        logger.info(f"Webhook delivered {event_type}")
        return True

    async def publish_application_event(self, event: ApplicationEvent) -> List[Notification]:
        """Store one notification per recipient of a status change and forward the event."""
        template = _STATUS_MESSAGES.get(event.to_status, "Application {app_no} moved to " + event.to_status.value)
        message = template.format(app_no=event.app_no, customer=event.customer_name or "customer")
        if event.note:
            message = f"{message}. Note: {event.note}"
        data = {
            "application_id": str(event.application_id),
            "app_no": event.app_no,
            "from_status": event.from_status.value if event.from_status else None,
            "to_status": event.to_status.value,
            "approved_loan_amount": event.approved_loan_amount,
        }

        stored = []
        for recipient in event.recipients:
            stored.append(await self._store(
                user_id=recipient.user_id,
                type="application",
                category="loan",
                title=f"Application {event.to_status.value.replace('_', ' ').title()}",
                message=message,
                data=data,
                notification_id=event.notification_key,
            ))
        logger.info(f"Application {event.app_no} {event.to_status.value}: notified {len(stored)} recipients")

        await self._post_webhook("application.status_changed", event.model_dump(mode="json"))
        return stored

    async def publish_target_updates(self, targets: List[Target],
                                     actor_id: Optional[PydanticObjectId] = None) -> List[Notification]:
        stored = []
        for target in targets:
            if target.assigned_to == actor_id:
                continue
            period = f"{calendar.month_name[target.month]} {target.year}"
            stored.append(await self._store(
                user_id=target.assigned_to,
                type="target",
                category="system",
                title="Target updated",
                message=f"Your {period} target is now {target.target_value:,.2f}",
                data={
                    "target_id": str(target.id),
                    "month": target.month,
                    "year": target.year,
                    "target_value": target.target_value,
                },
                notification_id=f"target_{target.id}_{_millis(target.updated_at)}",
            ))
        if targets:
            await self._post_webhook("targets.updated", {
                "actor_id": str(actor_id) if actor_id else None,
                "targets": [
                    {
                        "assigned_to": str(target.assigned_to),
                        "role": target.role.value,
                        "month": target.month,
                        "year": target.year,
                        "target_value": target.target_value,
                    }
                    for target in targets
                ],
            })
        return stored

    async def notify_document_change(self, application: LoanApplication, doc_type: str,
                                     recipient_id: PydanticObjectId) -> Notification:
        index = application.find_doc(doc_type)
        doc = application.docs[index]
        return await self._store(
            user_id=recipient_id,
            type="document",
            category="document",
            title=f"Document {doc.status.value.title()}",
            message=f"{doc.doc_type} on application {application.app_no} is {doc.status.value}"
                    + (f": {doc.remarks}" if doc.remarks else ""),
            data={"application_id": str(application.id), "doc_type": doc.doc_type, "status": doc.status.value},
            notification_id=f"doc_{application.id}_{doc.doc_type}_{_millis(doc.updated_at)}",
        )

    async def notify_payout(self, payout: Payout) -> Notification:
        return await self._store(
            user_id=payout.partner_id,
            type="payout",
            category="payout",
            title="Payout recorded",
            message=f"Payout of {payout.amount:,.2f} on application {payout.application} is {payout.pay_out_status.value}",
            data={"payout_id": str(payout.id), "application_id": str(payout.application), "amount": payout.amount},
            notification_id=f"payout_{payout.id}_{_millis(payout.updated_at)}",
        )

    async def list_notifications(self, user_id: PydanticObjectId, unread_only: bool = False,
                                 limit: int = 50) -> List[Notification]:
        query: Dict[str, Any] = {"user_id": user_id}
        if unread_only:
            query["read"] = False
        return await Notification.find(query).sort("-timestamp").limit(limit).to_list()

    async def mark_read(self, user_id: PydanticObjectId, notification_id: Any) -> Notification:
        notification = await Notification.get(as_object_id(notification_id, "Notification"))
        if notification is None or notification.user_id != user_id:
            raise NotFoundError(f"Notification {notification_id} not found")
        if not notification.read:
            notification.read = True
            await notification.save()
        return notification


notification_service = NotificationService(webhook_url=settings.NOTIFICATION_WEBHOOK_URL)
