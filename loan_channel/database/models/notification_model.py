from beanie import Document, PydanticObjectId
from pydantic import Field
from datetime import datetime
from typing import Optional, Dict, Any
from loan_channel.utils.clock import utcnow
from pymongo import ASCENDING, DESCENDING, IndexModel


class Notification(Document):
    user_id: PydanticObjectId = Field(..., description="Recipient")
    type: str = Field(..., description="application, document, target, payout, partner or info")
    category: str = Field(default="other", description="loan, document, partner, payout, system or other")
    title: str = Field(..., max_length=200)
    message: str = Field(..., max_length=1000)
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = Field(default=False)
    timestamp: datetime = Field(default_factory=utcnow)
    notification_id: Optional[str] = Field(None, description="Deduplication key, unique per recipient")

    class Settings:
        name = "notifications"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("read", ASCENDING), ("timestamp", DESCENDING)]),
            IndexModel(
                [("user_id", ASCENDING), ("notification_id", ASCENDING)],
                unique=True,
                name="unique_user_notification",
            ),
        ]
