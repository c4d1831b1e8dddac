from beanie import Document, PydanticObjectId
from pydantic import Field
from datetime import datetime
from enum import Enum
from typing import Optional
from loan_channel.utils.clock import utcnow
from pymongo import ASCENDING, IndexModel


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"


class Payout(Document):
    application: PydanticObjectId = Field(..., description="Application the commission is paid for")
    partner_id: PydanticObjectId = Field(..., description="Partner receiving the commission (denormalized)")
    amount: float = Field(..., ge=0)
    pay_out_status: PayoutStatus = Field(default=PayoutStatus.PENDING)
    note: Optional[str] = None
    added_by: PydanticObjectId = Field(..., description="RM who recorded the payout")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "payouts"
        indexes = [
            IndexModel([("application", ASCENDING), ("partner_id", ASCENDING)], unique=True),
        ]
