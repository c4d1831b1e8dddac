from pydantic import BaseModel, Field
from beanie import PydanticObjectId
from datetime import datetime
from typing import List, Optional

from loan_channel.database.models.user_model import Role
from loan_channel.database.models.loan_application_model import ApplicationStatus, LoanType


class Recipient(BaseModel):
    user_id: PydanticObjectId
    role: Role


class ApplicationEvent(BaseModel):
    """Everything the notification fan-out needs to tell interested parties
    about one status change."""

    application_id: PydanticObjectId
    app_no: str
    loan_type: LoanType
    customer_name: str = ""
    from_status: Optional[ApplicationStatus] = None
    to_status: ApplicationStatus
    actor_id: Optional[PydanticObjectId] = None
    note: Optional[str] = None
    approved_loan_amount: Optional[float] = None
    at: datetime
    recipients: List[Recipient] = Field(default_factory=list)

    @property
    def notification_key(self) -> str:
        return f"{self.application_id}_{self.to_status.value}_{int(self.at.timestamp() * 1000)}"
