from beanie import Document, PydanticObjectId
from pydantic import Field, field_validator
from datetime import datetime
from typing import Optional
from loan_channel.utils.clock import utcnow
from pymongo import ASCENDING, IndexModel

from loan_channel.database.models.user_model import Role

TARGET_ROLES = (Role.ASM, Role.RM, Role.PARTNER)


class Target(Document):
    assigned_to: PydanticObjectId = Field(..., description="User the target belongs to")
    assigned_by: Optional[PydanticObjectId] = Field(None, description="User who issued the target")
    role: Role = Field(..., description="Tier of the assignee (ASM, RM or PARTNER)")
    month: int = Field(..., ge=1, le=12, description="1 = January ... 12 = December")
    year: int = Field(..., ge=1000, le=9999)
    target_value: float = Field(..., ge=0, description="Monthly goal, e.g. 200000")
    achieved_value: float = Field(default=0, description="Denormalized, recomputed from disbursed applications")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("role")
    @classmethod
    def _target_role(cls, value: Role) -> Role:
        if value not in TARGET_ROLES:
            raise ValueError(f"Targets cannot be assigned to role {value.value}")
        return value

    class Settings:
        name = "targets"
        indexes = [
            IndexModel(
                [("assigned_to", ASCENDING), ("role", ASCENDING), ("month", ASCENDING), ("year", ASCENDING)],
                unique=True,
                name="unique_target_per_month",
            ),
            IndexModel([("month", ASCENDING), ("year", ASCENDING)]),
        ]
