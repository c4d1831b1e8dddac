from pydantic import BaseModel, Field
from typing import Optional, Union


class BulkTargetRequest(BaseModel):
    """Total monthly target issued by an admin and cascaded down the hierarchy."""
    month: Union[int, str] = Field(..., description="1-12, a numeric string or a month name such as 'June'")
    year: Union[int, str] = Field(..., description="Four digit year")
    total_target: Union[float, str] = Field(..., description="Non-negative amount to split across ASMs")


class RedistributeRequest(BaseModel):
    tier: str = Field(..., description="Tier of the member that changed: ASM, RM or PARTNER")
    changed_node_id: str = Field(..., description="Id of the member that joined, left or changed status")
    month: Union[int, str] = Field(..., description="1-12, a numeric string or a month name")
    year: Union[int, str] = Field(..., description="Four digit year")


class AchievementRequest(BaseModel):
    month: Union[int, str]
    year: Union[int, str]


class TeamBulkTargetRequest(BaseModel):
    """Total split by an ASM across its RMs, or by an RM across its partners."""
    month: Union[int, str] = Field(..., description="1-12, a numeric string or a month name")
    year: Union[int, str] = Field(..., description="Four digit year")
    total_target: Union[float, str] = Field(..., description="Non-negative amount to split across the team")
    parent_id: Optional[str] = Field(None, description="ASM or RM whose team is targeted; defaults to the caller")


class MemberTargetRequest(BaseModel):
    user_id: str = Field(..., description="ASM, RM or partner receiving the target")
    month: Union[int, str] = Field(..., description="1-12, a numeric string or a month name")
    year: Union[int, str] = Field(..., description="Four digit year")
    target_value: Union[float, str] = Field(..., description="Non-negative target for the member")
