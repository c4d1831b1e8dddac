from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class MemberCreate(BaseModel):
    role: str = Field(..., description="ASM, RM, PARTNER or CUSTOMER")
    parent_id: Optional[str] = Field(None, description="Parent one tier above; defaults to the caller")
    first_name: str = Field(..., min_length=1, description="First name of the member")
    last_name: str = Field(..., min_length=1, description="Last name of the member")
    email: EmailStr = Field(..., description="Email address of the member")
    phone: str = Field(..., pattern=r"^\d{10}$", description="10-digit phone number")
    region: Optional[str] = Field(None, description="Sales region, inherited from the parent when omitted")


class ReassignRequest(BaseModel):
    tier: str = Field(..., description="Tier of both parents: ASM (moves RMs) or RM (moves partners)")
    old_parent_id: str
    new_parent_id: str
