from beanie import Document, PydanticObjectId
from pydantic import EmailStr, Field, field_validator
from datetime import datetime
from enum import Enum
from typing import Optional
from loan_channel.utils.clock import utcnow
from pymongo import ASCENDING, IndexModel


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ASM = "ASM"
    RM = "RM"
    PARTNER = "PARTNER"
    CUSTOMER = "CUSTOMER"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    SUSPENDED = "SUSPENDED"


class User(Document):
    """Root of the role hierarchy. Every role is stored in ``users`` and
    tagged by Beanie's class id, so queries through a subclass only ever see
    that role."""

    first_name: str = Field(..., description="First name of the user")
    last_name: str = Field(..., description="Last name of the user")
    email: EmailStr = Field(..., description="Unique, lower-cased email address")
    phone: str = Field(..., pattern=r"^\d{10}$", description="Unique 10-digit phone number")
    role: Role = Field(..., description="Role tier of the user")
    status: UserStatus = Field(default=UserStatus.ACTIVE, description="Account status")
    employee_id: Optional[str] = Field(None, description="Sequential employee identifier, e.g. TLR0007")
    region: Optional[str] = Field(None, description="Sales region")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = Field(None)
    deleted_at: Optional[datetime] = Field(None, description="TTL marker, the record is purged once reached")

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def parent_id(self) -> Optional[PydanticObjectId]:
        """Id of the user one tier above, or None for admins."""
        return None

    class Settings:
        name = "users"
        is_root = True
        indexes = [
            IndexModel([("email", ASCENDING)], unique=True),
            IndexModel([("phone", ASCENDING)], unique=True),
            IndexModel([("admin_id", ASCENDING)]),
            IndexModel([("asm_id", ASCENDING)]),
            IndexModel([("rm_id", ASCENDING)]),
            IndexModel([("partner_id", ASCENDING)]),
            IndexModel([("deleted_at", ASCENDING)], expireAfterSeconds=0),
        ]


class Admin(User):
    role: Role = Role.SUPER_ADMIN


class Asm(User):
    role: Role = Role.ASM
    admin_id: Optional[PydanticObjectId] = Field(None, description="Admin owning this ASM")
    asm_code: Optional[str] = None

    def parent_id(self) -> Optional[PydanticObjectId]:
        return self.admin_id


class Rm(User):
    role: Role = Role.RM
    asm_id: Optional[PydanticObjectId] = Field(None, description="ASM owning this RM")
    rm_code: Optional[str] = None

    def parent_id(self) -> Optional[PydanticObjectId]:
        return self.asm_id


class Partner(User):
    role: Role = Role.PARTNER
    rm_id: Optional[PydanticObjectId] = Field(None, description="RM owning this partner")
    asm_id: Optional[PydanticObjectId] = Field(None, description="ASM above the owning RM (denormalized)")
    partner_code: Optional[str] = None

    def parent_id(self) -> Optional[PydanticObjectId]:
        return self.rm_id


class Customer(User):
    role: Role = Role.CUSTOMER
    partner_id: Optional[PydanticObjectId] = Field(None, description="Partner owning this customer")
    rm_id: Optional[PydanticObjectId] = None
    asm_id: Optional[PydanticObjectId] = None

    def parent_id(self) -> Optional[PydanticObjectId]:
        return self.partner_id


ROLE_MODELS = {
    Role.SUPER_ADMIN: Admin,
    Role.ASM: Asm,
    Role.RM: Rm,
    Role.PARTNER: Partner,
    Role.CUSTOMER: Customer,
}

# Child role one tier below each role
CHILD_ROLE = {
    Role.SUPER_ADMIN: Role.ASM,
    Role.ASM: Role.RM,
    Role.RM: Role.PARTNER,
    Role.PARTNER: Role.CUSTOMER,
}

PARENT_ROLE = {child: parent for parent, child in CHILD_ROLE.items()}
