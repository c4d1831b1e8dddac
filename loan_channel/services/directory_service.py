import logging
from typing import Any, Dict, List, Optional

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from loan_channel.core.exceptions import ConflictError, NotFoundError, ValidationError
from loan_channel.database.models.loan_application_model import LoanApplication
from loan_channel.database.models.user_model import (
    Admin,
    Asm,
    Customer,
    Partner,
    Rm,
    Role,
    User,
    UserStatus,
    CHILD_ROLE,
    PARENT_ROLE,
    ROLE_MODELS,
)
from loan_channel.schemas.event_schema import Recipient
from loan_channel.services.counter_service import counter_service
from loan_channel.utils.clock import utcnow
from loan_channel.utils.codes import EMPLOYEE_ID_PREFIXES, make_role_code
from loan_channel.utils.ids import as_object_id

logger = logging.getLogger(__name__)

# Field on the child document that points at its parent
PARENT_LINK_FIELD = {
    Role.ASM: "admin_id",
    Role.RM: "asm_id",
    Role.PARTNER: "rm_id",
    Role.CUSTOMER: "partner_id",
}

_CODE_FIELD = {
    Role.ASM: "asm_code",
    Role.RM: "rm_code",
    Role.PARTNER: "partner_code",
}

_PROFILE_FIELDS = ("first_name", "last_name", "email", "phone", "region")


class DirectoryService:
    """Users and the links between them.

    Parent links are plain ObjectIds; every lookup here goes back to the
    ``users`` collection instead of trusting a cached relationship.
    """

    async def find_user(self, user_id: Any) -> Optional[User]:
        user = await User.get(as_object_id(user_id, "User"), with_children=True)
        if user is None or user.deleted_at is not None:
            return None
        return user

    # Loads a live user, optionally insisting on its role
    async def get_user(self, user_id: Any, role: Optional[Role] = None) -> User:
        user = await self.find_user(user_id)
        label = role.value if role else "User"
        if user is None or (role is not None and user.role != role):
            logger.warning(f"{label} {user_id} not found")
            raise NotFoundError(f"{label} {user_id} not found")
        return user

    async def parent_of(self, user: User) -> Optional[User]:
        parent_id = user.parent_id()
        if parent_id is None:
            return None
        return await self.find_user(parent_id)

    async def children_of(self, parent: User, active_only: bool = True) -> List[User]:
        """Direct subordinates of ``parent`` in creation order."""
        child_role = CHILD_ROLE.get(parent.role)
        if child_role is None:
            return []
        query: Dict[str, Any] = {PARENT_LINK_FIELD[child_role]: parent.id, "deleted_at": None}
        if active_only:
            query["status"] = UserStatus.ACTIVE.value
        model = ROLE_MODELS[child_role]
        return await model.find(query).sort("_id").to_list()

    async def root_admin_id(self, user: User) -> Optional[PydanticObjectId]:
        """Walk up the links until an admin is reached."""
        current: Optional[User] = user
        while current is not None and current.role != Role.SUPER_ADMIN:
            current = await self.parent_of(current)
        return current.id if current else None

    async def admins(self) -> List[Admin]:
        return await Admin.find({"deleted_at": None}).sort("_id").to_list()

    async def _ensure_unique_contact(self, email: str, phone: str) -> None:
        existing = await User.find_one(
            {"$or": [{"email": email.lower()}, {"phone": phone}]},
            with_children=True,
        )
        if existing is not None:
            field = "email" if existing.email == email.lower() else "phone"
            logger.warning(f"Duplicate {field} rejected for new user")
            raise ConflictError(f"A user with this {field} already exists", details={"field": field})

    async def _insert(self, user: User) -> User:
        try:
            await user.insert()
        except DuplicateKeyError as e:
            logger.warning(f"Duplicate key on user insert: {e}")
            raise ConflictError("A user with this email or phone already exists")
        return user

    def _profile(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        missing = [name for name in ("first_name", "last_name", "email", "phone") if not profile.get(name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        return {name: profile[name] for name in _PROFILE_FIELDS if profile.get(name) is not None}

    # Creates the top-level admin; only the bootstrap script calls this
    async def create_admin(self, profile: Dict[str, Any]) -> Admin:
        fields = self._profile(profile)
        await self._ensure_unique_contact(fields["email"], fields["phone"])
        fields["employee_id"] = await counter_service.next_code(EMPLOYEE_ID_PREFIXES[Role.SUPER_ADMIN])
        admin = await self._insert(Admin(**fields))
        logger.info(f"Admin {admin.employee_id} created with ID: {admin.id}")
        return admin

    async def create_member(self, role: Role, parent_id: Any, profile: Dict[str, Any]) -> User:
        """Create an ASM, RM, partner or customer under an ACTIVE parent of the tier above."""
        if role not in PARENT_ROLE:
            raise ValidationError(f"Members cannot be created with role {role.value}")
        fields = self._profile(profile)
        parent = await self.get_user(parent_id, PARENT_ROLE[role])
        if parent.status != UserStatus.ACTIVE:
            raise ValidationError(f"{parent.role.value} {parent.id} is not active")
        await self._ensure_unique_contact(fields["email"], fields["phone"])

        fields[PARENT_LINK_FIELD[role]] = parent.id
        if role == Role.PARTNER:
            fields["asm_id"] = parent.asm_id
        elif role == Role.CUSTOMER:
            fields["rm_id"] = parent.rm_id
            fields["asm_id"] = parent.asm_id
        if role in _CODE_FIELD:
            fields[_CODE_FIELD[role]] = make_role_code(role)
        fields.setdefault("region", parent.region)
        fields["employee_id"] = await counter_service.next_code(EMPLOYEE_ID_PREFIXES[role])

        member = await self._insert(ROLE_MODELS[role](**fields))
        logger.info(f"{role.value} {member.employee_id} created under {parent.role.value} {parent.id}")
        return member

    async def set_status(self, user: User, status: UserStatus) -> User:
        if user.status == status:
            return user
        previous = user.status
        user.status = status
        user.updated_at = utcnow()
        await user.save()
        logger.info(f"{user.role.value} {user.id} status changed from {previous.value} to {status.value}")
        return user

    async def move_subordinates(self, old_parent: User, new_parent: User) -> List[PydanticObjectId]:
        """Re-point every child of ``old_parent`` at ``new_parent``.

        Denormalized links further down (partner.asm_id, customer.rm_id and
        customer.asm_id) follow. Applications keep their snapshot links.
        """
        now = utcnow()
        if old_parent.role == Role.ASM:
            rms = await Rm.find({"asm_id": old_parent.id}).to_list()
            rm_ids = [rm.id for rm in rms]
            if not rm_ids:
                return []
            await Rm.find({"_id": {"$in": rm_ids}}).update(
                {"$set": {"asm_id": new_parent.id, "updated_at": now}}
            )
            await Partner.find({"rm_id": {"$in": rm_ids}}).update(
                {"$set": {"asm_id": new_parent.id, "updated_at": now}}
            )
            await Customer.find({"rm_id": {"$in": rm_ids}}).update(
                {"$set": {"asm_id": new_parent.id, "updated_at": now}}
            )
            moved = rm_ids
        elif old_parent.role == Role.RM:
            partners = await Partner.find({"rm_id": old_parent.id}).to_list()
            partner_ids = [partner.id for partner in partners]
            if not partner_ids:
                return []
            await Partner.find({"_id": {"$in": partner_ids}}).update(
                {"$set": {"rm_id": new_parent.id, "asm_id": new_parent.asm_id, "updated_at": now}}
            )
            await Customer.find({"partner_id": {"$in": partner_ids}}).update(
                {"$set": {"rm_id": new_parent.id, "asm_id": new_parent.asm_id, "updated_at": now}}
            )
            moved = partner_ids
        else:
            raise ValidationError(f"Subordinates of role {old_parent.role.value} cannot be reassigned")

        logger.info(
            f"Moved {len(moved)} subordinates from {old_parent.role.value} {old_parent.id} to {new_parent.id}"
        )
        return moved

    async def application_audience(
        self, application: LoanApplication, actor_id: Optional[PydanticObjectId]
    ) -> List[Recipient]:
        """Partner, customer, RM, the RM's current ASM and every admin, minus the actor."""
        candidates = [
            (application.partner_id, Role.PARTNER),
            (application.customer_id, Role.CUSTOMER),
            (application.rm_id, Role.RM),
        ]
        rm = await self.find_user(application.rm_id)
        asm_id = getattr(rm, "asm_id", None) or application.asm_id
        if asm_id is not None:
            candidates.append((asm_id, Role.ASM))
        for admin in await self.admins():
            candidates.append((admin.id, Role.SUPER_ADMIN))

        recipients: List[Recipient] = []
        seen = set()
        for user_id, role in candidates:
            if user_id is None or user_id == actor_id or user_id in seen:
                continue
            seen.add(user_id)
            recipients.append(Recipient(user_id=user_id, role=role))
        return recipients


directory_service = DirectoryService()
