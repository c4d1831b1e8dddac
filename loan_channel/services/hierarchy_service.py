import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from beanie import PydanticObjectId

from loan_channel.core.exceptions import NotFoundError, ValidationError
from loan_channel.database.models.target_model import TARGET_ROLES, Target
from loan_channel.database.models.user_model import Role, User, UserStatus, PARENT_ROLE
from loan_channel.services.directory_service import DirectoryService, directory_service
from loan_channel.services.target_service import TargetService, target_service
from loan_channel.utils.clock import utcnow

logger = logging.getLogger(__name__)

REASSIGNABLE_TIERS = (Role.ASM, Role.RM)


@dataclass
class HierarchyChange:
    member: User
    targets: List[Target] = field(default_factory=list)
    moved: List[PydanticObjectId] = field(default_factory=list)


def _current_period():
    now = utcnow()
    return now.month, now.year


def _dedupe(targets: List[Target]) -> List[Target]:
    latest: Dict[PydanticObjectId, Target] = {}
    for target in targets:
        latest[target.id] = target
    return list(latest.values())


class HierarchyService:
    """Membership changes plus the target redistribution each one triggers.

    Redistribution always runs for the current calendar month.
    """

    def __init__(self, directory: DirectoryService, targets: TargetService):
        self.directory = directory
        self.targets = targets

    async def _ensure_manages(self, actor: User, member: User) -> None:
        if actor.role == Role.SUPER_ADMIN or member.parent_id() == actor.id:
            return
        logger.warning(f"{actor.role.value} {actor.id} tried to manage {member.role.value} {member.id}")
        raise NotFoundError(f"{member.role.value} {member.id} not found")

    async def _redistribute_at_parent(self, member: User, actor_id: Optional[PydanticObjectId]) -> List[Target]:
        if member.role not in TARGET_ROLES:
            return []
        parent = await self.directory.parent_of(member)
        if parent is None:
            return []
        month, year = _current_period()
        return await self.targets.redistribute_under(parent, month, year, actor_id)

    async def create_member(self, actor: User, role: Any, parent_id: Any,
                            profile: Dict[str, Any]) -> HierarchyChange:
        try:
            role = Role(str(role).upper())
        except ValueError:
            raise ValidationError(f"Invalid role: {role!r}")
        if role not in PARENT_ROLE:
            raise ValidationError(f"Members cannot be created with role {role.value}")

        if actor.role != Role.SUPER_ADMIN:
            # Non-admins only create direct subordinates of their own
            if PARENT_ROLE[role] != actor.role:
                raise ValidationError(f"{actor.role.value} cannot create {role.value} members")
            if parent_id is not None and str(parent_id) != str(actor.id):
                raise NotFoundError(f"{actor.role.value} {parent_id} not found")
            parent_id = actor.id
        elif parent_id is None:
            if role != Role.ASM:
                raise ValidationError("parent_id is required")
            parent_id = actor.id

        member = await self.directory.create_member(role, parent_id, profile)
        targets = await self._redistribute_at_parent(member, actor.id)
        return HierarchyChange(member=member, targets=targets)

    async def activate(self, actor: User, user_id: Any) -> HierarchyChange:
        member = await self.directory.get_user(user_id)
        await self._ensure_manages(actor, member)
        parent = await self.directory.parent_of(member)
        if parent is not None and parent.status != UserStatus.ACTIVE:
            raise ValidationError(f"{parent.role.value} {parent.id} is not active")
        await self.directory.set_status(member, UserStatus.ACTIVE)
        targets = await self._redistribute_at_parent(member, actor.id)
        return HierarchyChange(member=member, targets=targets)

    async def deactivate(self, actor: User, user_id: Any) -> HierarchyChange:
        member = await self.directory.get_user(user_id)
        await self._ensure_manages(actor, member)
        if member.role == Role.SUPER_ADMIN:
            raise ValidationError("Admins cannot be deactivated")
        await self.directory.set_status(member, UserStatus.SUSPENDED)
        targets = await self._redistribute_at_parent(member, actor.id)
        return HierarchyChange(member=member, targets=targets)

    async def reassign_subordinates(self, actor: User, tier: Any, old_parent_id: Any,
                                    new_parent_id: Any) -> HierarchyChange:
        """Move every child of ``old_parent_id`` to ``new_parent_id`` and suspend the old parent.

        Targets are recomputed: the old parent's level is re-split, and the
        new parent's own subtree is re-split when that pass did not reach it.
        """
        try:
            tier = Role(str(tier).upper())
        except ValueError:
            raise ValidationError(f"Invalid tier: {tier!r}")
        if tier not in REASSIGNABLE_TIERS:
            raise ValidationError(f"Subordinates of {tier.value} members cannot be reassigned")
        if str(old_parent_id) == str(new_parent_id):
            raise ValidationError("Old and new parent must be different")

        old_parent = await self.directory.get_user(old_parent_id, tier)
        new_parent = await self.directory.get_user(new_parent_id, tier)
        if actor.role != Role.SUPER_ADMIN:
            if actor.role != Role.ASM or tier != Role.RM:
                raise ValidationError(f"{actor.role.value} cannot reassign {tier.value} subordinates")
            await self._ensure_manages(actor, old_parent)
            await self._ensure_manages(actor, new_parent)
        if new_parent.status != UserStatus.ACTIVE:
            raise ValidationError(f"{tier.value} {new_parent.id} is not active")

        moved = await self.directory.move_subordinates(old_parent, new_parent)
        await self.directory.set_status(old_parent, UserStatus.SUSPENDED)

        month, year = _current_period()
        targets: List[Target] = []
        grandparent = await self.directory.parent_of(old_parent)
        if grandparent is not None:
            targets.extend(await self.targets.redistribute_under(grandparent, month, year, actor.id))
        if not any(target.assigned_to == new_parent.id for target in targets):
            targets.extend(await self.targets.redistribute_under(new_parent, month, year, actor.id))

        logger.info(
            f"Reassigned {len(moved)} subordinates from {tier.value} {old_parent.id} to {new_parent.id}, "
            f"{len(targets)} targets recomputed"
        )
        return HierarchyChange(member=old_parent, targets=_dedupe(targets), moved=moved)


hierarchy_service = HierarchyService(directory_service, target_service)
