"""
Monthly target ledger.

Targets are issued by an admin and cascade down the hierarchy
(ASM -> RM -> Partner). Each cascade is planned in full from a read of the
directory, then written one tier at a time. Writes are not transactional: a
failure part way through raises ``PartialCascadeFailure`` with whatever was
already persisted.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from beanie import PydanticObjectId

from loan_channel.core.exceptions import (
    NoAssigneesError,
    NotFoundError,
    PartialCascadeFailure,
    ValidationError,
)
from loan_channel.database.models.loan_application_model import ApplicationStatus, LoanApplication
from loan_channel.database.models.target_model import TARGET_ROLES, Target
from loan_channel.database.models.user_model import Asm, Role, User, UserStatus, CHILD_ROLE
from loan_channel.services.directory_service import DirectoryService, directory_service
from loan_channel.utils.clock import utcnow
from loan_channel.utils.ids import as_object_id
from loan_channel.utils.locks import KeyedLock
from loan_channel.utils.period import (
    normalize_month,
    normalize_period,
    normalize_year,
    parse_amount,
    round_money,
    split_evenly,
)

logger = logging.getLogger(__name__)

# Write order of a cascade
TIERS = [Role.ASM, Role.RM, Role.PARTNER]

# Application link used to attribute disbursed volume to a member
_ACHIEVEMENT_LINK = {
    Role.ASM: "asm_id",
    Role.RM: "rm_id",
    Role.PARTNER: "partner_id",
}


@dataclass
class Allocation:
    user: User
    value: float


@dataclass
class CascadePlan:
    allocations: Dict[Role, List[Allocation]] = field(default_factory=lambda: {tier: [] for tier in TIERS})
    # Members whose target for the period is dropped because they are no longer ACTIVE
    stale: Dict[Role, List[PydanticObjectId]] = field(default_factory=lambda: {tier: [] for tier in TIERS})

    def is_empty(self) -> bool:
        return not any(self.allocations.values()) and not any(self.stale.values())


def parse_tier(tier: Any) -> Role:
    try:
        role = Role(str(tier).upper())
    except ValueError:
        raise ValidationError(f"Invalid tier: {tier!r}")
    if role not in TARGET_ROLES:
        raise ValidationError(f"Targets are not assigned to tier {role.value}")
    return role


class TargetService:

    def __init__(self, directory: DirectoryService):
        self.directory = directory
        self._locks = KeyedLock()
        logger.info("TargetService initialized")

    # Splits a total across the ACTIVE ASMs of an admin and down the tree, replacing existing values
    async def assign_bulk(self, month: Any, year: Any, total_target: Any, issuer_admin_id: Any) -> List[Target]:
        month, year = normalize_period(month, year)
        total = parse_amount(total_target, "total_target")
        admin = await self.directory.get_user(issuer_admin_id, Role.SUPER_ADMIN)

        async with self._locks.hold((admin.id, month, year)):
            plan = await self._plan(admin, total, prune_inactive=True)
            if not plan.allocations[Role.ASM]:
                logger.warning(f"No active ASMs under admin {admin.id} for {month}/{year}")
                raise NoAssigneesError("No active ASMs found to assign targets to")
            written = await self._write(plan, month, year, admin.id, incremental=False)

        logger.info(f"Bulk target {total} for {month}/{year} written to {len(written)} members by admin {admin.id}")
        return written

    # Same traversal as assign_bulk, but each share is added on top of the existing value
    async def assign_bulk_incremental(self, month: Any, year: Any, total_target: Any,
                                      issuer_admin_id: Any) -> List[Target]:
        month, year = normalize_period(month, year)
        increment = parse_amount(total_target, "total_target")
        admin = await self.directory.get_user(issuer_admin_id, Role.SUPER_ADMIN)

        async with self._locks.hold((admin.id, month, year)):
            plan = await self._plan(admin, increment, prune_inactive=False)
            if not plan.allocations[Role.ASM]:
                logger.warning(f"No active ASMs under admin {admin.id} for {month}/{year}")
                raise NoAssigneesError("No active ASMs found to assign targets to")
            written = await self._write(plan, month, year, admin.id, incremental=True)

        logger.info(
            f"Incremental target {increment} for {month}/{year} added for {len(written)} members by admin {admin.id}"
        )
        return written

    async def _ensure_issuer(self, issuer: User, owner: User) -> None:
        # Admins manage every team, everyone else only their own
        if issuer.role == Role.SUPER_ADMIN or issuer.id == owner.id:
            return
        logger.warning(f"{issuer.role.value} {issuer.id} tried to set targets under {owner.role.value} {owner.id}")
        raise NotFoundError(f"{owner.role.value} {owner.id} not found")

    async def assign_bulk_under(self, parent_id: Any, month: Any, year: Any, total_target: Any,
                                issuer_id: Any) -> List[Target]:
        """Split ``total_target`` across the ACTIVE members directly below an ASM or RM.

        The split cascades further down and replaces existing values. The
        parent's own target row is left as it is.
        """
        month, year = normalize_period(month, year)
        total = parse_amount(total_target, "total_target")
        issuer = await self.directory.get_user(issuer_id)
        parent = await self.directory.get_user(parent_id)
        if parent.role not in (Role.ASM, Role.RM):
            raise ValidationError(f"Team targets are not split under role {parent.role.value}")
        await self._ensure_issuer(issuer, parent)

        lock_key = (await self.directory.root_admin_id(parent) or parent.id, month, year)
        async with self._locks.hold(lock_key):
            plan = await self._plan(parent, total, prune_inactive=True)
            child_role = CHILD_ROLE[parent.role]
            if not plan.allocations[child_role]:
                logger.warning(f"No active {child_role.value} members under {parent.role.value} {parent.id}")
                raise NoAssigneesError(f"No active {child_role.value} members found to assign targets to")
            written = await self._write(plan, month, year, issuer.id, incremental=False)

        logger.info(
            f"Team target {total} for {month}/{year} under {parent.role.value} {parent.id} "
            f"written to {len(written)} members by {issuer.role.value} {issuer.id}"
        )
        return written

    # Sets one member's target directly and re-splits it below that member
    async def assign_target(self, user_id: Any, month: Any, year: Any, target_value: Any,
                            issuer_id: Any) -> List[Target]:
        month, year = normalize_period(month, year)
        value = parse_amount(target_value, "target_value")
        issuer = await self.directory.get_user(issuer_id)
        member = await self.directory.get_user(user_id)
        if member.role not in TARGET_ROLES:
            raise ValidationError(f"Targets are not assigned to role {member.role.value}")
        if member.status != UserStatus.ACTIVE:
            raise ValidationError(f"{member.role.value} {member.id} is not active")
        parent = await self.directory.parent_of(member)
        if parent is None:
            raise NotFoundError(f"{member.role.value} {member.id} has no parent")
        await self._ensure_issuer(issuer, parent)

        lock_key = (await self.directory.root_admin_id(member) or member.id, month, year)
        async with self._locks.hold(lock_key):
            plan = await self._plan(member, value, prune_inactive=True)
            plan.allocations[member.role].insert(0, Allocation(user=member, value=value))
            written = await self._write(plan, month, year, issuer.id, incremental=False)

        logger.info(f"Target {value} for {month}/{year} set on {member.role.value} {member.id} by {issuer.id}")
        return written

    async def redistribute_on_membership_change(self, tier: Any, changed_node_id: Any, month: Any, year: Any,
                                                issuer_id: Optional[PydanticObjectId] = None) -> List[Target]:
        """Re-split the parent's budget after a member of ``tier`` joined, left or changed status.

        The budget is the parent's own target for the period (for the ASM
        tier, the sum of the admin's ASM targets). No budget means nothing
        to do.
        """
        role = parse_tier(tier)
        month, year = normalize_period(month, year)
        node = await self.directory.get_user(changed_node_id, role)
        parent = await self.directory.parent_of(node)
        if parent is None:
            logger.warning(f"{role.value} {node.id} has no parent, nothing to redistribute")
            return []
        return await self.redistribute_under(parent, month, year, issuer_id)

    async def redistribute_under(self, parent: User, month: int, year: int,
                                 issuer_id: Optional[PydanticObjectId] = None) -> List[Target]:
        """Overwrite the subtree below ``parent`` from its current budget."""
        if CHILD_ROLE.get(parent.role) not in TARGET_ROLES:
            return []
        lock_key = (await self.directory.root_admin_id(parent) or parent.id, month, year)
        async with self._locks.hold(lock_key):
            budget = await self._budget_of(parent, month, year)
            if budget is None:
                logger.info(f"No {month}/{year} budget under {parent.role.value} {parent.id}, skipping redistribution")
                return []
            plan = await self._plan(parent, budget, prune_inactive=True)
            if plan.is_empty():
                logger.info(f"Nothing to write under {parent.role.value} {parent.id} for {month}/{year}")
                return []
            written = await self._write(plan, month, year, issuer_id or parent.id, incremental=False)

        logger.info(
            f"Redistributed {budget} under {parent.role.value} {parent.id} for {month}/{year}: {len(written)} targets"
        )
        return written

    async def _budget_of(self, parent: User, month: int, year: int) -> Optional[float]:
        if parent.role == Role.SUPER_ADMIN:
            asm_ids = [asm.id for asm in await Asm.find({"admin_id": parent.id}).to_list()]
            if not asm_ids:
                return None
            rows = await Target.find({
                "assigned_to": {"$in": asm_ids},
                "role": Role.ASM.value,
                "month": month,
                "year": year,
            }).to_list()
            if not rows:
                return None
            return round_money(sum(row.target_value for row in rows))

        own = await self._find_target(parent.id, parent.role, month, year)
        return own.target_value if own else None

    async def _plan(self, root: User, budget: float, prune_inactive: bool) -> CascadePlan:
        """Breadth-first allocation of ``budget`` below ``root``. Reads only."""
        plan = CascadePlan()
        frontier = [(root, budget)]
        while frontier:
            next_frontier = []
            for parent, amount in frontier:
                child_role = CHILD_ROLE.get(parent.role)
                if child_role not in TARGET_ROLES:
                    continue
                children = await self.directory.children_of(parent, active_only=False)
                active = [child for child in children if child.status == UserStatus.ACTIVE]
                if prune_inactive:
                    plan.stale[child_role].extend(child.id for child in children if child.status != UserStatus.ACTIVE)
                # A parent with no active children keeps its whole share
                if not active:
                    continue
                for child, share in zip(active, split_evenly(amount, len(active))):
                    plan.allocations[child_role].append(Allocation(user=child, value=share))
                    next_frontier.append((child, share))
            frontier = next_frontier
        return plan

    async def _write(self, plan: CascadePlan, month: int, year: int,
                     issuer_id: Optional[PydanticObjectId], incremental: bool) -> List[Target]:
        written: List[Target] = []
        completed: List[str] = []
        for tier in TIERS:
            try:
                await self._write_tier(plan, tier, month, year, issuer_id, incremental, written)
            except Exception as e:
                logger.error(f"Target cascade failed at tier {tier.value} after {len(written)} writes: {e}")
                raise PartialCascadeFailure(
                    f"Target cascade failed while writing {tier.value} targets",
                    completed_tiers=completed,
                    failed_tier=tier.value,
                    written=written,
                ) from e
            completed.append(tier.value)
        return written

    async def _write_tier(self, plan: CascadePlan, tier: Role, month: int, year: int,
                          issuer_id: Optional[PydanticObjectId], incremental: bool,
                          written: List[Target]) -> None:
        stale = plan.stale[tier]
        if stale:
            await Target.find({
                "assigned_to": {"$in": stale},
                "role": tier.value,
                "month": month,
                "year": year,
            }).delete()
            logger.info(f"Removed {month}/{year} targets of {len(stale)} inactive {tier.value} members")
        for allocation in plan.allocations[tier]:
            target = await self._upsert_target(
                allocation.user.id, tier, month, year, allocation.value, issuer_id, incremental
            )
            written.append(target)

    async def _find_target(self, user_id: PydanticObjectId, role: Role, month: int, year: int) -> Optional[Target]:
        return await Target.find_one({
            "assigned_to": user_id,
            "role": role.value,
            "month": month,
            "year": year,
        })

    async def _upsert_target(self, user_id: PydanticObjectId, role: Role, month: int, year: int,
                             value: float, issuer_id: Optional[PydanticObjectId], incremental: bool) -> Target:
        now = utcnow()
        existing = await self._find_target(user_id, role, month, year)
        if existing is not None:
            existing.target_value = round_money(existing.target_value + value) if incremental else value
            existing.assigned_by = issuer_id or existing.assigned_by
            existing.updated_at = now
            await existing.save()
            return existing

        target = Target(
            assigned_to=user_id,
            assigned_by=issuer_id,
            role=role,
            month=month,
            year=year,
            target_value=round_money(value),
            created_at=now,
            updated_at=now,
        )
        await target.insert()
        return target

    async def list_targets(self, assigned_to: Any = None, role: Any = None,
                           month: Any = None, year: Any = None) -> List[Target]:
        query: Dict[str, Any] = {}
        if assigned_to is not None:
            query["assigned_to"] = as_object_id(assigned_to, "User")
        if role is not None:
            query["role"] = parse_tier(role).value
        if month is not None:
            query["month"] = normalize_month(month)
        if year is not None:
            query["year"] = normalize_year(year)
        return await Target.find(query).sort("-year", "-month", "role", "_id").to_list()

    # Recomputes achieved_value from the member's disbursed applications in the period
    async def refresh_achievement(self, user_id: Any, month: Any, year: Any) -> Target:
        month, year = normalize_period(month, year)
        user = await self.directory.get_user(user_id)
        if user.role not in TARGET_ROLES:
            raise ValidationError(f"Targets are not assigned to role {user.role.value}")
        target = await self._find_target(user.id, user.role, month, year)
        if target is None:
            raise NotFoundError(f"No target for {user.role.value} {user.id} in {month}/{year}")

        applications = await LoanApplication.find({
            _ACHIEVEMENT_LINK[user.role]: user.id,
            "status": ApplicationStatus.DISBURSED.value,
        }).to_list()
        achieved = 0.0
        for application in applications:
            disbursed_at = next(
                (entry.at for entry in reversed(application.stage_history)
                 if entry.to_status == ApplicationStatus.DISBURSED),
                None,
            )
            if disbursed_at and disbursed_at.month == month and disbursed_at.year == year:
                achieved += application.approved_loan_amount or 0

        target.achieved_value = round_money(achieved)
        target.updated_at = utcnow()
        await target.save()
        logger.info(f"Achievement for {user.role.value} {user.id} in {month}/{year}: {target.achieved_value}")
        return target


target_service = TargetService(directory_service)
