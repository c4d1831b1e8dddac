from fastapi import APIRouter, Depends, Query, status
from typing import Any, Dict, Optional
import logging

from loan_channel.api.notification_routes import get_notification_service
from loan_channel.core.auth_dependencies import get_current_active_user, require_roles
from loan_channel.core.exceptions import PartialCascadeFailure
from loan_channel.database.models.user_model import Role, User
from loan_channel.helpers.response_builder import build_targets_response, serialize_document
from loan_channel.schemas.target_schema import (
    AchievementRequest,
    BulkTargetRequest,
    MemberTargetRequest,
    RedistributeRequest,
    TeamBulkTargetRequest,
)
from loan_channel.services.notification_service import NotificationService
from loan_channel.services.target_service import TargetService, target_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/targets", tags=["Targets"])


def get_target_service() -> TargetService:
    return target_service


async def _notify_partial(error: PartialCascadeFailure, notifier: NotificationService, actor_id) -> None:
    # Rows written before the failure stay, so their owners still hear about them
    if error.written:
        await notifier.publish_target_updates(error.written, actor_id)


# Overwrites the month's targets for the whole hierarchy under the admin
@router.post("/bulk", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def assign_bulk_targets(
    request: BulkTargetRequest,
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN)),
    service: TargetService = Depends(get_target_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    try:
        targets = await service.assign_bulk(request.month, request.year, request.total_target, current_user.id)
    except PartialCascadeFailure as e:
        await _notify_partial(e, notifier, current_user.id)
        raise
    await notifier.publish_target_updates(targets, current_user.id)
    return build_targets_response(targets, "Targets assigned successfully")


# Adds the amount on top of the month's existing targets
@router.post("/bulk-incremental", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def assign_bulk_targets_incremental(
    request: BulkTargetRequest,
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN)),
    service: TargetService = Depends(get_target_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    try:
        targets = await service.assign_bulk_incremental(
            request.month, request.year, request.total_target, current_user.id
        )
    except PartialCascadeFailure as e:
        await _notify_partial(e, notifier, current_user.id)
        raise
    await notifier.publish_target_updates(targets, current_user.id)
    return build_targets_response(targets, "Targets increased successfully")


@router.post("/redistribute", response_model=Dict[str, Any])
async def redistribute_targets(
    request: RedistributeRequest,
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN)),
    service: TargetService = Depends(get_target_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    try:
        targets = await service.redistribute_on_membership_change(
            request.tier, request.changed_node_id, request.month, request.year, issuer_id=current_user.id
        )
    except PartialCascadeFailure as e:
        await _notify_partial(e, notifier, current_user.id)
        raise
    await notifier.publish_target_updates(targets, current_user.id)
    return build_targets_response(targets, "Targets redistributed successfully")


# An ASM splits a total across its RMs, an RM across its partners
@router.post("/team-bulk", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def assign_team_targets(
    request: TeamBulkTargetRequest,
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN, Role.ASM, Role.RM)),
    service: TargetService = Depends(get_target_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    parent_id = request.parent_id or str(current_user.id)
    try:
        targets = await service.assign_bulk_under(
            parent_id, request.month, request.year, request.total_target, current_user.id
        )
    except PartialCascadeFailure as e:
        await _notify_partial(e, notifier, current_user.id)
        raise
    await notifier.publish_target_updates(targets, current_user.id)
    return build_targets_response(targets, "Team targets assigned successfully")


@router.post("/assign", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def assign_member_target(
    request: MemberTargetRequest,
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN, Role.ASM, Role.RM)),
    service: TargetService = Depends(get_target_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    try:
        targets = await service.assign_target(
            request.user_id, request.month, request.year, request.target_value, current_user.id
        )
    except PartialCascadeFailure as e:
        await _notify_partial(e, notifier, current_user.id)
        raise
    await notifier.publish_target_updates(targets, current_user.id)
    return build_targets_response(targets, "Target assigned successfully")


@router.get("", response_model=Dict[str, Any])
async def list_targets(
    assigned_to: Optional[str] = Query(default=None),
    role: Optional[str] = Query(default=None),
    month: Optional[str] = Query(default=None, description="1-12 or a month name"),
    year: Optional[str] = Query(default=None),
    current_user: User = Depends(get_current_active_user),
    service: TargetService = Depends(get_target_service),
):
    # Partners only ever see their own targets
    if current_user.role == Role.PARTNER or (assigned_to is None and current_user.role != Role.SUPER_ADMIN):
        assigned_to = str(current_user.id)
    targets = await service.list_targets(assigned_to=assigned_to, role=role, month=month, year=year)
    return build_targets_response(targets, "Targets retrieved successfully")


@router.post("/{user_id}/achievement", response_model=Dict[str, Any])
async def refresh_achievement(
    user_id: str,
    request: AchievementRequest,
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN, Role.ASM, Role.RM)),
    service: TargetService = Depends(get_target_service),
):
    target = await service.refresh_achievement(user_id, request.month, request.year)
    return {"message": "Achievement refreshed", "target": serialize_document(target)}
