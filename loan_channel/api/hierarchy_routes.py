from fastapi import APIRouter, Depends, status
from typing import Any, Dict
import logging

from loan_channel.api.notification_routes import get_notification_service
from loan_channel.core.auth_dependencies import require_roles
from loan_channel.database.models.user_model import Role, User
from loan_channel.helpers.response_builder import build_hierarchy_response
from loan_channel.schemas.user_schemas import MemberCreate, ReassignRequest
from loan_channel.services.hierarchy_service import HierarchyService, hierarchy_service
from loan_channel.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/hierarchy", tags=["Hierarchy"])

_MANAGERS = (Role.SUPER_ADMIN, Role.ASM, Role.RM, Role.PARTNER)


def get_hierarchy_service() -> HierarchyService:
    return hierarchy_service


# Creates a subordinate and re-splits the parent's current-month target
@router.post("/members", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_member(
    request: MemberCreate,
    current_user: User = Depends(require_roles(*_MANAGERS)),
    service: HierarchyService = Depends(get_hierarchy_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    profile = request.model_dump(exclude={"role", "parent_id"})
    change = await service.create_member(current_user, request.role, request.parent_id, profile)
    await notifier.publish_target_updates(change.targets, current_user.id)
    return build_hierarchy_response(change, f"{change.member.role.value} created successfully")


@router.post("/members/{user_id}/activate", response_model=Dict[str, Any])
async def activate_member(
    user_id: str,
    current_user: User = Depends(require_roles(*_MANAGERS)),
    service: HierarchyService = Depends(get_hierarchy_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    change = await service.activate(current_user, user_id)
    await notifier.publish_target_updates(change.targets, current_user.id)
    return build_hierarchy_response(change, "Member activated")


@router.post("/members/{user_id}/deactivate", response_model=Dict[str, Any])
async def deactivate_member(
    user_id: str,
    current_user: User = Depends(require_roles(*_MANAGERS)),
    service: HierarchyService = Depends(get_hierarchy_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    change = await service.deactivate(current_user, user_id)
    await notifier.publish_target_updates(change.targets, current_user.id)
    return build_hierarchy_response(change, "Member deactivated")


# Moves every subordinate of one parent to another and suspends the old parent
@router.post("/reassign", response_model=Dict[str, Any])
async def reassign_subordinates(
    request: ReassignRequest,
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN, Role.ASM)),
    service: HierarchyService = Depends(get_hierarchy_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    change = await service.reassign_subordinates(
        current_user, request.tier, request.old_parent_id, request.new_parent_id
    )
    await notifier.publish_target_updates(change.targets, current_user.id)
    return build_hierarchy_response(change, f"Reassigned {len(change.moved)} subordinates")
