from fastapi import APIRouter, Depends, Query, status
from typing import Any, Dict, Optional
import logging

from loan_channel.api.notification_routes import get_notification_service
from loan_channel.core.auth_dependencies import get_current_active_user, require_roles
from loan_channel.database.models.user_model import Role, User
from loan_channel.helpers.response_builder import serialize_document, serialize_documents
from loan_channel.schemas.loan_schema import PayoutRequest
from loan_channel.services.notification_service import NotificationService
from loan_channel.services.payout_service import PayoutService, payout_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["Payouts"])


def get_payout_service() -> PayoutService:
    return payout_service


@router.post("", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def record_payout(
    request: PayoutRequest,
    current_user: User = Depends(require_roles(Role.RM)),
    service: PayoutService = Depends(get_payout_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    payout = await service.record_payout(
        application_id=request.application_id,
        partner_id=request.partner_id,
        actor_id=current_user.id,
        payout_percentage=request.payout_percentage,
        amount=request.amount,
        note=request.note,
        pay_out_status=request.pay_out_status,
    )
    await notifier.notify_payout(payout)
    return {"message": "Payout recorded", "payout": serialize_document(payout)}


@router.get("", response_model=Dict[str, Any])
async def list_payouts(
    partner_id: Optional[str] = Query(default=None),
    current_user: User = Depends(get_current_active_user),
    service: PayoutService = Depends(get_payout_service),
):
    payouts = await service.list_payouts(current_user, partner_id=partner_id)
    return {"count": len(payouts), "payouts": serialize_documents(payouts)}
