from fastapi import APIRouter, Depends, Query, status
from typing import Any, Dict, Optional
import logging

from loan_channel.api.notification_routes import get_notification_service
from loan_channel.core.auth_dependencies import get_current_active_user, require_roles
from loan_channel.database.models.user_model import Role, User
from loan_channel.helpers.response_builder import build_application_response, serialize_documents
from loan_channel.schemas.loan_schema import (
    CreateApplicationRequest,
    DocumentReviewRequest,
    DocumentUploadRequest,
    SubmitRequest,
    TransitionRequest,
)
from loan_channel.services.loan_service import LoanApplicationService, loan_application_service
from loan_channel.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["Loan Applications"])


# Returns the loan application service instance
def get_loan_application_service() -> LoanApplicationService:
    return loan_application_service


@router.post("", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_loan_application(
    request: CreateApplicationRequest,
    current_user: User = Depends(require_roles(Role.PARTNER)),
    service: LoanApplicationService = Depends(get_loan_application_service),
):
    application = await service.create_application(
        partner_id=current_user.id,
        loan_type=request.loan_type,
        customer_id=request.customer_id,
        customer_profile=request.customer.model_dump() if request.customer else None,
        requested_amount=request.requested_amount,
        remarks=request.remarks,
        docs=[doc.model_dump() for doc in request.docs],
    )
    return build_application_response(application, message="Loan application created successfully")


@router.get("", response_model=Dict[str, Any])
async def list_loan_applications(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(get_current_active_user),
    service: LoanApplicationService = Depends(get_loan_application_service),
):
    applications = await service.list_applications(current_user, status=status_filter, skip=skip, limit=limit)
    return {"count": len(applications), "applications": serialize_documents(applications)}


@router.get("/{application_id}", response_model=Dict[str, Any])
async def get_loan_application(
    application_id: str,
    current_user: User = Depends(get_current_active_user),
    service: LoanApplicationService = Depends(get_loan_application_service),
):
    application = await service.get_application(application_id, current_user)
    return build_application_response(application)


@router.post("/{application_id}/submit", response_model=Dict[str, Any])
async def submit_loan_application(
    application_id: str,
    request: Optional[SubmitRequest] = None,
    current_user: User = Depends(require_roles(Role.PARTNER)),
    service: LoanApplicationService = Depends(get_loan_application_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    application, event = await service.submit(application_id, current_user.id, request.note if request else None)
    await notifier.publish_application_event(event)
    return build_application_response(application, event, "Application submitted")


# RM-driven status change; notifications go out after the change is saved
@router.post("/{application_id}/transition", response_model=Dict[str, Any])
async def transition_loan_application(
    application_id: str,
    request: TransitionRequest,
    current_user: User = Depends(require_roles(Role.RM)),
    service: LoanApplicationService = Depends(get_loan_application_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    application, event = await service.transition(
        application_id,
        current_user.id,
        request.to_status,
        note=request.note,
        approved_loan_amount=request.approved_loan_amount,
    )
    await notifier.publish_application_event(event)
    return build_application_response(application, event, f"Application moved to {application.status.value}")


@router.put("/{application_id}/documents", response_model=Dict[str, Any])
async def upload_application_document(
    application_id: str,
    request: DocumentUploadRequest,
    current_user: User = Depends(require_roles(Role.PARTNER)),
    service: LoanApplicationService = Depends(get_loan_application_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    application = await service.upload_document(application_id, current_user.id, request.doc_type, request.url)
    await notifier.notify_document_change(application, request.doc_type, application.rm_id)
    return build_application_response(application, message="Document uploaded")


@router.post("/{application_id}/documents/review", response_model=Dict[str, Any])
async def review_application_document(
    application_id: str,
    request: DocumentReviewRequest,
    current_user: User = Depends(require_roles(Role.RM)),
    service: LoanApplicationService = Depends(get_loan_application_service),
    notifier: NotificationService = Depends(get_notification_service),
):
    application = await service.review_document(
        application_id, current_user.id, request.doc_type, request.status, request.remarks
    )
    await notifier.notify_document_change(application, request.doc_type, application.partner_id)
    response = build_application_response(application, message="Document reviewed")
    response["unverified_documents"] = application.unverified_doc_types()
    return response


@router.get("/{application_id}/payout-eligibility", response_model=Dict[str, Any])
async def get_payout_eligibility(
    application_id: str,
    current_user: User = Depends(get_current_active_user),
    service: LoanApplicationService = Depends(get_loan_application_service),
):
    application = await service.get_application(application_id, current_user)
    eligible = await service.check_payout_eligibility(application.id)
    return {
        "application_id": str(application.id),
        "status": application.status.value,
        "eligible": eligible,
    }
