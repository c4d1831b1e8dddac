import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from beanie import PydanticObjectId

from loan_channel.core.config import settings
from loan_channel.core.exceptions import (
    ConflictError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from loan_channel.database.models.loan_application_model import (
    ALLOWED_TRANSITIONS,
    ApplicationDoc,
    ApplicationStatus,
    CustomerSnapshot,
    DocumentStatus,
    LoanApplication,
    LoanType,
    StageEntry,
)
from loan_channel.database.models.user_model import Customer, Role, User, UserStatus
from loan_channel.schemas.event_schema import ApplicationEvent
from loan_channel.services.counter_service import counter_service
from loan_channel.services.directory_service import DirectoryService, directory_service
from loan_channel.utils.clock import utcnow
from loan_channel.utils.codes import APPLICATION_PREFIX
from loan_channel.utils.ids import as_object_id
from loan_channel.utils.locks import KeyedLock
from loan_channel.utils.period import parse_amount

logger = logging.getLogger(__name__)

REVIEW_STATUSES = (DocumentStatus.VERIFIED, DocumentStatus.REJECTED)

# Which snapshot link scopes the applications a role can see
_VIEWER_LINK = {
    Role.ASM: "asm_id",
    Role.RM: "rm_id",
    Role.PARTNER: "partner_id",
    Role.CUSTOMER: "customer_id",
}


def parse_status(value: Any) -> ApplicationStatus:
    try:
        return ApplicationStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidStatusError(
            f"Invalid status: {value!r}",
            details={"valid_statuses": [status.value for status in ApplicationStatus]},
        )


def parse_loan_type(value: Any) -> LoanType:
    try:
        return LoanType(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid loan type: {value!r}",
            details={"valid_loan_types": [loan_type.value for loan_type in LoanType]},
        )


class LoanApplicationService:
    """Application lifecycle: creation, the status state machine and documents.

    Mutations of one application are serialized in-process; the side effects
    of a transition (stage history, TTL markers) are written before the
    caller receives the event to fan out.
    """

    def __init__(self, directory: DirectoryService):
        self.directory = directory
        self._application_locks = KeyedLock()
        self._customer_locks = KeyedLock()
        logger.info("LoanApplicationService initialized")

    async def _load(self, application_id: Any) -> LoanApplication:
        application = await LoanApplication.get(as_object_id(application_id, "Application"))
        if application is None:
            logger.warning(f"Application {application_id} not found")
            raise NotFoundError(f"Application {application_id} not found")
        return application

    async def _load_owned(self, application_id: Any, owner_field: str, owner_id: Any) -> LoanApplication:
        # Someone else's application reads as a missing one
        application = await self._load(application_id)
        if getattr(application, owner_field) != as_object_id(owner_id, "User"):
            logger.warning(f"Application {application_id} is not owned by {owner_id}")
            raise NotFoundError(f"Application {application_id} not found")
        return application

    # Creates a DRAFT application for one of the partner's customers
    async def create_application(self, partner_id: Any, loan_type: Any, customer_id: Any = None,
                                 customer_profile: Optional[Dict[str, Any]] = None,
                                 requested_amount: Any = None, remarks: Optional[str] = None,
                                 docs: Optional[List[Dict[str, Any]]] = None) -> LoanApplication:
        loan_type = parse_loan_type(loan_type)
        amount = parse_amount(requested_amount, "requested_amount") if requested_amount is not None else None
        if customer_id is None and not customer_profile:
            raise ValidationError("Either customer_id or customer details are required")
        initial_docs = [self._initial_doc(doc) for doc in (docs or [])]

        partner = await self.directory.get_user(partner_id, Role.PARTNER)
        if partner.status != UserStatus.ACTIVE or partner.rm_id is None:
            raise ValidationError("Partner must be active and assigned to an RM to create applications")

        if customer_id is not None:
            customer = await self.directory.get_user(customer_id, Role.CUSTOMER)
            if customer.partner_id != partner.id:
                raise NotFoundError(f"CUSTOMER {customer_id} not found")
        else:
            customer = await self.directory.create_member(Role.CUSTOMER, partner.id, customer_profile)

        async with self._customer_locks.hold(customer.id):
            open_application = await LoanApplication.find_one({"customer_id": customer.id, "deleted_at": None})
            if open_application is not None:
                raise ConflictError(
                    f"Customer already has application {open_application.app_no}",
                    details={"application_id": str(open_application.id)},
                )

            now = utcnow()
            for doc in initial_docs:
                doc.uploaded_by = partner.id
                doc.uploaded_at = now
                doc.updated_at = now
            application = LoanApplication(
                app_no=await counter_service.next_code(APPLICATION_PREFIX),
                loan_type=loan_type,
                partner_id=partner.id,
                rm_id=partner.rm_id,
                asm_id=partner.asm_id,
                customer_id=customer.id,
                customer=CustomerSnapshot(
                    first_name=customer.first_name,
                    last_name=customer.last_name,
                    email=customer.email,
                    phone=customer.phone,
                ),
                requested_amount=amount,
                remarks=remarks,
                docs=initial_docs,
                created_at=now,
                updated_at=now,
            )
            application.stage_history.append(
                StageEntry(to_status=ApplicationStatus.DRAFT, by=partner.id, at=now, note="Application created")
            )
            await application.insert()

        logger.info(f"Application {application.app_no} created by partner {partner.id} for customer {customer.id}")
        return application

    def _initial_doc(self, doc: Dict[str, Any]) -> ApplicationDoc:
        doc_type = str(doc.get("doc_type") or "").strip().upper()
        url = str(doc.get("url") or "").strip()
        if not doc_type or not url:
            raise ValidationError("Each document needs a doc_type and a url")
        return ApplicationDoc(doc_type=doc_type, url=url, status=DocumentStatus.PENDING)

    async def submit(self, application_id: Any, partner_id: Any,
                     note: Optional[str] = None) -> Tuple[LoanApplication, ApplicationEvent]:
        """Partner hand-off of a DRAFT to the RM."""
        actor_id = as_object_id(partner_id, "User")
        async with self._application_locks.hold(str(application_id)):
            application = await self._load_owned(application_id, "partner_id", actor_id)
            return await self._apply_transition(
                application, ApplicationStatus.SUBMITTED, actor_id, note or "Partner submitted"
            )

    async def transition(self, application_id: Any, actor_id: Any, to_status: Any,
                         note: Optional[str] = None,
                         approved_loan_amount: Any = None) -> Tuple[LoanApplication, ApplicationEvent]:
        """RM-driven status change.

        Checks run in order: status name, ownership, disbursal amount, edge.
        Nothing is written unless all of them pass.
        """
        to_status = parse_status(to_status)
        actor_id = as_object_id(actor_id, "User")
        async with self._application_locks.hold(str(application_id)):
            application = await self._load_owned(application_id, "rm_id", actor_id)
            amount = None
            if to_status == ApplicationStatus.DISBURSED:
                amount = parse_amount(approved_loan_amount, "approved_loan_amount")
            return await self._apply_transition(application, to_status, actor_id, note, amount)

    async def _apply_transition(self, application: LoanApplication, to_status: ApplicationStatus,
                                actor_id: PydanticObjectId, note: Optional[str],
                                approved_loan_amount: Optional[float] = None
                                ) -> Tuple[LoanApplication, ApplicationEvent]:
        from_status = application.status
        if not application.can_transition(to_status):
            logger.warning(f"Rejected transition {from_status.value} -> {to_status.value} on {application.app_no}")
            raise InvalidTransitionError(
                f"Cannot move application from {from_status.value} to {to_status.value}",
                details={
                    "from": from_status.value,
                    "to": to_status.value,
                    "allowed": sorted(status.value for status in ALLOWED_TRANSITIONS[from_status]),
                },
            )
        if to_status == ApplicationStatus.DOC_COMPLETE and not application.all_documents_verified():
            missing = application.unverified_doc_types()
            logger.warning(f"Application {application.app_no} still waits on documents {missing}")
            raise ValidationError(
                "Every required document must be verified before the application is DOC_COMPLETE",
                details={"unverified": missing},
            )

        at = utcnow()
        application.record_transition(to_status, by=actor_id, at=at, note=note)
        if to_status == ApplicationStatus.DISBURSED:
            application.approved_loan_amount = approved_loan_amount
        expires_at = None
        if to_status == ApplicationStatus.REJECTED:
            expires_at = at + timedelta(days=settings.REJECTION_TTL_DAYS)
            application.deleted_at = expires_at
        await application.save()

        if expires_at is not None:
            customer = await Customer.get(application.customer_id)
            if customer is not None:
                customer.deleted_at = expires_at
                customer.updated_at = at
                await customer.save()
            logger.info(f"Application {application.app_no} and its customer expire at {expires_at.isoformat()}")

        logger.info(
            f"Application {application.app_no} moved {from_status.value} -> {to_status.value} by {actor_id}"
        )
        event = ApplicationEvent(
            application_id=application.id,
            app_no=application.app_no,
            loan_type=application.loan_type,
            customer_name=f"{application.customer.first_name} {application.customer.last_name or ''}".strip(),
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            note=note,
            approved_loan_amount=application.approved_loan_amount,
            at=at,
            recipients=await self.directory.application_audience(application, actor_id),
        )
        return application, event

    async def check_payout_eligibility(self, application_id: Any) -> bool:
        application = await self._load(application_id)
        return application.status == ApplicationStatus.DISBURSED

    # Partner (re-)upload: the entry goes back to UPDATED and loses any review
    async def upload_document(self, application_id: Any, partner_id: Any, doc_type: str,
                              url: str) -> LoanApplication:
        doc_type = (doc_type or "").strip().upper()
        url = (url or "").strip()
        if not doc_type or not url:
            raise ValidationError("doc_type and url are required")
        actor_id = as_object_id(partner_id, "User")

        async with self._application_locks.hold(str(application_id)):
            application = await self._load_owned(application_id, "partner_id", actor_id)
            if application.is_terminal:
                raise ValidationError(f"Documents cannot be changed on a {application.status.value} application")

            now = utcnow()
            index = application.find_doc(doc_type)
            if index is None:
                application.docs.append(ApplicationDoc(
                    doc_type=doc_type,
                    url=url,
                    uploaded_by=actor_id,
                    status=DocumentStatus.UPDATED,
                    uploaded_at=now,
                    updated_at=now,
                ))
            else:
                doc = application.docs[index]
                doc.url = url
                doc.uploaded_by = actor_id
                doc.status = DocumentStatus.UPDATED
                doc.remarks = None
                doc.verified_at = None
                doc.verified_by = None
                doc.rejected_at = None
                doc.rejected_by = None
                doc.updated_at = now
            application.updated_at = now
            await application.save()

        logger.info(f"Document {doc_type} uploaded on {application.app_no} by partner {actor_id}")
        return application

    async def review_document(self, application_id: Any, rm_id: Any, doc_type: str, status: Any,
                              remarks: Optional[str] = None) -> LoanApplication:
        try:
            status = DocumentStatus(str(status).strip().upper())
        except ValueError:
            status = None
        if status not in REVIEW_STATUSES:
            raise ValidationError("Review status must be VERIFIED or REJECTED")
        if status == DocumentStatus.REJECTED and not (remarks or "").strip():
            raise ValidationError("Remarks are required when rejecting a document")
        actor_id = as_object_id(rm_id, "User")

        async with self._application_locks.hold(str(application_id)):
            application = await self._load_owned(application_id, "rm_id", actor_id)
            if application.is_terminal:
                raise ValidationError(f"Documents cannot be changed on a {application.status.value} application")
            index = application.find_doc(doc_type or "")
            if index is None:
                raise NotFoundError(f"Document {doc_type} not found on application {application.app_no}")

            now = utcnow()
            doc = application.docs[index]
            doc.status = status
            doc.remarks = remarks
            doc.updated_at = now
            if status == DocumentStatus.VERIFIED:
                doc.verified_at, doc.verified_by = now, actor_id
                doc.rejected_at, doc.rejected_by = None, None
            else:
                doc.rejected_at, doc.rejected_by = now, actor_id
                doc.verified_at, doc.verified_by = None, None
            application.updated_at = now
            await application.save()

        logger.info(f"Document {doc.doc_type} on {application.app_no} marked {status.value} by RM {actor_id}")
        return application

    def _can_view(self, viewer: User, application: LoanApplication) -> bool:
        if viewer.role == Role.SUPER_ADMIN:
            return True
        link = _VIEWER_LINK.get(viewer.role)
        return link is not None and getattr(application, link) == viewer.id

    async def get_application(self, application_id: Any, viewer: User) -> LoanApplication:
        application = await self._load(application_id)
        if not self._can_view(viewer, application):
            logger.warning(f"{viewer.role.value} {viewer.id} cannot view application {application_id}")
            raise NotFoundError(f"Application {application_id} not found")
        return application

    async def list_applications(self, viewer: User, status: Any = None,
                                skip: int = 0, limit: int = 50) -> List[LoanApplication]:
        query: Dict[str, Any] = {}
        if viewer.role != Role.SUPER_ADMIN:
            query[_VIEWER_LINK[viewer.role]] = viewer.id
        if status is not None:
            query["status"] = parse_status(status).value
        return await LoanApplication.find(query).sort("-created_at").skip(skip).limit(limit).to_list()


loan_application_service = LoanApplicationService(directory_service)
