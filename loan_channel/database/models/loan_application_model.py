from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, FrozenSet
from loan_channel.utils.clock import utcnow
from pymongo import ASCENDING, IndexModel


class ApplicationStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    DOC_INCOMPLETE = "DOC_INCOMPLETE"
    DOC_COMPLETE = "DOC_COMPLETE"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    AGREEMENT = "AGREEMENT"
    REJECTED = "REJECTED"
    DISBURSED = "DISBURSED"


class LoanType(str, Enum):
    PERSONAL = "PERSONAL"
    BUSINESS = "BUSINESS"
    HOME_LOAN_SALARIED = "HOME_LOAN_SALARIED"
    HOME_LOAN_SELF_EMPLOYED = "HOME_LOAN_SELF_EMPLOYED"


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    UPDATED = "UPDATED"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES: FrozenSet[ApplicationStatus] = frozenset(
    {ApplicationStatus.DISBURSED, ApplicationStatus.REJECTED}
)

_FORWARD_TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    ApplicationStatus.DRAFT: frozenset({ApplicationStatus.SUBMITTED}),
    ApplicationStatus.SUBMITTED: frozenset({
        ApplicationStatus.DOC_INCOMPLETE,
        ApplicationStatus.DOC_COMPLETE,
        ApplicationStatus.UNDER_REVIEW,
    }),
    ApplicationStatus.DOC_INCOMPLETE: frozenset({ApplicationStatus.DOC_COMPLETE}),
    ApplicationStatus.DOC_COMPLETE: frozenset({ApplicationStatus.DOC_INCOMPLETE, ApplicationStatus.UNDER_REVIEW}),
    ApplicationStatus.UNDER_REVIEW: frozenset({ApplicationStatus.APPROVED}),
    ApplicationStatus.APPROVED: frozenset({ApplicationStatus.AGREEMENT, ApplicationStatus.DISBURSED}),
    ApplicationStatus.AGREEMENT: frozenset({ApplicationStatus.DISBURSED}),
}

# REJECTED is reachable from every non-terminal state
ALLOWED_TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    status: (
        frozenset()
        if status in TERMINAL_STATUSES
        else _FORWARD_TRANSITIONS.get(status, frozenset()) | {ApplicationStatus.REJECTED}
    )
    for status in ApplicationStatus
}

BASE_DOC_TYPES = ["PAN", "AADHAR_FRONT", "AADHAR_BACK"]


class StageEntry(BaseModel):
    from_status: Optional[ApplicationStatus] = None
    to_status: ApplicationStatus
    by: Optional[PydanticObjectId] = None
    at: datetime
    note: Optional[str] = None


class ApplicationDoc(BaseModel):
    doc_type: str = Field(..., description="PAN, AADHAR_FRONT, BANK_STATEMENT, ...")
    url: str = Field(..., description="Location of the stored file")
    uploaded_by: Optional[PydanticObjectId] = None
    status: DocumentStatus = DocumentStatus.PENDING
    remarks: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    verified_at: Optional[datetime] = None
    verified_by: Optional[PydanticObjectId] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[PydanticObjectId] = None


class CustomerSnapshot(BaseModel):
    first_name: str
    last_name: Optional[str] = None
    email: str
    phone: str


class LoanApplication(Document):
    app_no: str = Field(..., description="Sequential application number, e.g. TLF0042")
    loan_type: LoanType
    status: ApplicationStatus = Field(default=ApplicationStatus.DRAFT)

    # Hierarchy snapshot taken at creation; later reassignments never rewrite these
    partner_id: PydanticObjectId
    rm_id: PydanticObjectId
    asm_id: Optional[PydanticObjectId] = None
    customer_id: PydanticObjectId

    customer: CustomerSnapshot
    requested_amount: Optional[float] = Field(None, ge=0)
    approved_loan_amount: Optional[float] = Field(None, description="Set only by the DISBURSED transition")
    remarks: Optional[str] = None
    docs: List[ApplicationDoc] = Field(default_factory=list)
    stage_history: List[StageEntry] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(None, description="TTL marker set when the application is rejected")

    class Settings:
        name = "loan_applications"
        indexes = [
            IndexModel([("app_no", ASCENDING)], unique=True),
            IndexModel([("partner_id", ASCENDING)]),
            IndexModel([("rm_id", ASCENDING)]),
            IndexModel([("customer_id", ASCENDING)]),
            IndexModel([("deleted_at", ASCENDING)], expireAfterSeconds=0),
        ]

    def can_transition(self, to_status: ApplicationStatus) -> bool:
        return to_status in ALLOWED_TRANSITIONS[self.status]

    def record_transition(self, to_status: ApplicationStatus, by: Optional[PydanticObjectId],
                          at: datetime, note: Optional[str] = None) -> StageEntry:
        """Append to the stage history and move to ``to_status``.

        Callers check ``can_transition`` first; this only records.
        """
        entry = StageEntry(from_status=self.status, to_status=to_status, by=by, at=at, note=note)
        self.stage_history.append(entry)
        self.status = to_status
        self.updated_at = at
        return entry

    def required_doc_types(self) -> List[str]:
        if self.loan_type in (LoanType.PERSONAL, LoanType.HOME_LOAN_SALARIED):
            return BASE_DOC_TYPES + ["SALARY_SLIP_1", "BANK_STATEMENT"]
        if self.loan_type in (LoanType.BUSINESS, LoanType.HOME_LOAN_SELF_EMPLOYED):
            return BASE_DOC_TYPES + ["BANK_STATEMENT", "GST_CERTIFICATE"]
        return list(BASE_DOC_TYPES)

    def find_doc(self, doc_type: str) -> Optional[int]:
        wanted = doc_type.upper()
        for index, doc in enumerate(self.docs):
            if doc.doc_type.upper() == wanted:
                return index
        return None

    def unverified_doc_types(self) -> List[str]:
        """Required document types that are missing or not yet VERIFIED."""
        missing = []
        for doc_type in self.required_doc_types():
            index = self.find_doc(doc_type)
            if index is None or self.docs[index].status != DocumentStatus.VERIFIED:
                missing.append(doc_type)
        return missing

    def all_documents_verified(self) -> bool:
        return not self.unverified_doc_types()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
