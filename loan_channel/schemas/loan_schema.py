from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional, Union


class DocumentInput(BaseModel):
    doc_type: str = Field(..., description="PAN, AADHAR_FRONT, AADHAR_BACK, SALARY_SLIP_1, BANK_STATEMENT, ...")
    url: str = Field(..., description="Location of the already stored file")


class CustomerProfile(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\d{10}$")
    region: Optional[str] = None


class CreateApplicationRequest(BaseModel):
    """Either an existing customer of the partner or the details of a new one."""
    loan_type: str = Field(..., description="PERSONAL, BUSINESS, HOME_LOAN_SALARIED or HOME_LOAN_SELF_EMPLOYED")
    customer_id: Optional[str] = None
    customer: Optional[CustomerProfile] = None
    requested_amount: Optional[Union[float, str]] = None
    remarks: Optional[str] = Field(None, max_length=1000)
    docs: List[DocumentInput] = Field(default_factory=list)


class SubmitRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


class TransitionRequest(BaseModel):
    to_status: str = Field(..., description="Target status, e.g. UNDER_REVIEW")
    note: Optional[str] = Field(None, max_length=1000)
    approved_loan_amount: Optional[Union[float, str]] = Field(None, description="Required for DISBURSED")


class DocumentUploadRequest(BaseModel):
    doc_type: str
    url: str


class DocumentReviewRequest(BaseModel):
    doc_type: str
    status: str = Field(..., description="VERIFIED or REJECTED")
    remarks: Optional[str] = Field(None, max_length=1000)


class PayoutRequest(BaseModel):
    application_id: str
    partner_id: str
    payout_percentage: Optional[Union[float, str]] = Field(None, description="Percent of the approved amount")
    amount: Optional[Union[float, str]] = Field(None, description="Fixed amount, used when no percentage is given")
    note: Optional[str] = Field(None, max_length=1000)
    pay_out_status: Optional[str] = Field(None, description="PENDING or DONE")
