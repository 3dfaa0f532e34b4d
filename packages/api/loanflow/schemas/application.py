# This project was developed with assistance from AI tools.
"""Loan application request/response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from db.enums import ApplicationStatus, LoanType
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from . import Pagination


class ApplicationData(BaseModel):
    """Borrower-submitted application fields.

    Ranges that carry business rules (names, amount, phone) are checked by
    the validator so the caller receives the full error list, not just the
    first schema failure.
    """

    loan_type: LoanType
    amount_requested: float = Field(ge=0)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    email: str = Field(default="", max_length=255)
    phone: str = Field(default="", max_length=20)
    business_name: str = Field(default="", max_length=200)
    business_address: str | None = Field(default=None, max_length=255)
    business_city: str | None = Field(default=None, max_length=100)
    business_state: str | None = Field(default=None, max_length=50)
    business_zip: str | None = Field(default=None, max_length=20)
    years_in_business: int = Field(default=0, ge=0, le=200)
    loan_details: dict[str, Any] = Field(default_factory=dict)


class EligibilityData(BaseModel):
    loan_type: LoanType
    years_in_business: int = Field(default=0, ge=0, le=200)
    amount_requested: float | None = Field(default=None, ge=0)


_APPLICATION_DATA = AliasChoices("application_data", "applicationData")


class ValidateRequest(BaseModel):
    action: Literal["validate"]
    application_data: ApplicationData = Field(validation_alias=_APPLICATION_DATA)


class ProcessRequest(BaseModel):
    action: Literal["process"]
    application_data: ApplicationData = Field(validation_alias=_APPLICATION_DATA)


class UpdateStatusRequest(BaseModel):
    action: Literal["updateStatus"]
    application_id: int = Field(validation_alias=AliasChoices("application_id", "applicationId"))
    status: ApplicationStatus
    notes: str | None = Field(default=None, max_length=1000)


class EligibilityRequest(BaseModel):
    action: Literal["calculate-eligibility"]
    application_data: EligibilityData = Field(validation_alias=_APPLICATION_DATA)


LoanApplicationAction = Annotated[
    ValidateRequest | ProcessRequest | UpdateStatusRequest | EligibilityRequest,
    Field(discriminator="action"),
]


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: list[str]
    risk_score: int
    auto_approval_eligible: bool


class ProcessResponse(BaseModel):
    success: bool = True
    application_id: int
    application_number: str
    status: ApplicationStatus
    risk_score: int
    auto_approval_eligible: bool
    message: str = "Application submitted successfully"


class StatusUpdateResponse(BaseModel):
    success: bool = True
    application_id: int
    previous_status: ApplicationStatus
    status: ApplicationStatus
    changed: bool
    funded_date: datetime | None = None
    message: str = "Application status updated"


class RateRange(BaseModel):
    min: float
    max: float


class EligibilityResponse(BaseModel):
    eligible: bool
    max_loan_amount: float
    interest_rate_range: RateRange
    term_options: list[str]
    requirements: list[str]


class ApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    application_number: str | None = None
    user_id: str
    loan_type: LoanType
    amount_requested: Decimal | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    business_name: str | None = None
    business_address: str | None = None
    business_city: str | None = None
    business_state: str | None = None
    business_zip: str | None = None
    years_in_business: int | None = None
    loan_details: dict[str, Any] = Field(default_factory=dict)
    status: ApplicationStatus
    application_submitted_date: datetime | None = None
    funded_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ApplicationListResponse(BaseModel):
    data: list[ApplicationResponse]
    pagination: Pagination


class StatusHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: ApplicationStatus
    changed_by: str | None = None
    notes: str | None = None
    changed_at: datetime | None = None


class StatusHistoryResponse(BaseModel):
    application_id: int
    count: int
    history: list[StatusHistoryItem]
