# This project was developed with assistance from AI tools.
"""Pydantic request/response models for admin endpoints."""

from datetime import datetime

from db.enums import AppRole, ApplicationStatus
from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class AdminStatusUpdate(BaseModel):
    """Body for PATCH /api/admin/applications/{id}/status."""

    status: ApplicationStatus
    notes: str | None = Field(default=None, max_length=1000)


class BatchStatusUpdate(BaseModel):
    """Body for POST /api/admin/applications/batch-status."""

    application_ids: list[int] = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("application_ids", "applicationIds"),
    )
    status: ApplicationStatus
    notes: str | None = Field(default=None, max_length=1000)


class BatchItem(BaseModel):
    application_id: int
    success: bool
    previous_status: ApplicationStatus | None = None
    status: ApplicationStatus | None = None
    error: str | None = None


class BatchStatusResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: list[BatchItem]


class ApplicationStatsResponse(BaseModel):
    """Response for GET /api/admin/applications/stats."""

    total: int
    by_status: dict[str, int]
    by_loan_type: dict[str, int]
    total_amount: float
    average_amount: float
    this_month: int
    this_week: int


class AssignmentRequest(BaseModel):
    admin_id: str = Field(min_length=1, max_length=255)
    notes: str | None = Field(default=None, max_length=1000)


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    application_id: int
    admin_id: str
    assigned_by: str
    notes: str | None = None
    assigned_at: datetime | None = None


class RoleChangeRequest(BaseModel):
    role: AppRole


class RoleChangeResponse(BaseModel):
    user_id: str
    role: AppRole
    changed: bool
    roles: list[AppRole]


class BankAccountItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    account_holder_name: str
    bank_name: str
    account_type: str
    account_number: str
    routing_number: str | None = None
    is_primary: bool


class BankAccountListResponse(BaseModel):
    count: int
    unmasked: bool
    data: list[BankAccountItem]
