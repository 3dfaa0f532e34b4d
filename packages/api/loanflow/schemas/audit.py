# This project was developed with assistance from AI tools.
"""Pydantic schemas for audit trail endpoints."""

from datetime import datetime
from typing import Any

from db.enums import AuditAction
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from . import Pagination


class AuditEventItem(BaseModel):
    """Single audit entry in a query response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    action: AuditAction
    user_id: str | None = None
    resource_type: str
    resource_id: str | None = None
    ip_address: str | None = None
    details: dict | None = None
    created_at: datetime | None = None


class AuditSearchResponse(BaseModel):
    """Response for GET /api/admin/audit."""

    data: list[AuditEventItem]
    pagination: Pagination


class AuditChainVerifyResponse(BaseModel):
    """Response for GET /api/admin/audit/verify."""

    status: str
    entries_checked: int
    first_break_id: int | None = None


class ClientAuditEvent(BaseModel):
    """Body for POST /api/audit, sent by the portal client."""

    action: AuditAction
    resource_type: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("resource_type", "resourceType"),
    )
    resource_id: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("resource_id", "resourceId"),
    )
    details: dict[str, Any] | None = None


class ClientAuditResponse(BaseModel):
    success: bool = True
    id: int
    alert_raised: bool = False
