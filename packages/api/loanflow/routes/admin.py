# This project was developed with assistance from AI tools.
"""Admin endpoints: application review, assignments, roles, bank accounts and audit."""

from datetime import date
from decimal import Decimal

from db import get_db
from db.enums import AppRole, ApplicationStatus, AuditAction, LoanType
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import ADMIN_ROLES
from ..middleware.auth import CurrentUser, require_admin, require_roles
from ..middleware.rate_limit import client_ip, enforce_rate_limit
from ..schemas import Pagination
from ..schemas.admin import (
    AdminStatusUpdate,
    ApplicationStatsResponse,
    AssignmentRequest,
    AssignmentResponse,
    BankAccountItem,
    BankAccountListResponse,
    BatchItem,
    BatchStatusResponse,
    BatchStatusUpdate,
    RoleChangeRequest,
    RoleChangeResponse,
)
from ..schemas.application import (
    ApplicationListResponse,
    ApplicationResponse,
    StatusHistoryItem,
    StatusHistoryResponse,
    StatusUpdateResponse,
)
from ..schemas.audit import AuditChainVerifyResponse, AuditEventItem, AuditSearchResponse
from ..schemas.auth import UserContext
from ..services import admin as admin_service
from ..services import application as app_service
from ..services.audit import (
    check_sensitive_access,
    record_audit,
    search_audit_events,
    verify_audit_chain,
)
from ..services.authorization import get_user_roles, grant_role, revoke_role

router = APIRouter()

AdminUser = Depends(require_admin)


def limited(endpoint: str, *roles: AppRole):
    """Count the call against ``endpoint``, then require one of ``roles``.

    A denied caller still spends budget; an over-limit caller gets 429, not 403.
    """
    gate = require_roles(*roles)

    async def _dependency(
        request: Request,
        response: Response,
        user: CurrentUser,
        session: AsyncSession = Depends(get_db),
    ) -> UserContext:
        await enforce_rate_limit(session, request, response, user, endpoint)
        return await gate(user)

    return Depends(_dependency)


def _request_context(request: Request) -> dict:
    return {"ip_address": client_ip(request), "user_agent": request.headers.get("user-agent")}


def _filters(
    search: str | None = Query(default=None, max_length=200),
    filter_status: ApplicationStatus | None = Query(default=None, alias="status"),
    loan_type: LoanType | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    min_amount: Decimal | None = Query(default=None, ge=0),
    max_amount: Decimal | None = Query(default=None, ge=0),
    assigned_to: str | None = None,
) -> admin_service.ApplicationFilters:
    return admin_service.ApplicationFilters(
        search=search,
        status=filter_status,
        loan_type=loan_type,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
        assigned_to=assigned_to,
    )


# -- Applications -----------------------------------------------------------


@router.get("/applications", response_model=ApplicationListResponse)
async def search_applications(
    request: Request,
    user: UserContext = AdminUser,
    filters: admin_service.ApplicationFilters = Depends(_filters),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_db),
) -> ApplicationListResponse:
    """Search all applications with filters."""
    applications, total = await admin_service.search_applications(
        session, filters, offset=offset, limit=limit,
    )
    await record_audit(
        session,
        action=AuditAction.VIEW_LOAN_APPLICATIONS,
        resource_type="loan_application",
        user_id=user.user_id,
        details={"total": total, "offset": offset, "limit": limit},
        **_request_context(request),
    )
    return ApplicationListResponse(
        data=[ApplicationResponse.model_validate(a) for a in applications],
        pagination=Pagination(
            total=total, offset=offset, limit=limit, has_more=(offset + limit) < total,
        ),
    )


@router.get("/applications/stats", response_model=ApplicationStatsResponse)
async def application_stats(
    request: Request,
    user: UserContext = AdminUser,
    session: AsyncSession = Depends(get_db),
) -> ApplicationStatsResponse:
    """Dashboard counts by status and loan type."""
    stats = await admin_service.get_application_stats(session)
    await record_audit(
        session,
        action=AuditAction.VIEW_ADMIN_DASHBOARD,
        resource_type="dashboard",
        user_id=user.user_id,
        **_request_context(request),
    )
    return ApplicationStatsResponse(**stats)


@router.get("/applications/export")
async def export_applications(
    request: Request,
    user: UserContext = limited("admin:export", *ADMIN_ROLES),
    filters: admin_service.ApplicationFilters = Depends(_filters),
    limit: int = Query(default=10_000, ge=1, le=50_000),
    session: AsyncSession = Depends(get_db),
) -> Response:
    """Export matching applications as CSV."""
    content, filename = await admin_service.export_applications_csv(
        session, user, filters, limit=limit, **_request_context(request),
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/applications/batch-status", response_model=BatchStatusResponse)
async def batch_update_status(
    body: BatchStatusUpdate,
    request: Request,
    user: UserContext = limited("admin:batch-update-status", *ADMIN_ROLES),
    session: AsyncSession = Depends(get_db),
) -> BatchStatusResponse:
    """Apply one status to many applications; failures are reported per item."""
    results = await app_service.batch_transition_status(
        session, user, body.application_ids, body.status, body.notes, **_request_context(request),
    )
    succeeded = sum(1 for r in results if r.success)
    return BatchStatusResponse(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=[
            BatchItem(
                application_id=r.application_id,
                success=r.success,
                previous_status=r.previous_status,
                status=r.status,
                error=r.error,
            )
            for r in results
        ],
    )


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: int,
    request: Request,
    user: UserContext = AdminUser,
    session: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    """Full application detail; the read is audited."""
    application = await admin_service.get_application_detail(
        session, user, application_id, **_request_context(request),
    )
    await check_sensitive_access(session, user, **_request_context(request))
    return ApplicationResponse.model_validate(application)


@router.get("/applications/{application_id}/history", response_model=StatusHistoryResponse)
async def get_application_history(
    application_id: int,
    request: Request,
    user: UserContext = AdminUser,
    session: AsyncSession = Depends(get_db),
) -> StatusHistoryResponse:
    """Status history of any application; the read is audited."""
    entries = await admin_service.get_application_history(
        session, user, application_id, **_request_context(request),
    )
    await check_sensitive_access(session, user, **_request_context(request))
    return StatusHistoryResponse(
        application_id=application_id,
        count=len(entries),
        history=[StatusHistoryItem.model_validate(e) for e in entries],
    )


@router.patch("/applications/{application_id}/status", response_model=StatusUpdateResponse)
async def update_status(
    application_id: int,
    body: AdminStatusUpdate,
    request: Request,
    user: UserContext = limited("admin:update-status", *ADMIN_ROLES),
    session: AsyncSession = Depends(get_db),
) -> StatusUpdateResponse:
    """Move one application to a new status."""
    change = await app_service.transition_status(
        session, user, application_id, body.status, body.notes, **_request_context(request),
    )
    return StatusUpdateResponse(
        application_id=change.application.id,
        previous_status=change.previous_status,
        status=change.status,
        changed=change.changed,
        funded_date=change.application.funded_date,
        message="Application status updated" if change.changed else "Status unchanged",
    )


# -- Assignments ------------------------------------------------------------


@router.put("/applications/{application_id}/assignment", response_model=AssignmentResponse)
async def assign_application(
    application_id: int,
    body: AssignmentRequest,
    request: Request,
    user: UserContext = limited("admin:assign", *ADMIN_ROLES),
    session: AsyncSession = Depends(get_db),
) -> AssignmentResponse:
    """Assign a reviewer, replacing any current assignment."""
    assignment = await admin_service.assign_application(
        session, user, application_id, body.admin_id, body.notes, **_request_context(request),
    )
    return AssignmentResponse.model_validate(assignment)


@router.delete(
    "/applications/{application_id}/assignment", status_code=status.HTTP_204_NO_CONTENT,
)
async def unassign_application(
    application_id: int,
    request: Request,
    user: UserContext = limited("admin:assign", *ADMIN_ROLES),
    session: AsyncSession = Depends(get_db),
) -> Response:
    removed = await admin_service.unassign_application(
        session, user, application_id, **_request_context(request),
    )
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No assignment found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -- Roles ------------------------------------------------------------------


async def _role_change(
    session: AsyncSession,
    request: Request,
    user: UserContext,
    target_user_id: str,
    role: AppRole,
    *,
    grant: bool,
) -> RoleChangeResponse:
    if grant:
        changed = await grant_role(session, target_user_id, role, granted_by=user.user_id)
    else:
        changed = await revoke_role(session, target_user_id, role)
    await record_audit(
        session,
        action=AuditAction.MANAGE_USER_ROLES,
        resource_type="user_role",
        resource_id=target_user_id,
        user_id=user.user_id,
        details={"operation": "grant" if grant else "revoke", "role": role.value, "changed": changed},
        **_request_context(request),
    )
    roles = await get_user_roles(session, target_user_id)
    return RoleChangeResponse(
        user_id=target_user_id, role=role, changed=changed, roles=sorted(roles, key=lambda r: r.value),
    )


@router.get("/users/{user_id}/roles", response_model=list[AppRole])
async def list_user_roles(
    user_id: str,
    _user: UserContext = AdminUser,
    session: AsyncSession = Depends(get_db),
) -> list[AppRole]:
    return sorted(await get_user_roles(session, user_id), key=lambda r: r.value)


@router.post("/users/{user_id}/roles", response_model=RoleChangeResponse)
async def add_user_role(
    user_id: str,
    body: RoleChangeRequest,
    request: Request,
    user: UserContext = limited("admin:manage-roles", AppRole.SUPER_ADMIN),
    session: AsyncSession = Depends(get_db),
) -> RoleChangeResponse:
    """Grant a role (super admins only)."""
    return await _role_change(session, request, user, user_id, body.role, grant=True)


@router.delete("/users/{user_id}/roles/{role}", response_model=RoleChangeResponse)
async def remove_user_role(
    user_id: str,
    role: AppRole,
    request: Request,
    user: UserContext = limited("admin:manage-roles", AppRole.SUPER_ADMIN),
    session: AsyncSession = Depends(get_db),
) -> RoleChangeResponse:
    """Revoke a role (super admins only)."""
    return await _role_change(session, request, user, user_id, role, grant=False)


# -- Bank accounts ----------------------------------------------------------


@router.get("/bank-accounts", response_model=BankAccountListResponse)
async def list_bank_accounts(
    request: Request,
    user_id: str | None = None,
    unmasked: bool = False,
    user: UserContext = AdminUser,
    session: AsyncSession = Depends(get_db),
) -> BankAccountListResponse:
    """Borrower bank accounts; numbers are masked unless ``unmasked`` is requested."""
    accounts = await admin_service.list_bank_accounts(
        session, user, owner_id=user_id, unmasked=unmasked, **_request_context(request),
    )
    await check_sensitive_access(session, user, **_request_context(request))
    if unmasked:
        request.state.unmask_financials = True
    return BankAccountListResponse(
        count=len(accounts),
        unmasked=unmasked,
        data=[BankAccountItem.model_validate(a) for a in accounts],
    )


# -- Audit ------------------------------------------------------------------


@router.get("/audit", response_model=AuditSearchResponse)
async def search_audit(
    request: Request,
    user_id: str | None = None,
    action: AuditAction | None = None,
    resource_type: str | None = Query(default=None, max_length=100),
    resource_id: str | None = Query(default=None, max_length=255),
    days: int | None = Query(default=None, ge=1, le=365),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    user: UserContext = AdminUser,
    session: AsyncSession = Depends(get_db),
) -> AuditSearchResponse:
    """Search the audit trail, newest first."""
    entries, total = await search_audit_events(
        session,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        days=days,
        offset=offset,
        limit=limit,
    )
    await record_audit(
        session,
        action=AuditAction.VIEW_SECURITY_AUDIT,
        resource_type="audit_log",
        user_id=user.user_id,
        details={"total": total, "action": action.value if action else None},
        **_request_context(request),
    )
    return AuditSearchResponse(
        data=[AuditEventItem.model_validate(e) for e in entries],
        pagination=Pagination(
            total=total, offset=offset, limit=limit, has_more=(offset + limit) < total,
        ),
    )


@router.get("/audit/verify", response_model=AuditChainVerifyResponse)
async def verify_audit(
    _user: UserContext = AdminUser,
    session: AsyncSession = Depends(get_db),
) -> AuditChainVerifyResponse:
    """Walk the audit hash chain and report the first break, if any."""
    result = await verify_audit_chain(session)
    return AuditChainVerifyResponse(**result)
