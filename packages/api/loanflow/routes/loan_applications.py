# This project was developed with assistance from AI tools.
"""Loan application endpoints.

POST dispatches on ``action``. Every action is rate limited under its own
key before anything else runs; ``process`` and ``updateStatus`` require an
authenticated caller, and ``updateStatus`` additionally requires an admin.
GET routes are scoped to the caller's own applications.
"""

from db import get_db
from db.enums import ApplicationStatus
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..middleware.auth import CurrentUser, OptionalUser
from ..middleware.rate_limit import client_ip, enforce_rate_limit
from ..schemas import Pagination
from ..schemas.application import (
    ApplicationListResponse,
    ApplicationResponse,
    EligibilityRequest,
    EligibilityResponse,
    LoanApplicationAction,
    ProcessRequest,
    ProcessResponse,
    RateRange,
    StatusHistoryItem,
    StatusHistoryResponse,
    StatusUpdateResponse,
    UpdateStatusRequest,
    ValidateRequest,
    ValidationResponse,
)
from ..schemas.auth import UserContext
from ..services import application as app_service
from ..services.calculator import calculate_eligibility
from ..services.validation import validate_application

router = APIRouter()


def _require_user(user: UserContext | None) -> UserContext:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def _validate(body: ValidateRequest) -> ValidationResponse:
    result = validate_application(body.application_data)
    return ValidationResponse(
        is_valid=result.is_valid,
        errors=result.errors,
        risk_score=result.risk_score,
        auto_approval_eligible=result.auto_approval_eligible,
    )


def _eligibility(body: EligibilityRequest) -> EligibilityResponse:
    data = body.application_data
    result = calculate_eligibility(data.loan_type, data.years_in_business, data.amount_requested)
    return EligibilityResponse(
        eligible=result.eligible,
        max_loan_amount=result.max_loan_amount,
        interest_rate_range=RateRange(min=result.min_rate, max=result.max_rate),
        term_options=result.term_options,
        requirements=result.requirements,
    )


async def _process(
    session: AsyncSession, request: Request, user: UserContext, body: ProcessRequest,
) -> ProcessResponse:
    application, result = await app_service.process_application(
        session,
        user,
        body.application_data,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return ProcessResponse(
        application_id=application.id,
        application_number=application.application_number,
        status=application.status,
        risk_score=result.risk_score,
        auto_approval_eligible=result.auto_approval_eligible,
    )


async def _update_status(
    session: AsyncSession, request: Request, user: UserContext, body: UpdateStatusRequest,
) -> StatusUpdateResponse:
    change = await app_service.transition_status(
        session,
        user,
        body.application_id,
        body.status,
        body.notes,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return StatusUpdateResponse(
        application_id=change.application.id,
        previous_status=change.previous_status,
        status=change.status,
        changed=change.changed,
        funded_date=change.application.funded_date,
        message="Application status updated" if change.changed else "Status unchanged",
    )


@router.post("/")
async def loan_application_action(
    body: LoanApplicationAction,
    request: Request,
    response: Response,
    user: OptionalUser,
    session: AsyncSession = Depends(get_db),
) -> ValidationResponse | ProcessResponse | StatusUpdateResponse | EligibilityResponse:
    """Validate, submit, move or price a loan application."""
    await enforce_rate_limit(session, request, response, user, f"loan-application:{body.action}")

    if isinstance(body, ValidateRequest):
        return _validate(body)
    if isinstance(body, EligibilityRequest):
        return _eligibility(body)
    if isinstance(body, ProcessRequest):
        return await _process(session, request, _require_user(user), body)
    return await _update_status(session, request, _require_user(user), body)


@router.get("/", response_model=ApplicationListResponse)
async def list_my_applications(
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    filter_status: ApplicationStatus | None = None,
) -> ApplicationListResponse:
    """List the caller's own applications, newest first."""
    applications, total = await app_service.list_user_applications(
        session, user.user_id, status=filter_status, offset=offset, limit=limit,
    )
    return ApplicationListResponse(
        data=[ApplicationResponse.model_validate(a) for a in applications],
        pagination=Pagination(
            total=total,
            offset=offset,
            limit=limit,
            has_more=(offset + limit) < total,
        ),
    )


@router.get("/{application_id}", response_model=ApplicationResponse)
async def get_my_application(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    """Return one of the caller's applications; others are reported as 404."""
    application = await app_service.get_user_application(session, user.user_id, application_id)
    return ApplicationResponse.model_validate(application)


@router.get("/{application_id}/history", response_model=StatusHistoryResponse)
async def get_my_application_history(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> StatusHistoryResponse:
    """Status history for one of the caller's applications, oldest first."""
    await app_service.get_user_application(session, user.user_id, application_id)
    entries = await app_service.get_status_history(session, application_id)
    return StatusHistoryResponse(
        application_id=application_id,
        count=len(entries),
        history=[StatusHistoryItem.model_validate(e) for e in entries],
    )
