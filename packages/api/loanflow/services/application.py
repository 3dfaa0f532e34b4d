# This project was developed with assistance from AI tools.
"""Loan application lifecycle.

Submission validates and scores the application, picks its initial status
and persists it with a history entry and an awaited audit entry. Status
updates are admin-only, run an ordered list of guarded side effects after
the status write, then audit and notify. Notification failures never fail
the request.

Borrower reads are scoped by owner id; an application outside the caller's
scope is reported as not found.
"""

import calendar
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from functools import partial

from db import ExistingLoan, LoanApplication, StatusHistoryEntry
from db.enums import ApplicationStatus, AuditAction, ExistingLoanStatus
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..schemas.application import ApplicationData
from ..schemas.auth import UserContext
from .audit import record_audit
from .authorization import authorize_action
from .calculator import monthly_payment
from .notification import notify_loan_funded, notify_status_change
from .side_effects import fire_and_log_in_savepoint
from .validation import (
    ValidationResult,
    parse_interest_rate,
    parse_term_months,
    validate_application,
)

logger = logging.getLogger(__name__)

_NOTES_STRIP = re.compile(r"[<>'\"\\;]")
MAX_NOTES_LENGTH = 1000


class ApplicationValidationError(ValueError):
    """Submitted application failed validation; carries every error message."""

    def __init__(self, errors: list[str], result: ValidationResult | None = None):
        super().__init__("Application validation failed")
        self.errors = errors
        self.result = result


class InvalidTransitionError(ValueError):
    """Raised when an application status transition is not allowed."""

    pass


class ApplicationNotFoundError(LookupError):
    """Application does not exist or is outside the caller's scope."""

    def __init__(self, application_id: int):
        super().__init__(f"Application {application_id} not found")
        self.application_id = application_id


def generate_application_number(now: datetime | None = None) -> str:
    """``<prefix>-<year>-<day of year>-<seconds since midnight>`` in UTC."""
    now = (now or datetime.now(UTC)).astimezone(UTC)
    seconds = now.hour * 3600 + now.minute * 60 + now.second
    day = now.timetuple().tm_yday
    return f"{settings.APPLICATION_NUMBER_PREFIX}-{now.year}-{day:03d}-{seconds:05d}"


async def allocate_application_number(session: AsyncSession, now: datetime) -> str:
    """Time-derived number, suffixed ``-2``, ``-3`` ... when the second is already taken."""
    base = generate_application_number(now)
    result = await session.execute(
        select(LoanApplication.application_number).where(
            (LoanApplication.application_number == base)
            | LoanApplication.application_number.like(f"{base}-%")
        )
    )
    taken = set(result.scalars().all())
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def sanitize_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    return _NOTES_STRIP.sub("", notes)[:MAX_NOTES_LENGTH]


def initial_status(result: ValidationResult) -> ApplicationStatus:
    if result.auto_approval_eligible:
        return ApplicationStatus.UNDER_REVIEW
    if result.risk_score > settings.RISK.manual_review_threshold:
        return ApplicationStatus.REQUIRES_REVIEW
    return ApplicationStatus.SUBMITTED


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


async def process_application(
    session: AsyncSession,
    user: UserContext,
    data: ApplicationData,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[LoanApplication, ValidationResult]:
    """Validate, score and persist a new submission for ``user``.

    Raises:
        ApplicationValidationError: nothing is persisted.
        AuditWriteError: the submission audit could not be written.
    """
    result = validate_application(data)
    if not result.is_valid:
        raise ApplicationValidationError(result.errors, result)

    now = datetime.now(UTC)
    status = initial_status(result)
    loan_details = {
        **data.loan_details,
        "risk_score": result.risk_score,
        "auto_approval_eligible": result.auto_approval_eligible,
    }

    application = LoanApplication(
        application_number=await allocate_application_number(session, now),
        user_id=user.user_id,
        loan_type=data.loan_type,
        amount_requested=data.amount_requested,
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        email=data.email.strip(),
        phone=data.phone,
        business_name=data.business_name.strip(),
        business_address=data.business_address,
        business_city=data.business_city,
        business_state=data.business_state,
        business_zip=data.business_zip,
        years_in_business=data.years_in_business,
        loan_details=loan_details,
        status=status,
        application_started_date=now,
        application_submitted_date=now,
    )
    session.add(application)
    await session.flush()

    session.add(
        StatusHistoryEntry(
            application_id=application.id,
            status=status,
            changed_by=user.user_id,
            notes="Application submitted",
            changed_at=now,
        )
    )
    await session.flush()

    await record_audit(
        session,
        action=AuditAction.SUBMIT_APPLICATION,
        resource_type="loan_application",
        resource_id=application.id,
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={
            "application_number": application.application_number,
            "loan_type": data.loan_type.value,
            "amount_requested": data.amount_requested,
            "status": status.value,
            "risk_score": result.risk_score,
        },
    )

    await fire_and_log_in_savepoint(
        session,
        partial(notify_status_change, session, application, ApplicationStatus.SUBMITTED),
        name="application_submitted notification",
    )

    logger.info(
        "Application %s submitted by %s: status=%s risk=%d",
        application.application_number,
        user.user_id,
        status.value,
        result.risk_score,
    )
    return application, result


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


@dataclass
class StatusChange:
    application: LoanApplication
    previous_status: ApplicationStatus
    status: ApplicationStatus
    changed: bool
    loan: ExistingLoan | None = None
    effects: list[str] = field(default_factory=list)


@dataclass
class TransitionContext:
    session: AsyncSession
    user: UserContext
    application: LoanApplication
    old_status: ApplicationStatus
    new_status: ApplicationStatus
    notes: str | None
    now: datetime
    loan: ExistingLoan | None = None

    @property
    def was_funded(self) -> bool:
        return self.old_status == ApplicationStatus.FUNDED

    @property
    def is_funded(self) -> bool:
        return self.new_status == ApplicationStatus.FUNDED


@dataclass(frozen=True)
class SideEffect:
    name: str
    guard: Callable[[TransitionContext], bool]
    run: Callable[[TransitionContext], Awaitable[None]]


def allowed_targets(application: LoanApplication) -> frozenset[ApplicationStatus]:
    """Statuses reachable from the application's current status."""
    current = application.status or ApplicationStatus.DRAFT
    if current == ApplicationStatus.PAUSED:
        paused_from = (application.loan_details or {}).get("paused_from")
        try:
            return frozenset({ApplicationStatus(paused_from)}) if paused_from else frozenset()
        except ValueError:
            return frozenset()
    return ApplicationStatus.valid_transitions().get(current, frozenset())


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


async def _stamp_funded_date(ctx: TransitionContext) -> None:
    ctx.application.funded_date = ctx.now


async def _clear_funded_date(ctx: TransitionContext) -> None:
    ctx.application.funded_date = None


async def _stamp_submitted_date(ctx: TransitionContext) -> None:
    ctx.application.application_submitted_date = ctx.now


def _declared_term(app: LoanApplication, key: str, parse, default):
    """Borrower-declared rate or term; rows stored before validation fall back to the default."""
    raw = (app.loan_details or {}).get(key)
    value = parse(raw)
    if value is None:
        if raw is not None:
            logger.warning("Application %s has unusable %s=%r; using %s", app.id, key, raw, default)
        return default
    return value


async def _create_existing_loan(ctx: TransitionContext) -> None:
    """Synthesize the servicing record unless an active one already exists."""
    app = ctx.application
    existing = await get_active_loan(ctx.session, app.id)
    if existing is not None:
        ctx.loan = existing
        return

    details = app.loan_details or {}
    rate = _declared_term(app, "interest_rate", parse_interest_rate, settings.DEFAULT_INTEREST_RATE)
    term = _declared_term(app, "term_months", parse_term_months, settings.DEFAULT_TERM_MONTHS)
    principal = float(app.amount_requested or 0)
    today = ctx.now.date()
    loan_type = app.loan_type.value if app.loan_type else ""

    loan = ExistingLoan(
        user_id=app.user_id,
        application_id=app.id,
        loan_name=f"{app.business_name or app.applicant_name} - {loan_type}",
        lender=settings.LENDER_NAME,
        loan_type=app.loan_type,
        original_amount=principal,
        current_balance=principal,
        interest_rate=rate,
        term_months=term,
        remaining_months=term,
        monthly_payment=monthly_payment(principal, rate, term),
        origination_date=today,
        maturity_date=_add_months(today, term),
        status=ExistingLoanStatus.CURRENT,
        loan_purpose=details.get("loan_purpose") or "Business financing",
        has_prepayment_penalty=bool(details.get("has_prepayment_penalty", False)),
    )
    ctx.session.add(loan)
    await ctx.session.flush()
    ctx.loan = loan


async def _reverse_existing_loan(ctx: TransitionContext) -> None:
    await ctx.session.execute(
        update(ExistingLoan)
        .where(
            ExistingLoan.application_id == ctx.application.id,
            ExistingLoan.status == ExistingLoanStatus.CURRENT,
        )
        .values(status=ExistingLoanStatus.REVERSED)
    )


async def _append_history(ctx: TransitionContext) -> None:
    note = f"Status changed from {ctx.old_status.value} to {ctx.new_status.value}"
    if ctx.notes:
        note = f"{note}: {ctx.notes}"
    ctx.session.add(
        StatusHistoryEntry(
            application_id=ctx.application.id,
            status=ctx.new_status,
            changed_by=ctx.user.user_id,
            notes=note,
            changed_at=ctx.now,
        )
    )


# Run in order after the status write. Each guard is keyed on the previous
# status so re-applying a transition never repeats an effect.
SIDE_EFFECTS: tuple[SideEffect, ...] = (
    SideEffect("stamp_funded_date", lambda c: not c.was_funded and c.is_funded, _stamp_funded_date),
    SideEffect("create_existing_loan", lambda c: not c.was_funded and c.is_funded, _create_existing_loan),
    SideEffect("clear_funded_date", lambda c: c.was_funded and not c.is_funded, _clear_funded_date),
    SideEffect("reverse_existing_loan", lambda c: c.was_funded and not c.is_funded, _reverse_existing_loan),
    SideEffect(
        "stamp_submitted_date",
        lambda c: c.new_status == ApplicationStatus.SUBMITTED
        and c.application.application_submitted_date is None,
        _stamp_submitted_date,
    ),
    SideEffect("record_history", lambda c: c.old_status != c.new_status, _append_history),
)


async def transition_status(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    new_status: ApplicationStatus,
    notes: str | None = None,
    *,
    batch_size: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> StatusChange:
    """Move an application to ``new_status`` (admin only).

    A same-status update records notes and an audit entry but runs no side
    effects and sends no notification.

    Raises:
        AuthorizationError: caller is not an admin.
        ApplicationNotFoundError: no such application.
        InvalidTransitionError: ``new_status`` is not reachable.
        AuditWriteError: the status audit could not be written.
    """
    authorize_action(user, "updateStatus")

    application = await session.get(LoanApplication, application_id)
    if application is None:
        raise ApplicationNotFoundError(application_id)

    old_status = application.status or ApplicationStatus.DRAFT
    changed = old_status != new_status
    if changed:
        allowed = allowed_targets(application)
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition from '{old_status.value}' to '{new_status.value}'. "
                f"Allowed: {sorted(s.value for s in allowed) if allowed else 'none (terminal status)'}."
            )

    now = datetime.now(UTC)
    clean_notes = sanitize_notes(notes)

    # Reassign so the JSON column is marked dirty.
    details = dict(application.loan_details or {})
    if clean_notes:
        details["status_notes"] = clean_notes
    details["status_updated_at"] = now.isoformat()
    if changed and new_status == ApplicationStatus.PAUSED:
        details["paused_from"] = old_status.value
    elif changed and old_status == ApplicationStatus.PAUSED:
        details.pop("paused_from", None)
    application.loan_details = details
    application.status = new_status

    ctx = TransitionContext(session, user, application, old_status, new_status, clean_notes, now)
    effects = []
    if changed:
        for effect in SIDE_EFFECTS:
            if effect.guard(ctx):
                await effect.run(ctx)
                effects.append(effect.name)
    await session.flush()

    audit_details = {
        "application_number": application.application_number,
        "old_status": old_status.value,
        "new_status": new_status.value,
        "notes": clean_notes,
        "effects": effects,
    }
    if batch_size is not None:
        audit_details.update({"batch_operation": True, "total_in_batch": batch_size})
    await record_audit(
        session,
        action=AuditAction.UPDATE_APPLICATION_STATUS,
        resource_type="loan_application",
        resource_id=application.id,
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details=audit_details,
    )

    if changed:
        if ctx.is_funded:
            notify = partial(notify_loan_funded, session, application, ctx.loan)
        else:
            notify = partial(notify_status_change, session, application, new_status)
        await fire_and_log_in_savepoint(
            session, notify, name=f"{new_status.value} notification",
        )
        logger.info(
            "Application %s: %s -> %s by %s",
            application.id,
            old_status.value,
            new_status.value,
            user.user_id,
        )

    return StatusChange(
        application=application,
        previous_status=old_status,
        status=new_status,
        changed=changed,
        loan=ctx.loan,
        effects=effects,
    )


@dataclass
class BatchItemResult:
    application_id: int
    success: bool
    previous_status: ApplicationStatus | None = None
    status: ApplicationStatus | None = None
    error: str | None = None


async def batch_transition_status(
    session: AsyncSession,
    user: UserContext,
    application_ids: list[int],
    new_status: ApplicationStatus,
    notes: str | None = None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> list[BatchItemResult]:
    """Apply one status to many applications, each in its own SAVEPOINT.

    A missing application or invalid transition fails only that item.
    """
    authorize_action(user, "batch-update-status")

    results: list[BatchItemResult] = []
    for application_id in application_ids:
        try:
            async with session.begin_nested():
                change = await transition_status(
                    session,
                    user,
                    application_id,
                    new_status,
                    notes,
                    batch_size=len(application_ids),
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
        except (ApplicationNotFoundError, InvalidTransitionError) as exc:
            results.append(BatchItemResult(application_id, False, error=str(exc)))
            continue
        results.append(
            BatchItemResult(
                application_id, True, previous_status=change.previous_status, status=change.status,
            )
        )

    succeeded = sum(1 for r in results if r.success)
    logger.info(
        "Batch status update to %s by %s: %d/%d succeeded",
        new_status.value,
        user.user_id,
        succeeded,
        len(results),
    )
    return results


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_user_applications(
    session: AsyncSession,
    user_id: str,
    *,
    status: ApplicationStatus | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[LoanApplication], int]:
    """Applications owned by ``user_id``, newest first."""
    filters = [LoanApplication.user_id == user_id]
    if status is not None:
        filters.append(LoanApplication.status == status)

    total = (
        await session.execute(select(func.count(LoanApplication.id)).where(*filters))
    ).scalar() or 0
    result = await session.execute(
        select(LoanApplication)
        .where(*filters)
        .order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def get_user_application(
    session: AsyncSession, user_id: str, application_id: int,
) -> LoanApplication:
    result = await session.execute(
        select(LoanApplication).where(
            LoanApplication.id == application_id, LoanApplication.user_id == user_id,
        )
    )
    application = result.scalar_one_or_none()
    if application is None:
        raise ApplicationNotFoundError(application_id)
    return application


async def get_application(session: AsyncSession, application_id: int) -> LoanApplication:
    """Unscoped lookup for admin callers."""
    application = await session.get(LoanApplication, application_id)
    if application is None:
        raise ApplicationNotFoundError(application_id)
    return application


async def get_status_history(
    session: AsyncSession, application_id: int,
) -> list[StatusHistoryEntry]:
    result = await session.execute(
        select(StatusHistoryEntry)
        .where(StatusHistoryEntry.application_id == application_id)
        .order_by(StatusHistoryEntry.id.asc())
    )
    return list(result.scalars().all())


async def get_active_loan(session: AsyncSession, application_id: int) -> ExistingLoan | None:
    """The derived loan record that has not been reversed, if any."""
    result = await session.execute(
        select(ExistingLoan)
        .where(
            ExistingLoan.application_id == application_id,
            ExistingLoan.status != ExistingLoanStatus.REVERSED,
        )
        .order_by(ExistingLoan.id.desc())
    )
    return result.scalars().first()
