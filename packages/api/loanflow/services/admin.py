# This project was developed with assistance from AI tools.
"""Admin-side reads and management of loan applications.

Search terms are capped, stripped of query metacharacters and LIKE-escaped
before reaching the store. Exports neutralize spreadsheet formulas.
Every privileged read and mutation records an awaited audit entry.
"""

import csv
import enum
import io
import logging
import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from db import AdminAssignment, BankAccount, LoanApplication, StatusHistoryEntry
from db.enums import ApplicationStatus, AuditAction, LoanType
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..schemas.auth import UserContext
from .application import get_application, get_status_history
from .audit import record_audit

logger = logging.getLogger(__name__)

MAX_SEARCH_LENGTH = 100
_SEARCH_STRIP = re.compile(r"[\\(),.'\"\[\]{}|^$*+?]")
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

EXPORT_COLUMNS = (
    ("Application Number", "application_number"),
    ("Status", "status"),
    ("Loan Type", "loan_type"),
    ("Amount Requested", "amount_requested"),
    ("First Name", "first_name"),
    ("Last Name", "last_name"),
    ("Email", "email"),
    ("Phone", "phone"),
    ("Business Name", "business_name"),
    ("City", "business_city"),
    ("State", "business_state"),
    ("Years in Business", "years_in_business"),
    ("Submitted", "application_submitted_date"),
    ("Funded", "funded_date"),
    ("Created", "created_at"),
)


def sanitize_search_term(term: str | None) -> str:
    """Cap, strip metacharacters and escape LIKE wildcards (escape char ``\\``)."""
    if not term:
        return ""
    cleaned = _SEARCH_STRIP.sub("", term[:MAX_SEARCH_LENGTH]).strip()
    return cleaned.replace("%", "\\%").replace("_", "\\_")


def sanitize_csv_value(value) -> str:
    """Render a cell, prefixing formula-like text with a quote."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        text = value.isoformat()
    elif isinstance(value, enum.Enum):
        text = str(value.value)
    else:
        text = str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "'" + text
    return text


@dataclass
class ApplicationFilters:
    search: str | None = None
    status: ApplicationStatus | None = None
    loan_type: LoanType | None = None
    date_from: date | None = None
    date_to: date | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    assigned_to: str | None = None


def _filter_clauses(filters: ApplicationFilters) -> list:
    clauses = []
    term = sanitize_search_term(filters.search)
    if term:
        pattern = f"%{term}%"
        clauses.append(
            or_(
                LoanApplication.business_name.ilike(pattern, escape="\\"),
                LoanApplication.first_name.ilike(pattern, escape="\\"),
                LoanApplication.last_name.ilike(pattern, escape="\\"),
                LoanApplication.application_number.ilike(pattern, escape="\\"),
            )
        )
    if filters.status is not None:
        clauses.append(LoanApplication.status == filters.status)
    if filters.loan_type is not None:
        clauses.append(LoanApplication.loan_type == filters.loan_type)
    if filters.date_from is not None:
        clauses.append(
            LoanApplication.created_at >= datetime.combine(filters.date_from, datetime.min.time(), UTC)
        )
    if filters.date_to is not None:
        clauses.append(
            LoanApplication.created_at
            < datetime.combine(filters.date_to + timedelta(days=1), datetime.min.time(), UTC)
        )
    if filters.min_amount is not None:
        clauses.append(LoanApplication.amount_requested >= filters.min_amount)
    if filters.max_amount is not None:
        clauses.append(LoanApplication.amount_requested <= filters.max_amount)
    if filters.assigned_to:
        clauses.append(
            LoanApplication.id.in_(
                select(AdminAssignment.application_id).where(
                    AdminAssignment.admin_id == filters.assigned_to
                )
            )
        )
    return clauses


async def search_applications(
    session: AsyncSession,
    filters: ApplicationFilters,
    *,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[LoanApplication], int]:
    """Filtered application page, newest first. Returns (page, total)."""
    clauses = _filter_clauses(filters)
    total = (
        await session.execute(select(func.count(LoanApplication.id)).where(*clauses))
    ).scalar() or 0
    result = await session.execute(
        select(LoanApplication)
        .where(*clauses)
        .order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def get_application_detail(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> LoanApplication:
    application = await get_application(session, application_id)
    await record_audit(
        session,
        action=AuditAction.VIEW_LOAN_APPLICATION_DETAIL,
        resource_type="loan_application",
        resource_id=application.id,
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={"application_number": application.application_number},
    )
    return application


async def get_application_history(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> list[StatusHistoryEntry]:
    """Status history of any application; audited like the detail read."""
    application = await get_application(session, application_id)
    entries = await get_status_history(session, application_id)
    await record_audit(
        session,
        action=AuditAction.VIEW_LOAN_APPLICATION_DETAIL,
        resource_type="loan_application",
        resource_id=application.id,
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={
            "application_number": application.application_number,
            "view": "status_history",
            "entries": len(entries),
        },
    )
    return entries


async def get_application_stats(session: AsyncSession, *, now: datetime | None = None) -> dict:
    """Counts and amounts for the admin dashboard."""
    now = now or datetime.now(UTC)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    week_start = (now - timedelta(days=now.weekday())).replace(
        hour=0, minute=0, second=0, microsecond=0,
    )

    by_status_rows = await session.execute(
        select(LoanApplication.status, func.count(LoanApplication.id)).group_by(LoanApplication.status)
    )
    by_type_rows = await session.execute(
        select(LoanApplication.loan_type, func.count(LoanApplication.id)).group_by(
            LoanApplication.loan_type
        )
    )
    totals = (
        await session.execute(
            select(
                func.count(LoanApplication.id),
                func.coalesce(func.sum(LoanApplication.amount_requested), 0),
            )
        )
    ).one()
    this_month = (
        await session.execute(
            select(func.count(LoanApplication.id)).where(LoanApplication.created_at >= month_start)
        )
    ).scalar() or 0
    this_week = (
        await session.execute(
            select(func.count(LoanApplication.id)).where(LoanApplication.created_at >= week_start)
        )
    ).scalar() or 0

    total, total_amount = totals[0] or 0, float(totals[1] or 0)
    return {
        "total": total,
        "by_status": {status.value: count for status, count in by_status_rows.all()},
        "by_loan_type": {loan_type.value: count for loan_type, count in by_type_rows.all()},
        "total_amount": round(total_amount, 2),
        "average_amount": round(total_amount / total, 2) if total else 0.0,
        "this_month": this_month,
        "this_week": this_week,
    }


async def export_applications_csv(
    session: AsyncSession,
    user: UserContext,
    filters: ApplicationFilters,
    *,
    limit: int = 10_000,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[str, str]:
    """Render matching applications as CSV. Returns (content, filename)."""
    applications, total = await search_applications(session, filters, limit=limit)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([header for header, _ in EXPORT_COLUMNS])
    for app in applications:
        writer.writerow([sanitize_csv_value(getattr(app, attr)) for _, attr in EXPORT_COLUMNS])

    await record_audit(
        session,
        action=AuditAction.EXPORT_DATA,
        resource_type="loan_application",
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={
            "format": "csv",
            "rows": len(applications),
            "total_matching": total,
            "filters": {
                "search": filters.search,
                "status": filters.status.value if filters.status else None,
                "loan_type": filters.loan_type.value if filters.loan_type else None,
            },
        },
    )

    filename = f"loan_applications_{datetime.now(UTC):%Y-%m-%d}.csv"
    return buffer.getvalue(), filename


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


async def get_assignment(session: AsyncSession, application_id: int) -> AdminAssignment | None:
    result = await session.execute(
        select(AdminAssignment)
        .where(AdminAssignment.application_id == application_id)
        .order_by(AdminAssignment.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def assign_application(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    admin_id: str,
    notes: str | None = None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AdminAssignment:
    """Assign a reviewer, replacing any existing assignment."""
    await get_application(session, application_id)
    previous = await get_assignment(session, application_id)
    if previous is not None:
        await session.execute(
            delete(AdminAssignment).where(AdminAssignment.application_id == application_id)
        )

    assignment = AdminAssignment(
        application_id=application_id,
        admin_id=admin_id,
        assigned_by=user.user_id,
        notes=notes,
        assigned_at=datetime.now(UTC),
    )
    session.add(assignment)
    await session.flush()

    await record_audit(
        session,
        action=AuditAction.UPDATE_ASSIGNMENT if previous else AuditAction.ASSIGN_APPLICATION,
        resource_type="loan_application",
        resource_id=application_id,
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={
            "admin_id": admin_id,
            "previous_admin_id": previous.admin_id if previous else None,
            "notes": notes,
        },
    )
    return assignment


async def unassign_application(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """Remove the assignment; returns False if there was none."""
    previous = await get_assignment(session, application_id)
    if previous is None:
        return False
    await session.execute(
        delete(AdminAssignment).where(AdminAssignment.application_id == application_id)
    )
    await record_audit(
        session,
        action=AuditAction.DELETE_ASSIGNMENT,
        resource_type="loan_application",
        resource_id=application_id,
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={"admin_id": previous.admin_id},
    )
    return True


# ---------------------------------------------------------------------------
# Bank accounts
# ---------------------------------------------------------------------------


async def list_bank_accounts(
    session: AsyncSession,
    user: UserContext,
    *,
    owner_id: str | None = None,
    unmasked: bool = False,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> list[BankAccount]:
    """Bank accounts, optionally for one owner. Masking is applied at the response layer."""
    stmt = select(BankAccount).order_by(BankAccount.id)
    if owner_id:
        stmt = stmt.where(BankAccount.user_id == owner_id)
    accounts = list((await session.execute(stmt)).scalars().all())

    await record_audit(
        session,
        action=AuditAction.VIEW_BANK_ACCOUNTS,
        resource_type="bank_account",
        resource_id=owner_id,
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={"count": len(accounts), "unmasked": unmasked},
    )
    if unmasked:
        logger.info("Unmasked bank account view by %s (owner=%s)", user.user_id, owner_id or "*")
    return accounts

