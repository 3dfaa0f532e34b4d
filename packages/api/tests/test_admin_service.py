# This project was developed with assistance from AI tools.
"""Tests for admin search, export, stats, assignments and bank account reads."""

import csv
import io
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from db import AuditLogEntry, BankAccount, LoanApplication, StatusHistoryEntry
from db.enums import ApplicationStatus, AppRole, AuditAction, LoanType
from sqlalchemy import select

from loanflow.schemas.auth import UserContext
from loanflow.services.admin import (
    ApplicationFilters,
    assign_application,
    export_applications_csv,
    get_application_detail,
    get_application_history,
    get_application_stats,
    get_assignment,
    list_bank_accounts,
    sanitize_csv_value,
    sanitize_search_term,
    search_applications,
    unassign_application,
)
from loanflow.services.application import ApplicationNotFoundError

ADMIN = UserContext(user_id="admin-1", roles=frozenset({AppRole.ADMIN}))


async def _seed(session) -> list[LoanApplication]:
    apps = [
        LoanApplication(
            application_number="HBF-2026-001-00001",
            user_id="u1",
            loan_type=LoanType.REFINANCE,
            amount_requested=Decimal("100000"),
            first_name="Alex",
            last_name="Rivera",
            business_name="100% Growth Co",
            status=ApplicationStatus.SUBMITTED,
        ),
        LoanApplication(
            application_number="HBF-2026-001-00002",
            user_id="u2",
            loan_type=LoanType.REFINANCE,
            amount_requested=Decimal("300000"),
            first_name="Jordan",
            last_name="Blake",
            business_name="1000 Growth Bakery",
            status=ApplicationStatus.APPROVED,
        ),
        LoanApplication(
            application_number="HBF-2026-001-00003",
            user_id="u3",
            loan_type=LoanType.BRIDGE_LOAN,
            amount_requested=Decimal("2000000"),
            first_name="=HYPERLINK(\"http://evil\")",
            last_name="Stone",
            business_name="Stone_Works",
            status=ApplicationStatus.APPROVED,
        ),
    ]
    session.add_all(apps)
    await session.flush()
    return apps


async def _audit(session, action: AuditAction) -> list[AuditLogEntry]:
    result = await session.execute(select(AuditLogEntry).where(AuditLogEntry.action == action))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Sanitizers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Rivera", "Rivera"),
        ("  spaced  ", "spaced"),
        ("a.b*c+d?", "abcd"),
        ("x') OR ('1", "x OR 1"),
        ("100%", "100\\%"),
        ("stone_works", "stone\\_works"),
        (None, ""),
    ],
)
def test_sanitize_search_term(raw, expected):
    assert sanitize_search_term(raw) == expected


def test_search_term_is_capped():
    assert len(sanitize_search_term("a" * 500)) == 100


@pytest.mark.parametrize(
    "value,expected",
    [
        ("=SUM(A1:A9)", "'=SUM(A1:A9)"),
        ("+1 555", "'+1 555"),
        ("-cmd", "'-cmd"),
        ("@import", "'@import"),
        ("plain", "plain"),
        (None, ""),
        (ApplicationStatus.FUNDED, "funded"),
        (datetime(2026, 1, 2, 3, 4, tzinfo=UTC), "2026-01-02T03:04:00+00:00"),
    ],
)
def test_sanitize_csv_value(value, expected):
    assert sanitize_csv_value(value) == expected


# ---------------------------------------------------------------------------
# Search and stats
# ---------------------------------------------------------------------------


async def test_search_treats_wildcards_literally(db_session):
    await _seed(db_session)

    page, total = await search_applications(db_session, ApplicationFilters(search="100%"))
    assert total == 1
    assert page[0].business_name == "100% Growth Co"

    page, total = await search_applications(db_session, ApplicationFilters(search="e_w"))
    assert total == 1
    assert page[0].business_name == "Stone_Works"


async def test_search_matches_names_and_numbers(db_session):
    await _seed(db_session)
    _, total = await search_applications(db_session, ApplicationFilters(search="blake"))
    assert total == 1
    _, total = await search_applications(db_session, ApplicationFilters(search="HBF-2026-001"))
    assert total == 3


async def test_search_structured_filters(db_session):
    await _seed(db_session)
    page, total = await search_applications(
        db_session,
        ApplicationFilters(
            status=ApplicationStatus.APPROVED,
            loan_type=LoanType.REFINANCE,
            min_amount=Decimal("200000"),
        ),
    )
    assert total == 1
    assert page[0].business_name == "1000 Growth Bakery"


async def test_search_by_assignee(db_session):
    apps = await _seed(db_session)
    await assign_application(db_session, ADMIN, apps[1].id, "reviewer-7")

    page, total = await search_applications(db_session, ApplicationFilters(assigned_to="reviewer-7"))
    assert total == 1
    assert page[0].id == apps[1].id


async def test_stats(db_session):
    await _seed(db_session)
    stats = await get_application_stats(db_session)

    assert stats["total"] == 3
    assert stats["by_status"] == {"submitted": 1, "approved": 2}
    assert stats["by_loan_type"] == {"refinance": 2, "bridge_loan": 1}
    assert stats["total_amount"] == 2_400_000
    assert stats["average_amount"] == 800_000
    assert stats["this_month"] == 3


async def test_stats_on_empty_store(db_session):
    stats = await get_application_stats(db_session)
    assert stats["total"] == 0
    assert stats["average_amount"] == 0.0


# ---------------------------------------------------------------------------
# Detail and export
# ---------------------------------------------------------------------------


async def test_detail_read_is_audited(db_session):
    apps = await _seed(db_session)
    application = await get_application_detail(db_session, ADMIN, apps[0].id, ip_address="10.0.0.2")

    assert application.id == apps[0].id
    (entry,) = await _audit(db_session, AuditAction.VIEW_LOAN_APPLICATION_DETAIL)
    assert entry.resource_id == str(apps[0].id)
    assert entry.ip_address == "10.0.0.2"


async def test_detail_unknown_application(db_session):
    with pytest.raises(ApplicationNotFoundError):
        await get_application_detail(db_session, ADMIN, 404)


async def test_history_read_is_audited(db_session):
    apps = await _seed(db_session)
    db_session.add(
        StatusHistoryEntry(
            application_id=apps[0].id, status=ApplicationStatus.SUBMITTED, changed_by="u1",
        )
    )
    await db_session.flush()

    entries = await get_application_history(db_session, ADMIN, apps[0].id)

    assert [e.status for e in entries] == [ApplicationStatus.SUBMITTED]
    (entry,) = await _audit(db_session, AuditAction.VIEW_LOAN_APPLICATION_DETAIL)
    assert entry.user_id == ADMIN.user_id
    assert entry.details["view"] == "status_history"
    assert entry.details["entries"] == 1


async def test_history_of_unknown_application_is_not_audited(db_session):
    with pytest.raises(ApplicationNotFoundError):
        await get_application_history(db_session, ADMIN, 404)
    assert await _audit(db_session, AuditAction.VIEW_LOAN_APPLICATION_DETAIL) == []


async def test_export_neutralizes_formulas_and_audits(db_session):
    await _seed(db_session)
    content, filename = await export_applications_csv(
        db_session, ADMIN, ApplicationFilters(status=ApplicationStatus.APPROVED),
    )

    assert filename.startswith("loan_applications_") and filename.endswith(".csv")
    rows = list(csv.reader(io.StringIO(content)))
    assert rows[0][:4] == ["Application Number", "Status", "Loan Type", "Amount Requested"]
    assert len(rows) == 3
    first_names = {row[4] for row in rows[1:]}
    assert "'=HYPERLINK(\"http://evil\")" in first_names

    (entry,) = await _audit(db_session, AuditAction.EXPORT_DATA)
    assert entry.details["rows"] == 2
    assert entry.details["filters"]["status"] == "approved"


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


async def test_assign_then_reassign(db_session):
    apps = await _seed(db_session)

    await assign_application(db_session, ADMIN, apps[0].id, "reviewer-1", "first pass")
    await assign_application(db_session, ADMIN, apps[0].id, "reviewer-2")

    current = await get_assignment(db_session, apps[0].id)
    assert current.admin_id == "reviewer-2"
    assert current.assigned_by == ADMIN.user_id
    assert len(await _audit(db_session, AuditAction.ASSIGN_APPLICATION)) == 1
    (update,) = await _audit(db_session, AuditAction.UPDATE_ASSIGNMENT)
    assert update.details["previous_admin_id"] == "reviewer-1"


async def test_assign_unknown_application(db_session):
    with pytest.raises(ApplicationNotFoundError):
        await assign_application(db_session, ADMIN, 404, "reviewer-1")


async def test_unassign(db_session):
    apps = await _seed(db_session)
    assert await unassign_application(db_session, ADMIN, apps[0].id) is False

    await assign_application(db_session, ADMIN, apps[0].id, "reviewer-1")
    assert await unassign_application(db_session, ADMIN, apps[0].id) is True
    assert await get_assignment(db_session, apps[0].id) is None
    assert len(await _audit(db_session, AuditAction.DELETE_ASSIGNMENT)) == 1


# ---------------------------------------------------------------------------
# Bank accounts
# ---------------------------------------------------------------------------


async def test_bank_account_reads_are_audited(db_session):
    db_session.add_all(
        [
            BankAccount(user_id="u1", account_holder_name="Alex", bank_name="First",
                        account_number="123456789", routing_number="021000021"),
            BankAccount(user_id="u2", account_holder_name="Jordan", bank_name="Second",
                        account_number="987654321"),
        ]
    )
    await db_session.flush()

    accounts = await list_bank_accounts(db_session, ADMIN, owner_id="u1", unmasked=True)

    assert [a.user_id for a in accounts] == ["u1"]
    (entry,) = await _audit(db_session, AuditAction.VIEW_BANK_ACCOUNTS)
    assert entry.resource_id == "u1"
    assert entry.details == {"count": 1, "unmasked": True}
