# This project was developed with assistance from AI tools.
"""Tests for application submission and the status state machine."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest
from db import AuditLogEntry, ExistingLoan, LoanApplication, Notification
from db.enums import ApplicationStatus, AppRole, AuditAction, ExistingLoanStatus, LoanType
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from loanflow.schemas.application import ApplicationData
from loanflow.schemas.auth import UserContext
from loanflow.services.application import (
    ApplicationNotFoundError,
    ApplicationValidationError,
    InvalidTransitionError,
    allocate_application_number,
    batch_transition_status,
    generate_application_number,
    get_status_history,
    get_user_application,
    list_user_applications,
    process_application,
    sanitize_notes,
    transition_status,
)
from loanflow.services.audit import AuditWriteError
from loanflow.services.authorization import AuthorizationError
from loanflow.services.calculator import monthly_payment

BORROWER = UserContext(
    user_id="borrower-1", email="alex@rivera-logistics.com", roles=frozenset({AppRole.USER}),
)
ADMIN = UserContext(user_id="admin-1", roles=frozenset({AppRole.ADMIN}))


def _data(**overrides) -> ApplicationData:
    fields = {
        "loan_type": LoanType.PURCHASE,
        "amount_requested": 250_000,
        "first_name": "Alex",
        "last_name": "Rivera",
        "email": "alex@rivera-logistics.com",
        "phone": "555-123-4567",
        "business_name": "Rivera Logistics LLC",
        "years_in_business": 3,
    }
    fields.update(overrides)
    return ApplicationData(**fields)


LOW_RISK = {"years_in_business": 6, "amount_requested": 50_000, "loan_type": LoanType.REFINANCE}
HIGH_RISK = {"years_in_business": 0, "amount_requested": 6_000_000, "loan_type": LoanType.BRIDGE_LOAN}


async def _submit(session, user=BORROWER, **overrides) -> LoanApplication:
    application, _ = await process_application(session, user, _data(**overrides))
    return application


async def _audit_actions(session) -> list[AuditAction]:
    result = await session.execute(select(AuditLogEntry.action).order_by(AuditLogEntry.id))
    return list(result.scalars().all())


async def _loan_statuses(session, application_id) -> list[ExistingLoanStatus]:
    result = await session.execute(
        select(ExistingLoan.status)
        .where(ExistingLoan.application_id == application_id)
        .order_by(ExistingLoan.id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_application_number_format():
    assert generate_application_number(datetime(2026, 2, 1, 1, 2, 3, tzinfo=UTC)) == "HBF-2026-032-03723"


async def test_application_number_collision_gets_suffix(db_session):
    now = datetime(2026, 2, 1, 1, 2, 3, tzinfo=UTC)
    for _ in range(2):
        number = await allocate_application_number(db_session, now)
        db_session.add(
            LoanApplication(user_id="u1", loan_type=LoanType.PURCHASE, application_number=number)
        )
        await db_session.flush()

    assert await allocate_application_number(db_session, now) == "HBF-2026-032-03723-3"


def test_sanitize_notes_strips_markup_and_caps_length():
    assert sanitize_notes("<b>ok</b>; drop") == "bok/b drop"
    assert sanitize_notes("x" * 1500) == "x" * 1000
    assert sanitize_notes(None) is None


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


async def test_low_risk_submission_goes_to_review(db_session):
    application, result = await process_application(db_session, BORROWER, _data(**LOW_RISK))

    assert result.risk_score == 20
    assert application.status == ApplicationStatus.UNDER_REVIEW
    assert application.application_number.startswith("HBF-")
    assert application.application_submitted_date is not None
    assert application.loan_details["risk_score"] == 20
    assert application.loan_details["auto_approval_eligible"] is True


async def test_high_risk_submission_requires_review(db_session):
    application, result = await process_application(db_session, BORROWER, _data(**HIGH_RISK))
    assert result.risk_score == 95
    assert result.auto_approval_eligible is False
    assert application.status == ApplicationStatus.REQUIRES_REVIEW


async def test_moderate_risk_submission_is_submitted(db_session):
    application = await _submit(db_session)
    assert application.status == ApplicationStatus.SUBMITTED


async def test_submission_writes_history_audit_and_notification(db_session):
    application = await _submit(db_session, **LOW_RISK)

    history = await get_status_history(db_session, application.id)
    assert [(h.status, h.notes) for h in history] == [
        (ApplicationStatus.UNDER_REVIEW, "Application submitted"),
    ]
    assert await _audit_actions(db_session) == [AuditAction.SUBMIT_APPLICATION]

    notifications = (await db_session.execute(select(Notification))).scalars().all()
    assert len(notifications) == 1
    assert notifications[0].user_id == BORROWER.user_id
    assert notifications[0].action_url == f"/applications/{application.id}"


async def test_invalid_submission_persists_nothing(db_session):
    with pytest.raises(ApplicationValidationError) as exc_info:
        await process_application(db_session, BORROWER, _data(first_name="", phone="x"))

    assert "First name must be at least 2 characters" in exc_info.value.errors
    assert "Invalid phone number format" in exc_info.value.errors
    count = (await db_session.execute(select(func.count(LoanApplication.id)))).scalar()
    assert count == 0
    assert await _audit_actions(db_session) == []


async def test_submission_survives_notification_failure(db_session):
    failing = AsyncMock(side_effect=RuntimeError("smtp down"))
    with patch("loanflow.services.application.notify_status_change", failing):
        application = await _submit(db_session)

    assert application.id is not None
    failing.assert_awaited_once()
    assert await _audit_actions(db_session) == [AuditAction.SUBMIT_APPLICATION]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def test_non_admin_cannot_update_status(db_session):
    application = await _submit(db_session)
    with pytest.raises(AuthorizationError):
        await transition_status(db_session, BORROWER, application.id, ApplicationStatus.APPROVED)
    assert application.status == ApplicationStatus.SUBMITTED


async def test_unknown_application_not_found(db_session):
    with pytest.raises(ApplicationNotFoundError):
        await transition_status(db_session, ADMIN, 9999, ApplicationStatus.APPROVED)


async def test_disallowed_transition_rejected(db_session):
    application = await _submit(db_session)
    with pytest.raises(InvalidTransitionError, match="Cannot transition from 'submitted' to 'funded'"):
        await transition_status(db_session, ADMIN, application.id, ApplicationStatus.FUNDED)


async def test_rejected_is_terminal(db_session):
    application = await _submit(db_session)
    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.REJECTED)
    with pytest.raises(InvalidTransitionError, match="terminal"):
        await transition_status(db_session, ADMIN, application.id, ApplicationStatus.UNDER_REVIEW)


async def test_transition_records_history_and_audit(db_session):
    application = await _submit(db_session)
    change = await transition_status(
        db_session, ADMIN, application.id, ApplicationStatus.UNDER_REVIEW, "<b>docs</b> received",
        ip_address="10.0.0.9",
    )

    assert change.changed is True
    assert change.previous_status == ApplicationStatus.SUBMITTED
    assert change.effects == ["record_history"]
    history = await get_status_history(db_session, application.id)
    assert history[-1].notes == "Status changed from submitted to under_review: bdocs/b received"
    assert history[-1].changed_by == ADMIN.user_id
    assert application.loan_details["status_notes"] == "bdocs/b received"

    entry = (
        await db_session.execute(
            select(AuditLogEntry).where(AuditLogEntry.action == AuditAction.UPDATE_APPLICATION_STATUS)
        )
    ).scalar_one()
    assert entry.details["old_status"] == "submitted"
    assert entry.details["new_status"] == "under_review"
    assert entry.ip_address == "10.0.0.9"


async def test_same_status_update_is_a_noop(db_session):
    application = await _submit(db_session)
    change = await transition_status(
        db_session, ADMIN, application.id, ApplicationStatus.SUBMITTED, "checked in",
    )

    assert change.changed is False
    assert change.effects == []
    assert len(await get_status_history(db_session, application.id)) == 1
    assert application.loan_details["status_notes"] == "checked in"
    assert (await _audit_actions(db_session))[-1] == AuditAction.UPDATE_APPLICATION_STATUS


async def test_funding_creates_loan_and_correction_reverses_it(db_session):
    application = await _submit(db_session, **LOW_RISK)
    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.APPROVED)

    funded = await transition_status(db_session, ADMIN, application.id, ApplicationStatus.FUNDED)
    assert funded.effects == ["stamp_funded_date", "create_existing_loan", "record_history"]
    assert application.funded_date is not None
    assert funded.loan is not None
    assert float(funded.loan.monthly_payment) == pytest.approx(monthly_payment(50_000, 7.5, 60))
    assert funded.loan.lender == "Heritage Business Funding"
    assert await _loan_statuses(db_session, application.id) == [ExistingLoanStatus.CURRENT]

    reverted = await transition_status(db_session, ADMIN, application.id, ApplicationStatus.APPROVED)
    assert reverted.effects == ["clear_funded_date", "reverse_existing_loan", "record_history"]
    assert application.funded_date is None
    assert await _loan_statuses(db_session, application.id) == [ExistingLoanStatus.REVERSED]

    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.FUNDED)
    assert application.funded_date is not None
    assert await _loan_statuses(db_session, application.id) == [
        ExistingLoanStatus.REVERSED,
        ExistingLoanStatus.CURRENT,
    ]


async def test_funding_uses_rate_and_term_from_loan_details(db_session):
    application = await _submit(
        db_session, **LOW_RISK, loan_details={"interest_rate": 6.0, "term_months": 120},
    )
    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.APPROVED)
    change = await transition_status(db_session, ADMIN, application.id, ApplicationStatus.FUNDED)

    assert change.loan.term_months == 120
    assert float(change.loan.interest_rate) == 6.0
    assert change.loan.maturity_date.year == change.loan.origination_date.year + 10


async def test_unusable_loan_terms_rejected_at_submission(db_session):
    with pytest.raises(ApplicationValidationError) as exc_info:
        await _submit(
            db_session, **LOW_RISK,
            loan_details={"interest_rate": "seven point five", "term_months": 10**6},
        )

    assert len(exc_info.value.errors) == 2
    count = (await db_session.execute(select(func.count(LoanApplication.id)))).scalar()
    assert count == 0


async def test_funding_falls_back_to_defaults_for_stored_bad_terms(db_session, caplog):
    application = await _submit(db_session, **LOW_RISK)
    application.loan_details = {
        **application.loan_details, "interest_rate": "seven point five", "term_months": "forever",
    }
    await db_session.flush()
    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.APPROVED)

    change = await transition_status(db_session, ADMIN, application.id, ApplicationStatus.FUNDED)

    assert float(change.loan.interest_rate) == 7.5
    assert change.loan.term_months == 60
    assert float(change.loan.monthly_payment) == pytest.approx(monthly_payment(50_000, 7.5, 60))
    assert "unusable interest_rate" in caplog.text


async def test_funding_sends_loan_funded_notice(db_session):
    application = await _submit(db_session, **LOW_RISK)
    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.APPROVED)
    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.FUNDED)

    funded_notice = (
        await db_session.execute(
            select(Notification).where(Notification.title == "Loan Funded Successfully!")
        )
    ).scalar_one()
    assert funded_notice.type == "success"
    assert funded_notice.action_url == "/existing-loans"
    assert funded_notice.metadata_["loanAmount"] == 50_000
    assert funded_notice.metadata_["termMonths"] == 60


async def test_pause_returns_only_to_previous_status(db_session):
    application = await _submit(db_session, **LOW_RISK)
    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.PAUSED)
    assert application.loan_details["paused_from"] == "under_review"

    with pytest.raises(InvalidTransitionError):
        await transition_status(db_session, ADMIN, application.id, ApplicationStatus.APPROVED)

    await transition_status(db_session, ADMIN, application.id, ApplicationStatus.UNDER_REVIEW)
    assert application.status == ApplicationStatus.UNDER_REVIEW
    assert "paused_from" not in application.loan_details


async def test_transition_survives_notification_failure(db_session):
    application = await _submit(db_session)
    failing = AsyncMock(side_effect=RuntimeError("provider outage"))
    with patch("loanflow.services.application.notify_status_change", failing):
        change = await transition_status(
            db_session, ADMIN, application.id, ApplicationStatus.UNDER_REVIEW,
        )
    assert change.changed is True
    failing.assert_awaited_once()
    assert application.status == ApplicationStatus.UNDER_REVIEW


async def test_transition_fails_when_audit_cannot_be_written(db_session):
    application = await _submit(db_session)
    failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("read-only")))
    with patch("loanflow.services.audit.write_audit_event", failing):
        with pytest.raises(AuditWriteError):
            await transition_status(db_session, ADMIN, application.id, ApplicationStatus.UNDER_REVIEW)


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


async def test_batch_reports_each_item(db_session):
    first = await _submit(db_session)
    rejected = await _submit(db_session)
    await transition_status(db_session, ADMIN, rejected.id, ApplicationStatus.REJECTED)

    results = await batch_transition_status(
        db_session, ADMIN, [first.id, 9999, rejected.id], ApplicationStatus.UNDER_REVIEW,
    )

    assert [r.success for r in results] == [True, False, False]
    assert results[0].previous_status == ApplicationStatus.SUBMITTED
    assert "not found" in results[1].error
    assert "Cannot transition" in results[2].error
    assert first.status == ApplicationStatus.UNDER_REVIEW
    assert rejected.status == ApplicationStatus.REJECTED

    entry = (
        await db_session.execute(
            select(AuditLogEntry)
            .where(AuditLogEntry.resource_id == str(first.id))
            .order_by(AuditLogEntry.id.desc())
        )
    ).scalars().first()
    assert entry.details["batch_operation"] is True
    assert entry.details["total_in_batch"] == 3


async def test_batch_requires_admin(db_session):
    with pytest.raises(AuthorizationError):
        await batch_transition_status(db_session, BORROWER, [1], ApplicationStatus.APPROVED)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def test_borrower_reads_are_owner_scoped(db_session):
    mine = await _submit(db_session)
    other = await _submit(db_session, user=UserContext(user_id="borrower-2"))

    page, total = await list_user_applications(db_session, BORROWER.user_id)
    assert total == 1
    assert [a.id for a in page] == [mine.id]

    assert (await get_user_application(db_session, BORROWER.user_id, mine.id)).id == mine.id
    with pytest.raises(ApplicationNotFoundError):
        await get_user_application(db_session, BORROWER.user_id, other.id)


async def test_list_filters_by_status(db_session):
    await _submit(db_session)
    await _submit(db_session, **LOW_RISK)
    page, total = await list_user_applications(
        db_session, BORROWER.user_id, status=ApplicationStatus.UNDER_REVIEW,
    )
    assert total == 1
    assert page[0].status == ApplicationStatus.UNDER_REVIEW
