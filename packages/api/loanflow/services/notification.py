# This project was developed with assistance from AI tools.
"""Notification fan-out.

``dispatch`` delivers one event to one recipient over every channel the
recipient's preferences enable. Channels are independent: each attempt is
recorded as a ``DeliveryAttempt`` and a failure in one never stops the
others. Email and SMS are rendered from templates and handed to a
transport; in-app notifications are rows the portal client polls.
External webhooks fire for a fixed subset of events.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from db import ExistingLoan, LoanApplication, Notification, NotificationPreference
from db.enums import ApplicationStatus, NotificationChannel, NotificationEvent
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import is_admin
from ..core.config import settings
from ..schemas.auth import UserContext
from ..schemas.notification import SendData
from . import webhooks
from .authorization import AuthorizationError

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("loanflow.security")

_STANDARD = {"email": True, "in_app": True, "sms": False}

DEFAULT_PREFERENCES: dict[str, dict[str, bool]] = {
    event.value: dict(_STANDARD) for event in NotificationEvent
}
DEFAULT_PREFERENCES[NotificationEvent.APPLICATION_APPROVED.value] = {
    "email": True, "in_app": True, "sms": True,
}

# -- Templates --------------------------------------------------------------

EMAIL_TEMPLATES: dict[str, tuple[str, str]] = {
    "application_submitted": (
        "Application Received - {lender}",
        "Thank you, {applicantName}! Application #{applicationNumber} has been received "
        "and our team will begin reviewing it shortly.",
    ),
    "application_under_review": (
        "Application Under Review - {lender}",
        "Hello, {applicantName}. Application #{applicationNumber} is now under review.",
    ),
    "application_approved": (
        "Congratulations! Your Application is Approved",
        "Great news, {applicantName}! Application #{applicationNumber} has been approved.",
    ),
    "application_rejected": (
        "Application Update - {lender}",
        "Hello, {applicantName}. We were unable to approve application "
        "#{applicationNumber} at this time.",
    ),
    "loan_funded": (
        "Your Loan Has Been Funded!",
        "Congratulations, {applicantName}! Your {loanType} loan of {loanAmount} has been "
        "funded. Monthly payment: {monthlyPayment}.",
    ),
    "status_update": (
        "Application Update - {lender}",
        "Hello, {applicantName}. Application #{applicationNumber} is now {newStatus}.",
    ),
    "document_required": (
        "Document Required - {lender}",
        "Hello, {applicantName}. We need additional documents for application "
        "#{applicationNumber}.",
    ),
    "payment_reminder": (
        "Payment Reminder - {lender}",
        "Hello, {applicantName}. This is a reminder that a payment is coming due.",
    ),
    "application_reminder": (
        "Finish Your Application - {lender}",
        "Hello, {applicantName}. Your application is waiting for you to finish it.",
    ),
    "welcome": (
        "Welcome to {lender}",
        "Welcome, {applicantName}!",
    ),
}

SMS_TEMPLATES: dict[str, str] = {
    "application_submitted": "HBF: Application #{applicationNumber} received.",
    "application_approved": "HBF: Application #{applicationNumber} approved!",
    "loan_funded": "HBF: Your {loanType} loan of {loanAmount} has been funded!",
}

DEFAULT_SMS = "{lender} notification"

# Status -> (event, template) used when an application changes status.
STATUS_EVENTS: dict[ApplicationStatus, tuple[NotificationEvent, str]] = {
    ApplicationStatus.SUBMITTED: (NotificationEvent.APPLICATION_SUBMITTED, "application_submitted"),
    ApplicationStatus.UNDER_REVIEW: (
        NotificationEvent.APPLICATION_UNDER_REVIEW, "application_under_review",
    ),
    ApplicationStatus.REQUIRES_REVIEW: (
        NotificationEvent.APPLICATION_UNDER_REVIEW, "application_under_review",
    ),
    ApplicationStatus.APPROVED: (NotificationEvent.APPLICATION_APPROVED, "application_approved"),
    ApplicationStatus.REJECTED: (NotificationEvent.APPLICATION_REJECTED, "application_rejected"),
    ApplicationStatus.FUNDED: (NotificationEvent.LOAN_FUNDED, "loan_funded"),
}


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_email(template: str, data: dict[str, Any]) -> tuple[str, str]:
    """Return (subject, body); unknown templates fall back to 'welcome'."""
    subject, body = EMAIL_TEMPLATES.get(template, EMAIL_TEMPLATES["welcome"])
    values = _SafeDict({**data, "lender": settings.LENDER_NAME})
    return subject.format_map(values), body.format_map(values)


def render_sms(template: str, data: dict[str, Any]) -> str:
    values = _SafeDict({**data, "lender": settings.LENDER_NAME})
    return SMS_TEMPLATES.get(template, DEFAULT_SMS).format_map(values)


def format_currency(amount: float | None) -> str:
    return f"${float(amount or 0):,.2f}"


# -- Transports -------------------------------------------------------------


class Transport(Protocol):
    async def send(self, recipient: str, subject: str | None, body: str) -> None: ...


class LoggingTransport:
    """Delivery by structured log line; swapped for a provider client in deployment."""

    def __init__(self, channel: str):
        self.channel = channel

    async def send(self, recipient: str, subject: str | None, body: str) -> None:
        if not recipient:
            raise ValueError(f"No {self.channel} address for recipient")
        logger.info(
            "%s queued: recipient=%s subject=%s length=%d",
            self.channel.upper(),
            recipient,
            subject or "-",
            len(body),
        )


email_transport: Transport = LoggingTransport("email")
sms_transport: Transport = LoggingTransport("sms")


# -- Dispatch ---------------------------------------------------------------


@dataclass(frozen=True)
class Recipient:
    user_id: str
    email: str | None = None
    phone: str | None = None
    name: str = ""


@dataclass
class InAppMessage:
    title: str
    message: str
    type: str = "info"
    action_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryAttempt:
    channel: NotificationChannel
    success: bool
    target: str | None = None
    error: str | None = None
    status: int | None = None

    def to_dict(self) -> dict:
        return {
            "channel": self.channel.value,
            "success": self.success,
            "target": self.target,
            "error": self.error,
            "status": self.status,
        }


async def get_preferences(session: AsyncSession, user_id: str) -> dict[str, dict[str, bool]]:
    """Stored preferences merged over the defaults, per event type."""
    result = await session.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    )
    row = result.scalar_one_or_none()
    stored = (row.preferences if row else None) or {}
    return {
        event: {**defaults, **(stored.get(event) or {})}
        for event, defaults in DEFAULT_PREFERENCES.items()
    }


async def update_preferences(
    session: AsyncSession, user_id: str, updates: dict[str, dict[str, bool]],
) -> dict[str, dict[str, bool]]:
    """Merge ``updates`` into the user's stored preferences and return the effective set."""
    result = await session.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    )
    row = result.scalar_one_or_none()
    current = dict(row.preferences or {}) if row else {}
    for event, channels in updates.items():
        current[event] = {**(current.get(event) or {}), **channels}

    if row is None:
        session.add(NotificationPreference(user_id=user_id, preferences=current))
    else:
        row.preferences = current
    await session.flush()
    return await get_preferences(session, user_id)


async def create_in_app_notification(
    session: AsyncSession, user_id: str, message: InAppMessage,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=message.title,
        message=message.message,
        type=message.type,
        read=False,
        action_url=message.action_url,
        metadata_=message.metadata or None,
    )
    async with session.begin_nested():
        session.add(notification)
        await session.flush()
    return notification


async def _attempt(channel: NotificationChannel, target: str | None, operation) -> DeliveryAttempt:
    try:
        await operation
    except Exception as exc:
        logger.warning("%s delivery to %s failed: %s", channel.value, target, exc)
        return DeliveryAttempt(channel, False, target=target, error=str(exc) or type(exc).__name__)
    return DeliveryAttempt(channel, True, target=target)


async def dispatch(
    session: AsyncSession,
    event_type: NotificationEvent,
    recipient: Recipient,
    template_data: dict[str, Any],
    *,
    template: str | None = None,
    in_app: InAppMessage | None = None,
    external: tuple[str, str] | None = None,
) -> list[DeliveryAttempt]:
    """Deliver ``event_type`` to ``recipient`` over every enabled channel.

    Args:
        template: Email/SMS template name; defaults to the event name.
        in_app: In-app message; when omitted one is built from the email subject.
        external: (title, message) for the webhook broadcast, for events
            that fan out externally.

    Returns:
        One attempt per channel tried, plus one per webhook target.
    """
    template = template or event_type.value
    prefs = (await get_preferences(session, recipient.user_id)).get(event_type.value, _STANDARD)
    subject, body = render_email(template, template_data)
    attempts: list[DeliveryAttempt] = []

    if prefs.get("email"):
        attempts.append(
            await _attempt(
                NotificationChannel.EMAIL,
                recipient.email,
                email_transport.send(recipient.email or "", subject, body),
            )
        )
    if prefs.get("sms"):
        attempts.append(
            await _attempt(
                NotificationChannel.SMS,
                recipient.phone,
                sms_transport.send(recipient.phone or "", None, render_sms(template, template_data)),
            )
        )
    if prefs.get("in_app"):
        message = in_app or InAppMessage(title=subject, message=body)
        attempts.append(
            await _attempt(
                NotificationChannel.IN_APP,
                recipient.user_id,
                create_in_app_notification(session, recipient.user_id, message),
            )
        )

    if event_type in webhooks.EXTERNAL_EVENTS:
        title, text = external or (subject, body)
        try:
            results = await webhooks.broadcast(session, event_type, title, text, template_data)
        except Exception as exc:
            logger.warning("Webhook fan-out for %s failed: %s", event_type.value, exc)
            results = []
            attempts.append(
                DeliveryAttempt(NotificationChannel.EXTERNAL, False, error=str(exc) or "failed")
            )
        attempts.extend(
            DeliveryAttempt(
                NotificationChannel.EXTERNAL,
                r.success,
                target=r.webhook,
                error=r.error,
                status=r.status,
            )
            for r in results
        )

    return attempts


# -- Application events -----------------------------------------------------


def recipient_for(application: LoanApplication) -> Recipient:
    return Recipient(
        user_id=application.user_id,
        email=application.email,
        phone=application.phone,
        name=application.applicant_name,
    )


def application_template_data(application: LoanApplication) -> dict[str, Any]:
    status = application.status.value if application.status else ""
    return {
        "applicationId": application.id,
        "applicationNumber": application.application_number or "",
        "applicantName": application.applicant_name,
        "applicantEmail": application.email or "",
        "businessName": application.business_name or "",
        "loanType": application.loan_type.value if application.loan_type else "",
        "loanAmount": format_currency(application.amount_requested),
        "newStatus": status.replace("_", " "),
    }


async def notify_status_change(
    session: AsyncSession, application: LoanApplication, new_status: ApplicationStatus,
) -> list[DeliveryAttempt]:
    """Tell the applicant their application moved to ``new_status``."""
    event_type, template = STATUS_EVENTS.get(
        new_status, (NotificationEvent.STATUS_UPDATE, "status_update"),
    )
    data = application_template_data(application)
    in_app = InAppMessage(
        title=render_email(template, data)[0],
        message=f"Application #{data['applicationNumber']} is now {data['newStatus']}.",
        type="info",
        action_url=f"/applications/{application.id}",
        metadata={"applicationId": application.id, "status": new_status.value},
    )
    external = None
    if event_type in webhooks.EXTERNAL_EVENTS:
        external = (
            render_email(template, data)[0],
            f"{data['businessName'] or data['applicantName']}: application "
            f"#{data['applicationNumber']} is now {data['newStatus']}",
        )
    return await dispatch(
        session,
        event_type,
        recipient_for(application),
        data,
        template=template,
        in_app=in_app,
        external=external,
    )


def funded_loan_data(
    application: LoanApplication, loan: ExistingLoan | None,
) -> dict[str, Any]:
    """Template data for a funded loan (amounts preformatted for display)."""
    data = application_template_data(application)
    rate = float(loan.interest_rate) if loan else settings.DEFAULT_INTEREST_RATE
    term = int(loan.term_months) if loan else settings.DEFAULT_TERM_MONTHS
    payment = float(loan.monthly_payment) if loan else 0.0
    data.update(
        {
            "loanNumber": application.application_number or str(application.id),
            "monthlyPayment": format_currency(payment),
            "interestRate": f"{rate:.2f}%",
            "termMonths": f"{term} months",
        }
    )
    return data


async def notify_loan_funded(
    session: AsyncSession, application: LoanApplication, loan: ExistingLoan | None,
) -> list[DeliveryAttempt]:
    """Funded-loan notice: email, in-app row with loan metadata, webhook broadcast."""
    data = funded_loan_data(application, loan)
    amount = float(application.amount_requested or 0)
    in_app = InAppMessage(
        title="Loan Funded Successfully!",
        message=(
            f"Your {data['loanType']} loan of {data['loanAmount']} has been approved and "
            f"funded. Monthly payment: {data['monthlyPayment']}"
        ),
        type="success",
        action_url="/existing-loans",
        metadata={
            "loanNumber": data["loanNumber"],
            "loanAmount": amount,
            "loanType": data["loanType"],
            "monthlyPayment": float(loan.monthly_payment) if loan else 0.0,
            "interestRate": float(loan.interest_rate) if loan else settings.DEFAULT_INTEREST_RATE,
            "termMonths": int(loan.term_months) if loan else settings.DEFAULT_TERM_MONTHS,
        },
    )
    external = (
        "🎉 Loan Funded",
        f"{data['loanType']} loan of {data['loanAmount']} has been funded for "
        f"{data['businessName'] or data['applicantName']}",
    )
    return await dispatch(
        session,
        NotificationEvent.LOAN_FUNDED,
        recipient_for(application),
        data,
        template="loan_funded",
        in_app=in_app,
        external=external,
    )


# -- Direct sends -----------------------------------------------------------


def template_catalog() -> dict[str, dict[str, str | None]]:
    """Template name -> rendered subject and raw SMS text, for the portal UI."""
    return {
        name: {
            "subject": render_email(name, {})[0],
            "sms": SMS_TEMPLATES.get(name),
        }
        for name in EMAIL_TEMPLATES
    }


async def send_direct(
    session: AsyncSession, user: UserContext, payload: SendData,
) -> DeliveryAttempt:
    """Send one templated message on an explicit channel, ignoring preferences.

    ``system`` messages become in-app notifications for ``payload.recipient``
    (or the caller when no recipient is given). Only admins may write into
    another user's inbox.

    Raises:
        AuthorizationError: a non-admin named another user as recipient.
    """
    if payload.type == "email":
        subject, body = render_email(payload.template, payload.data)
        return await _attempt(
            NotificationChannel.EMAIL,
            payload.recipient,
            email_transport.send(payload.recipient, subject, body),
        )
    if payload.type == "sms":
        return await _attempt(
            NotificationChannel.SMS,
            payload.recipient,
            sms_transport.send(payload.recipient, None, render_sms(payload.template, payload.data)),
        )

    target = payload.recipient or user.user_id
    if target != user.user_id and not is_admin(user.roles):
        security_logger.warning(
            "User %s attempted an in-app notification for user %s", user.user_id, target,
        )
        raise AuthorizationError(
            "Cannot send notifications to another user", action="send", user_id=user.user_id,
        )
    subject, body = render_email(payload.template, payload.data)
    message = InAppMessage(title=payload.title or subject, message=body)
    return await _attempt(
        NotificationChannel.IN_APP,
        target,
        create_in_app_notification(session, target, message),
    )
