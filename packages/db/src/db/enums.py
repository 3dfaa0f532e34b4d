# This project was developed with assistance from AI tools.
"""
Domain enums for the commercial loan portal.

Shared domain types used by both SQLAlchemy models (db package)
and Pydantic schemas (api package).
"""

import enum


class ApplicationStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    REQUIRES_REVIEW = "requires_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    FUNDED = "funded"
    PAUSED = "paused"

    @classmethod
    def terminal_statuses(cls) -> frozenset["ApplicationStatus"]:
        """Statuses an application only leaves through an admin correction."""
        return frozenset({cls.FUNDED, cls.REJECTED})

    @classmethod
    def active_statuses(cls) -> frozenset["ApplicationStatus"]:
        """Statuses from which an application may be paused."""
        return frozenset(
            {cls.DRAFT, cls.SUBMITTED, cls.UNDER_REVIEW, cls.REQUIRES_REVIEW, cls.APPROVED}
        )

    @classmethod
    def valid_transitions(cls) -> dict["ApplicationStatus", frozenset["ApplicationStatus"]]:
        """Allowed status transitions in the application lifecycle.

        PAUSED is resolved separately: it may only return to the status
        the application was paused from.
        """
        return {
            cls.DRAFT: frozenset({cls.SUBMITTED, cls.PAUSED}),
            cls.SUBMITTED: frozenset(
                {cls.UNDER_REVIEW, cls.REQUIRES_REVIEW, cls.APPROVED, cls.REJECTED, cls.PAUSED}
            ),
            cls.UNDER_REVIEW: frozenset(
                {cls.REQUIRES_REVIEW, cls.APPROVED, cls.REJECTED, cls.PAUSED}
            ),
            cls.REQUIRES_REVIEW: frozenset(
                {cls.UNDER_REVIEW, cls.APPROVED, cls.REJECTED, cls.PAUSED}
            ),
            cls.APPROVED: frozenset({cls.FUNDED, cls.REJECTED, cls.PAUSED}),
            cls.REJECTED: frozenset(),
            # Corrections only: an admin may pull a funded loan back.
            cls.FUNDED: frozenset({cls.APPROVED, cls.UNDER_REVIEW}),
            cls.PAUSED: frozenset(),
        }


class AppRole(str, enum.Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"
    CUSTOMER_SERVICE = "customer_service"
    UNDERWRITER = "underwriter"
    SUPER_ADMIN = "super_admin"


class LoanType(str, enum.Enum):
    REFINANCE = "refinance"
    BRIDGE_LOAN = "bridge_loan"
    PURCHASE = "purchase"
    FRANCHISE = "franchise"
    FACTORING = "factoring"
    WORKING_CAPITAL = "working_capital"


class AuditAction(str, enum.Enum):
    VIEW_BANK_ACCOUNTS = "VIEW_BANK_ACCOUNTS"
    VIEW_BANK_ACCOUNT_DETAIL = "VIEW_BANK_ACCOUNT_DETAIL"
    VIEW_LOAN_APPLICATIONS = "VIEW_LOAN_APPLICATIONS"
    VIEW_LOAN_APPLICATION_DETAIL = "VIEW_LOAN_APPLICATION_DETAIL"
    VIEW_CREDIT_REPORTS = "VIEW_CREDIT_REPORTS"
    VIEW_USER_PROFILE = "VIEW_USER_PROFILE"
    SUBMIT_APPLICATION = "SUBMIT_APPLICATION"
    UPDATE_APPLICATION_STATUS = "UPDATE_APPLICATION_STATUS"
    EXPORT_DATA = "EXPORT_DATA"
    VIEW_ADMIN_DASHBOARD = "VIEW_ADMIN_DASHBOARD"
    VIEW_SECURITY_AUDIT = "VIEW_SECURITY_AUDIT"
    MANAGE_USER_ROLES = "MANAGE_USER_ROLES"
    ASSIGN_APPLICATION = "ASSIGN_APPLICATION"
    UPDATE_ASSIGNMENT = "UPDATE_ASSIGNMENT"
    DELETE_ASSIGNMENT = "DELETE_ASSIGNMENT"
    REPEATED_FAILED_LOGIN = "REPEATED_FAILED_LOGIN"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SESSION_TIMEOUT = "SESSION_TIMEOUT"
    SECURITY_ALERT = "SECURITY_ALERT"

    @classmethod
    def sensitive_reads(cls) -> frozenset["AuditAction"]:
        """Reads of financial data that count toward the bulk-access alert."""
        return frozenset(
            {
                cls.VIEW_BANK_ACCOUNTS,
                cls.VIEW_BANK_ACCOUNT_DETAIL,
                cls.VIEW_CREDIT_REPORTS,
                cls.VIEW_LOAN_APPLICATION_DETAIL,
            }
        )


class NotificationChannel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"
    EXTERNAL = "external"


class NotificationEvent(str, enum.Enum):
    LOAN_FUNDED = "loan_funded"
    STATUS_UPDATE = "status_update"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_REMINDER = "payment_reminder"
    DOCUMENT_REQUIRED = "document_required"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_UNDER_REVIEW = "application_under_review"


class WebhookPlatform(str, enum.Enum):
    SLACK = "slack"
    DISCORD = "discord"


class ExistingLoanStatus(str, enum.Enum):
    CURRENT = "current"
    PAID_OFF = "paid_off"
    REVERSED = "reversed"
