# This project was developed with assistance from AI tools.
"""
Loanflow -- domain models

Commercial loan portal models covering applications, status history,
admin assignments, roles, notifications, rate-limit windows, derived
loans and the append-only audit trail.
"""

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from .enums import (
    AppRole,
    ApplicationStatus,
    AuditAction,
    ExistingLoanStatus,
    LoanType,
    WebhookPlatform,
)


class AppendOnlyError(RuntimeError):
    """Raised when the ORM is asked to update or delete an append-only row."""


class UserRoleAssignment(Base):
    """Flat (user, role) grant. A user may hold several roles."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    role = Column(Enum(AppRole, name="app_role", native_enum=False), nullable=False)
    granted_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<UserRoleAssignment(user_id='{self.user_id}', role='{self.role}')>"


class LoanApplication(Base):
    """Commercial loan application owned by a single portal user."""

    __tablename__ = "loan_applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_number = Column(String(32), unique=True, nullable=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    loan_type = Column(Enum(LoanType, name="loan_type", native_enum=False), nullable=False)
    amount_requested = Column(Numeric(14, 2), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    business_name = Column(String(255), nullable=True)
    business_address = Column(Text, nullable=True)
    business_city = Column(String(100), nullable=True)
    business_state = Column(String(50), nullable=True)
    business_zip = Column(String(20), nullable=True)
    years_in_business = Column(Integer, nullable=True)
    loan_details = Column(JSON, nullable=False, default=dict)
    status = Column(
        Enum(ApplicationStatus, name="application_status", native_enum=False),
        nullable=False,
        default=ApplicationStatus.DRAFT,
        index=True,
    )
    application_started_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)
    application_submitted_date = Column(DateTime(timezone=True), nullable=True)
    funded_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    status_history = relationship(
        "StatusHistoryEntry", back_populates="application", order_by="StatusHistoryEntry.id",
    )
    assignments = relationship(
        "AdminAssignment", back_populates="application", cascade="all, delete-orphan",
    )

    @property
    def applicant_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def __repr__(self):
        return f"<LoanApplication(id={self.id}, status='{self.status}')>"


class StatusHistoryEntry(Base):
    """Immutable record of one status change. INSERT + SELECT only."""

    __tablename__ = "loan_application_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(
        Integer, ForeignKey("loan_applications.id"), nullable=False, index=True,
    )
    status = Column(
        Enum(ApplicationStatus, name="application_status", native_enum=False),
        nullable=False,
    )
    changed_by = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    changed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    application = relationship("LoanApplication", back_populates="status_history")

    def __repr__(self):
        return f"<StatusHistoryEntry(app_id={self.application_id}, status='{self.status}')>"


class AdminAssignment(Base):
    """Admin assigned to review an application. One active row per application."""

    __tablename__ = "admin_application_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(
        Integer,
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    admin_id = Column(String(255), nullable=False, index=True)
    assigned_by = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    application = relationship("LoanApplication", back_populates="assignments")


class AuditLogEntry(Base):
    """Append-only audit trail. INSERT + SELECT only -- no UPDATE or DELETE."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=True, index=True)
    action = Column(
        Enum(AuditAction, name="audit_action", native_enum=False, length=64),
        nullable=False,
        index=True,
    )
    resource_type = Column(String(100), nullable=False)
    resource_id = Column(String(255), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    prev_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLogEntry(id={self.id}, action='{self.action}')>"


class RateLimitWindow(Base):
    """Request counter for one (identifier, endpoint) pair."""

    __tablename__ = "rate_limit_windows"
    __table_args__ = (
        UniqueConstraint("identifier", "endpoint", name="uq_rate_limit_identifier_endpoint"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    identifier = Column(String(255), nullable=False)
    endpoint = Column(String(100), nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
    window_end = Column(DateTime(timezone=True), nullable=False)
    request_count = Column(Integer, nullable=False, default=1)
    blocked_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class NotificationPreference(Base):
    """Per-user channel preferences keyed by notification event type."""

    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    preferences = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Notification(Base):
    """In-app notification polled by the recipient's client."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default="info")
    read = Column(Boolean, nullable=False, default=False)
    action_url = Column(String(500), nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id='{self.user_id}')>"


class ExternalWebhook(Base):
    """Outbound team-chat webhook (Slack or Discord) subscribed to events."""

    __tablename__ = "external_notification_webhooks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    platform = Column(Enum(WebhookPlatform, name="webhook_platform", native_enum=False), nullable=False)
    webhook_url = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    channels = Column(JSON, nullable=True)
    event_types = Column(JSON, nullable=False, default=list)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ExistingLoan(Base):
    """Servicing record derived from an application when it is funded."""

    __tablename__ = "existing_loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    application_id = Column(Integer, ForeignKey("loan_applications.id"), nullable=False, index=True)
    loan_name = Column(String(255), nullable=False)
    lender = Column(String(255), nullable=False)
    loan_type = Column(Enum(LoanType, name="loan_type", native_enum=False), nullable=False)
    original_amount = Column(Numeric(14, 2), nullable=False)
    current_balance = Column(Numeric(14, 2), nullable=False)
    interest_rate = Column(Numeric(6, 3), nullable=False)
    term_months = Column(Integer, nullable=False)
    remaining_months = Column(Integer, nullable=False)
    monthly_payment = Column(Numeric(14, 2), nullable=False)
    origination_date = Column(Date, nullable=False)
    maturity_date = Column(Date, nullable=False)
    status = Column(
        Enum(ExistingLoanStatus, name="existing_loan_status", native_enum=False),
        nullable=False,
        default=ExistingLoanStatus.CURRENT,
    )
    loan_purpose = Column(Text, nullable=True)
    has_prepayment_penalty = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class BankAccount(Base):
    """Borrower bank account. Account numbers leave the API masked unless audited."""

    __tablename__ = "bank_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    account_holder_name = Column(String(255), nullable=False)
    bank_name = Column(String(255), nullable=False)
    account_type = Column(String(50), nullable=False, default="checking")
    account_number = Column(String(64), nullable=False)
    routing_number = Column(String(32), nullable=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Storage-level append-only guards
# ---------------------------------------------------------------------------

APPEND_ONLY_TABLES = (AuditLogEntry.__table__, StatusHistoryEntry.__table__)

PG_GUARD_FUNCTION = """
CREATE OR REPLACE FUNCTION reject_append_only_mutation()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION '% is append-only: % denied', TG_TABLE_NAME, TG_OP;
    RETURN NULL;
END;
$$ LANGUAGE plpgsql
"""

PG_GUARD_TRIGGER = """
CREATE TRIGGER {table}_append_only
    BEFORE UPDATE OR DELETE ON {table}
    FOR EACH ROW
    EXECUTE FUNCTION reject_append_only_mutation()
"""

SQLITE_GUARD_TRIGGER = """
CREATE TRIGGER {table}_no_{op}
    BEFORE {op_upper} ON {table}
BEGIN
    SELECT RAISE(ABORT, '{table} is append-only: {op_upper} denied');
END
"""

for _table in APPEND_ONLY_TABLES:
    event.listen(_table, "after_create", DDL(PG_GUARD_FUNCTION).execute_if(dialect="postgresql"))
    event.listen(
        _table,
        "after_create",
        DDL(PG_GUARD_TRIGGER.format(table=_table.name)).execute_if(dialect="postgresql"),
    )
    for _op in ("update", "delete"):
        event.listen(
            _table,
            "after_create",
            DDL(
                SQLITE_GUARD_TRIGGER.format(table=_table.name, op=_op, op_upper=_op.upper())
            ).execute_if(dialect="sqlite"),
        )


def _reject_mutation(mapper, connection, target):
    raise AppendOnlyError(f"{target.__tablename__} is append-only")


for _model in (AuditLogEntry, StatusHistoryEntry):
    event.listen(_model, "before_update", _reject_mutation)
    event.listen(_model, "before_delete", _reject_mutation)
