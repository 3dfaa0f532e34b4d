# This project was developed with assistance from AI tools.
__version__ = "0.1.0"

from .database import (
    Base,
    DatabaseService,
    SessionLocal,
    db_service,
    dialect_name,
    enable_sqlite_savepoints,
    get_db,
    get_db_service,
)
from .enums import (
    ApplicationStatus,
    AppRole,
    AuditAction,
    ExistingLoanStatus,
    LoanType,
    NotificationChannel,
    NotificationEvent,
    WebhookPlatform,
)
from .models import (
    AdminAssignment,
    AppendOnlyError,
    AuditLogEntry,
    BankAccount,
    ExistingLoan,
    ExternalWebhook,
    LoanApplication,
    Notification,
    NotificationPreference,
    RateLimitWindow,
    StatusHistoryEntry,
    UserRoleAssignment,
)

__all__ = [
    "Base",
    "DatabaseService",
    "SessionLocal",
    "db_service",
    "dialect_name",
    "enable_sqlite_savepoints",
    "get_db",
    "get_db_service",
    "__version__",
    # Enums
    "ApplicationStatus",
    "AppRole",
    "AuditAction",
    "ExistingLoanStatus",
    "LoanType",
    "NotificationChannel",
    "NotificationEvent",
    "WebhookPlatform",
    # Models
    "AdminAssignment",
    "AppendOnlyError",
    "AuditLogEntry",
    "BankAccount",
    "ExistingLoan",
    "ExternalWebhook",
    "LoanApplication",
    "Notification",
    "NotificationPreference",
    "RateLimitWindow",
    "StatusHistoryEntry",
    "UserRoleAssignment",
]
