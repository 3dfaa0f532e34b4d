# This project was developed with assistance from AI tools.
"""Audit log service.

Writes append-only audit entries with a SHA-256 hash chain for tamper
evidence. On PostgreSQL a transaction-scoped advisory lock serializes the
chain computation; the table itself rejects UPDATE and DELETE at the
storage layer.

Privileged reads and mutations record their entry through
``record_audit``, which propagates failures so the caller's request fails
with them.
"""

import hashlib
import json
import logging
from datetime import UTC, datetime, timedelta

from db import AuditLogEntry, dialect_name
from db.enums import AuditAction
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..schemas.auth import UserContext
from .side_effects import SideEffectError, await_and_propagate

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("loanflow.security")

# Fixed advisory lock key for audit trail serialization.
AUDIT_LOCK_KEY = 900_001


class AuditWriteError(SideEffectError):
    """An audit entry required by the current request could not be written."""


def _canonical_timestamp(value: datetime | None) -> str:
    """UTC ISO form, stable across drivers that drop tzinfo."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _compute_hash(entry: AuditLogEntry) -> str:
    """Compute SHA-256 hash of an audit entry's key fields."""
    action = entry.action.value if isinstance(entry.action, AuditAction) else entry.action
    details = json.dumps(entry.details, sort_keys=True, default=str)
    payload = f"{entry.id}|{_canonical_timestamp(entry.created_at)}|{entry.user_id}|{action}|{details}"
    return hashlib.sha256(payload.encode()).hexdigest()


async def write_audit_event(
    session: AsyncSession,
    *,
    action: AuditAction,
    resource_type: str,
    resource_id: str | int | None = None,
    user_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    details: dict | None = None,
) -> AuditLogEntry:
    """Append a single audit entry with hash chain linkage.

    Args:
        session: Database session.
        action: Closed audit action.
        resource_type: Kind of resource touched (e.g. 'loan_application').
        resource_id: Identifier of the resource, if any.
        user_id: Acting user; None for anonymous callers.
        ip_address: Caller address as seen by the API.
        user_agent: Caller user agent.
        details: JSON-serializable context. Never raw account numbers.

    Returns:
        The created AuditLogEntry (with prev_hash set).
    """
    if dialect_name(session) == "postgresql":
        await session.execute(text(f"SELECT pg_advisory_xact_lock({AUDIT_LOCK_KEY})"))

    latest = await session.execute(
        select(AuditLogEntry).order_by(AuditLogEntry.id.desc()).limit(1)
    )
    prev_entry = latest.scalar_one_or_none()
    prev_hash = _compute_hash(prev_entry) if prev_entry is not None else "genesis"

    entry = AuditLogEntry(
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details=details,
        prev_hash=prev_hash,
        created_at=datetime.now(UTC),
    )
    session.add(entry)
    await session.flush()
    return entry


async def record_audit(session: AsyncSession, **fields) -> AuditLogEntry:
    """Write an audit entry the request depends on; failures raise AuditWriteError."""
    return await await_and_propagate(
        write_audit_event(session, **fields),
        name=f"audit {fields.get('action')}",
        error_cls=AuditWriteError,
    )


async def verify_audit_chain(session: AsyncSession) -> dict:
    """Verify the integrity of the audit hash chain.

    Returns:
        {"status": "OK", "entries_checked": N} on success, or
        {"status": "TAMPERED", "first_break_id": id, "entries_checked": N}
        if a mismatch is found.
    """
    result = await session.execute(select(AuditLogEntry).order_by(AuditLogEntry.id.asc()))
    entries = list(result.scalars().all())

    for i, entry in enumerate(entries):
        expected = "genesis" if i == 0 else _compute_hash(entries[i - 1])
        if entry.prev_hash != expected:
            return {"status": "TAMPERED", "first_break_id": entry.id, "entries_checked": i + 1}

    return {"status": "OK", "entries_checked": len(entries)}


async def search_audit_events(
    session: AsyncSession,
    *,
    user_id: str | None = None,
    action: AuditAction | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    days: int | None = None,
    offset: int = 0,
    limit: int = 100,
) -> tuple[list[AuditLogEntry], int]:
    """Filter audit entries, newest first. Returns (page, total)."""
    filters = []
    if user_id:
        filters.append(AuditLogEntry.user_id == user_id)
    if action:
        filters.append(AuditLogEntry.action == action)
    if resource_type:
        filters.append(AuditLogEntry.resource_type == resource_type)
    if resource_id:
        filters.append(AuditLogEntry.resource_id == resource_id)
    if days:
        filters.append(AuditLogEntry.created_at >= datetime.now(UTC) - timedelta(days=days))

    total = (
        await session.execute(select(func.count(AuditLogEntry.id)).where(*filters))
    ).scalar() or 0
    result = await session.execute(
        select(AuditLogEntry)
        .where(*filters)
        .order_by(AuditLogEntry.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def count_recent_sensitive_reads(
    session: AsyncSession, user_id: str, *, window: timedelta = timedelta(hours=1),
) -> int:
    since = datetime.now(UTC) - window
    result = await session.execute(
        select(func.count(AuditLogEntry.id)).where(
            AuditLogEntry.user_id == user_id,
            AuditLogEntry.action.in_(AuditAction.sensitive_reads()),
            AuditLogEntry.created_at >= since,
        )
    )
    return result.scalar() or 0


async def check_sensitive_access(
    session: AsyncSession,
    user: UserContext,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """Raise a SECURITY_ALERT entry when a user exceeds the hourly sensitive-read budget.

    Returns True when an alert was recorded.
    """
    count = await count_recent_sensitive_reads(session, user.user_id)
    threshold = settings.SENSITIVE_ACCESS_ALERT_THRESHOLD
    if count <= threshold:
        return False

    security_logger.warning(
        "Excessive sensitive data access: user=%s reads_last_hour=%d threshold=%d",
        user.user_id,
        count,
        threshold,
    )
    await record_audit(
        session,
        action=AuditAction.SECURITY_ALERT,
        resource_type="security",
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={
            "alert": "excessive_sensitive_access",
            "count_last_hour": count,
            "threshold": threshold,
        },
    )
    return True


async def record_client_audit_event(
    session: AsyncSession,
    user: UserContext,
    *,
    action: AuditAction,
    resource_type: str,
    resource_id: str | None,
    details: dict | None,
    request_id: str,
    ip_address: str | None,
    user_agent: str | None,
) -> tuple[AuditLogEntry, bool]:
    """Record an audit entry reported by the portal client.

    Server-derived identity and request context are merged over anything
    the client sent. Returns (entry, alert_raised).
    """
    enriched = {
        **(details or {}),
        "userEmail": user.email,
        "userRole": user.role_level,
        "requestId": request_id,
        "loggedAt": datetime.now(UTC).isoformat(),
    }
    entry = await record_audit(
        session,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        user_id=user.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details=enriched,
    )
    alert = False
    if action in AuditAction.sensitive_reads():
        alert = await check_sensitive_access(
            session, user, ip_address=ip_address, user_agent=user_agent,
        )
    return entry, alert
