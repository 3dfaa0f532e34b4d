# This project was developed with assistance from AI tools.
"""Result strategies for work that runs after the primary write.

``await_and_propagate`` is used where the caller must not succeed if the
side effect fails (audit on privileged reads and mutations).
``fire_and_log`` is used for best-effort work (notifications, webhooks,
rate-limit audit): failures are logged and the request continues.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SideEffectError(RuntimeError):
    """A required side effect failed; the request must fail with it."""


async def await_and_propagate(
    operation: Awaitable[T],
    *,
    name: str,
    error_cls: type[SideEffectError] = SideEffectError,
) -> T:
    """Await ``operation``; log and re-raise any failure as ``error_cls``."""
    try:
        return await operation
    except error_cls:
        raise
    except Exception as exc:
        logger.error("Required side effect '%s' failed: %s", name, exc)
        raise error_cls(f"{name} failed") from exc


async def fire_and_log(operation: Awaitable[T], *, name: str) -> T | None:
    """Await ``operation``; log any failure and return None instead of raising."""
    try:
        return await operation
    except Exception:
        logger.exception("Best-effort side effect '%s' failed", name)
        return None


async def fire_and_log_in_savepoint(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
) -> T | None:
    """Best-effort DB work isolated in a SAVEPOINT.

    A failure rolls back only the savepoint, so the caller's primary write
    and audit entry still commit.
    """

    async def _run() -> T:
        async with session.begin_nested():
            return await operation()

    return await fire_and_log(_run(), name=name)
