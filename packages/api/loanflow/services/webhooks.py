# This project was developed with assistance from AI tools.
"""Outbound Slack/Discord webhook fan-out.

Every active webhook subscribed to the event receives one POST. Failures
(HTTP errors, timeouts, bad URLs) are collected per target and returned;
nothing here raises to the caller.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
from db import ExternalWebhook
from db.enums import NotificationEvent, WebhookPlatform
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings

logger = logging.getLogger(__name__)

EXTERNAL_EVENTS = frozenset(
    {
        NotificationEvent.LOAN_FUNDED,
        NotificationEvent.APPLICATION_SUBMITTED,
        NotificationEvent.APPLICATION_APPROVED,
    }
)

DEFAULT_EVENT_TYPES = [e.value for e in sorted(EXTERNAL_EVENTS, key=lambda e: e.value)]

DISCORD_COLOR = 0x00D26A

# (data key, display label) pairs rendered as message fields when present.
_FIELDS = (
    ("loanAmount", "Amount"),
    ("loanType", "Type"),
    ("applicantName", "Applicant"),
    ("applicationNumber", "Application #"),
)


@dataclass
class WebhookResult:
    webhook: str
    platform: str
    success: bool
    status: int | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def format_slack(title: str, message: str, data: dict[str, Any], *, now: datetime | None = None) -> dict:
    now = now or datetime.now(UTC)
    fields = [
        {"type": "mrkdwn", "text": f"*{label}:*\n{data[key]}"}
        for key, label in _FIELDS
        if data.get(key)
    ]
    blocks: list[dict] = [
        {"type": "header", "text": {"type": "plain_text", "text": title, "emoji": True}},
        {"type": "section", "text": {"type": "mrkdwn", "text": message}},
    ]
    if fields:
        blocks.append({"type": "section", "fields": fields})
    blocks.append(
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"Sent from {settings.LENDER_NAME} | {now:%Y-%m-%d %H:%M UTC}",
                }
            ],
        }
    )
    return {"text": f"{title}: {message}", "blocks": blocks}


def format_discord(title: str, message: str, data: dict[str, Any], *, now: datetime | None = None) -> dict:
    now = now or datetime.now(UTC)
    embed: dict[str, Any] = {
        "title": title,
        "description": message,
        "color": DISCORD_COLOR,
        "timestamp": now.isoformat(),
        "footer": {"text": settings.LENDER_NAME},
    }
    fields = [
        {"name": label, "value": str(data[key]), "inline": True}
        for key, label in _FIELDS
        if data.get(key)
    ]
    if fields:
        embed["fields"] = fields
    return {"embeds": [embed]}


_FORMATTERS = {
    WebhookPlatform.SLACK: format_slack,
    WebhookPlatform.DISCORD: format_discord,
}


async def get_subscribed_webhooks(
    session: AsyncSession, event_type: NotificationEvent,
) -> list[ExternalWebhook]:
    """Active webhooks whose ``event_types`` include ``event_type``."""
    result = await session.execute(
        select(ExternalWebhook)
        .where(ExternalWebhook.is_active.is_(True))
        .order_by(ExternalWebhook.id)
    )
    return [w for w in result.scalars().all() if event_type.value in (w.event_types or [])]


async def _post(client: httpx.AsyncClient, webhook: ExternalWebhook, payload: dict) -> WebhookResult:
    platform = webhook.platform.value if isinstance(webhook.platform, WebhookPlatform) else webhook.platform
    try:
        response = await client.post(webhook.webhook_url, json=payload)
    except httpx.TimeoutException:
        logger.warning("Webhook %s timed out", webhook.name)
        return WebhookResult(webhook.name, platform, False, error="timeout")
    except httpx.HTTPError as exc:
        logger.warning("Webhook %s failed: %s", webhook.name, exc)
        return WebhookResult(webhook.name, platform, False, error="request failed")

    if not response.is_success:
        logger.warning("Webhook %s returned %d", webhook.name, response.status_code)
    return WebhookResult(webhook.name, platform, response.is_success, status=response.status_code)


async def broadcast(
    session: AsyncSession,
    event_type: NotificationEvent,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> list[WebhookResult]:
    """POST a platform-formatted message to every subscribed webhook."""
    webhooks = await get_subscribed_webhooks(session, event_type)
    if not webhooks:
        return []

    data = data or {}
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    try:
        results = []
        for webhook in webhooks:
            formatter = _FORMATTERS.get(webhook.platform, format_discord)
            results.append(await _post(client, webhook, formatter(title, message, data)))
    finally:
        if owns_client:
            await client.aclose()

    failed = sum(1 for r in results if not r.success)
    if failed:
        logger.warning("%d of %d webhooks failed for %s", failed, len(results), event_type.value)
    return results
