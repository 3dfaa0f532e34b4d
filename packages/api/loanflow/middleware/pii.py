# This project was developed with assistance from AI tools.
"""Financial identifier masking middleware and utilities.

Masks bank account and routing numbers in every JSON response body. A
route that has audited an unmasked read sets
``request.state.unmask_financials = True`` to let the raw values through.
"""

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


def mask_account_number(value: str | None) -> str | None:
    """Mask account number to ****5678 format (last 4 visible)."""
    if value is None:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) >= 4:
        return f"****{digits[-4:]}"
    return "********"


def mask_routing_number(value: str | None) -> str | None:
    """Mask routing number to *****6789 format (last 4 visible)."""
    if value is None:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) >= 4:
        return f"*****{digits[-4:]}"
    return "*********"


_FIELD_MASKERS: dict[str, Callable[[str | None], str | None]] = {
    "account_number": mask_account_number,
    "routing_number": mask_routing_number,
}


def mask_financial_fields(obj: Any) -> Any:
    """Walk a JSON-compatible structure and mask known financial identifiers."""
    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            masker = _FIELD_MASKERS.get(key)
            if masker and isinstance(value, str | None):
                result[key] = masker(value)
            else:
                result[key] = mask_financial_fields(value)
        return result
    if isinstance(obj, list):
        return [mask_financial_fields(item) for item in obj]
    return obj


class FinancialMaskingMiddleware(BaseHTTPMiddleware):
    """Mask financial identifiers in JSON responses unless a route opted out."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        if getattr(request.state, "unmask_financials", False):
            return response

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return response

        body_bytes = b""
        async for chunk in response.body_iterator:
            if isinstance(chunk, str):
                body_bytes += chunk.encode("utf-8")
            else:
                body_bytes += chunk

        try:
            data = json.loads(body_bytes)
            new_body = json.dumps(mask_financial_fields(data)).encode("utf-8")
        except (json.JSONDecodeError, TypeError):
            new_body = body_bytes

        headers = dict(response.headers)
        headers.pop("content-length", None)
        return Response(
            content=new_body,
            status_code=response.status_code,
            headers=headers,
            media_type=response.media_type,
        )
