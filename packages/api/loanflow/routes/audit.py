# This project was developed with assistance from AI tools.
"""Client audit logger endpoint.

The portal client reports user-visible actions here (views of sensitive
pages, exports). Identity and request context come from the server, never
from the body.
"""

import uuid

from db import get_db
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..middleware.auth import CurrentUser
from ..middleware.rate_limit import client_ip, enforce_rate_limit
from ..schemas.audit import ClientAuditEvent, ClientAuditResponse
from ..services.audit import record_client_audit_event

router = APIRouter()


@router.post("/", response_model=ClientAuditResponse, status_code=status.HTTP_201_CREATED)
async def record_event(
    body: ClientAuditEvent,
    request: Request,
    response: Response,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> ClientAuditResponse:
    """Append a client-reported event to the audit trail."""
    await enforce_rate_limit(session, request, response, user, "audit:record")
    entry, alert = await record_client_audit_event(
        session,
        user,
        action=body.action,
        resource_type=body.resource_type,
        resource_id=body.resource_id,
        details=body.details,
        request_id=request.headers.get("x-request-id", str(uuid.uuid4())),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return ClientAuditResponse(id=entry.id, alert_raised=alert)
