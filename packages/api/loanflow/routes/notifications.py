# This project was developed with assistance from AI tools.
"""Notification service endpoints.

POST dispatches on ``action`` after the per-action rate limit. ``send-bulk``,
``loan-funded`` and ``send-external`` are admin-only; a denied call sends
nothing.
"""

from db import get_db
from db.enums import ApplicationStatus
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import is_admin
from ..middleware.auth import CurrentUser
from ..middleware.rate_limit import enforce_rate_limit
from ..schemas.auth import UserContext
from ..schemas.notification import (
    DeliveryItem,
    DeliveryResponse,
    GetTemplatesRequest,
    LoanFundedRequest,
    NotificationAction,
    PreferencesResponse,
    PreferencesUpdate,
    SendBulkRequest,
    SendRequest,
    StatusChangeRequest,
    TemplateInfo,
    TemplatesResponse,
)
from ..services import application as app_service
from ..services import notification as notification_service
from ..services import webhooks
from ..services.authorization import authorize_action

router = APIRouter()


def _response(message: str, attempts) -> DeliveryResponse:
    items = [DeliveryItem(**a.to_dict()) for a in attempts]
    return DeliveryResponse(
        success=all(i.success for i in items) if items else True,
        message=message,
        deliveries=items,
    )


async def _visible_application(session: AsyncSession, user: UserContext, application_id: int):
    if is_admin(user.roles):
        return await app_service.get_application(session, application_id)
    return await app_service.get_user_application(session, user.user_id, application_id)


@router.post("/", response_model=DeliveryResponse | TemplatesResponse)
async def notification_action(
    body: NotificationAction,
    request: Request,
    response: Response,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> DeliveryResponse | TemplatesResponse:
    """Send, broadcast or describe notifications."""
    await enforce_rate_limit(session, request, response, user, f"notification-service:{body.action}")
    authorize_action(user, body.action)

    if isinstance(body, GetTemplatesRequest):
        return TemplatesResponse(
            templates={
                name: TemplateInfo(**info)
                for name, info in notification_service.template_catalog().items()
            }
        )

    if isinstance(body, SendRequest):
        attempt = await notification_service.send_direct(session, user, body.notification_data)
        return _response(f"{body.notification_data.type} notification processed", [attempt])

    if isinstance(body, SendBulkRequest):
        attempts = [
            await notification_service.send_direct(session, user, item)
            for item in body.notification_data.notifications
        ]
        return _response("Bulk notifications processed", attempts)

    if isinstance(body, StatusChangeRequest):
        data = body.notification_data
        application = await _visible_application(session, user, data.application_id)
        attempts = await notification_service.notify_status_change(
            session, application, data.new_status or application.status,
        )
        return _response("Status change notification sent", attempts)

    if isinstance(body, LoanFundedRequest):
        application = await app_service.get_application(session, body.notification_data.application_id)
        if application.status != ApplicationStatus.FUNDED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Application has not been funded",
            )
        loan = await app_service.get_active_loan(session, application.id)
        attempts = await notification_service.notify_loan_funded(session, application, loan)
        return _response("Loan funded notification sent", attempts)

    data = body.notification_data
    results = await webhooks.broadcast(session, data.event_type, data.title, data.message, data.data)
    return DeliveryResponse(
        success=all(r.success for r in results),
        message=f"Sent to {len(results)} webhook(s)",
        deliveries=[
            DeliveryItem(
                channel="external", success=r.success, target=r.webhook, error=r.error, status=r.status,
            )
            for r in results
        ],
    )


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> PreferencesResponse:
    """Effective channel preferences for the caller, defaults included."""
    prefs = await notification_service.get_preferences(session, user.user_id)
    return PreferencesResponse(user_id=user.user_id, preferences=prefs)


@router.put("/preferences", response_model=PreferencesResponse)
async def update_preferences(
    body: PreferencesUpdate,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> PreferencesResponse:
    """Merge channel toggles into the caller's stored preferences."""
    updates = {
        event.value: channels.model_dump(exclude_none=True)
        for event, channels in body.preferences.items()
    }
    prefs = await notification_service.update_preferences(session, user.user_id, updates)
    return PreferencesResponse(user_id=user.user_id, preferences=prefs)
