# This project was developed with assistance from AI tools.
"""Notification service request/response schemas."""

from typing import Annotated, Any, Literal

from db.enums import ApplicationStatus, NotificationEvent
from pydantic import AliasChoices, BaseModel, Field

_DATA = AliasChoices("notification_data", "notificationData")


class SendData(BaseModel):
    type: Literal["email", "sms", "system"]
    recipient: str = Field(default="", max_length=255)
    template: str = Field(default="welcome", max_length=64)
    title: str | None = Field(default=None, max_length=255)
    data: dict[str, Any] = Field(default_factory=dict)


class BulkData(BaseModel):
    notifications: list[SendData] = Field(min_length=1, max_length=500)


class StatusChangeData(BaseModel):
    application_id: int = Field(validation_alias=AliasChoices("application_id", "applicationId"))
    new_status: ApplicationStatus | None = Field(
        default=None, validation_alias=AliasChoices("new_status", "newStatus"),
    )


class LoanFundedData(BaseModel):
    application_id: int = Field(validation_alias=AliasChoices("application_id", "applicationId"))


class ExternalData(BaseModel):
    event_type: NotificationEvent = Field(validation_alias=AliasChoices("event_type", "eventType"))
    title: str = Field(max_length=255)
    message: str = Field(max_length=2000)
    data: dict[str, Any] = Field(default_factory=dict)


class SendRequest(BaseModel):
    action: Literal["send"]
    notification_data: SendData = Field(validation_alias=_DATA)


class SendBulkRequest(BaseModel):
    action: Literal["send-bulk"]
    notification_data: BulkData = Field(validation_alias=_DATA)


class GetTemplatesRequest(BaseModel):
    action: Literal["get-templates"]


class StatusChangeRequest(BaseModel):
    action: Literal["application-status-change"]
    notification_data: StatusChangeData = Field(validation_alias=_DATA)


class LoanFundedRequest(BaseModel):
    action: Literal["loan-funded"]
    notification_data: LoanFundedData = Field(validation_alias=_DATA)


class SendExternalRequest(BaseModel):
    action: Literal["send-external"]
    notification_data: ExternalData = Field(validation_alias=_DATA)


NotificationAction = Annotated[
    SendRequest
    | SendBulkRequest
    | GetTemplatesRequest
    | StatusChangeRequest
    | LoanFundedRequest
    | SendExternalRequest,
    Field(discriminator="action"),
]


class DeliveryItem(BaseModel):
    channel: str
    success: bool
    target: str | None = None
    error: str | None = None
    status: int | None = None


class DeliveryResponse(BaseModel):
    success: bool
    message: str
    deliveries: list[DeliveryItem] = Field(default_factory=list)


class TemplateInfo(BaseModel):
    subject: str
    sms: str | None = None


class TemplatesResponse(BaseModel):
    templates: dict[str, TemplateInfo]


class ChannelPreferences(BaseModel):
    email: bool | None = None
    in_app: bool | None = None
    sms: bool | None = None


class PreferencesResponse(BaseModel):
    user_id: str
    preferences: dict[str, dict[str, bool]]


class PreferencesUpdate(BaseModel):
    preferences: dict[NotificationEvent, ChannelPreferences]
