"""
Request/response models shared by the webhook and tenant routes
"""
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.validation import PushEndpointValidator, TextSanitizer

MAX_TITLE_LENGTH = 500
MAX_MESSAGE_LENGTH = 2000


def _required_text(value: str, max_length: int) -> str:
    cleaned = TextSanitizer.sanitize(value, max_length=max_length)
    if not cleaned:
        raise ValueError("must be a non-empty string")
    return cleaned


# ==================== Webhooks ====================


class TaskEventIn(BaseModel):
    """Body of POST /api/webhook/task. ``message`` is accepted as an alias of ``title``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(strict=True)
    status: Literal["success", "failure", "cancelled"] = "success"
    duration: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False, strict=True)
    source: Optional[str] = Field(default=None, max_length=100)
    machine_id: Optional[str] = Field(default=None, alias="machineId", max_length=200)
    metadata: Optional[Any] = None
    provider_event_id: Optional[str] = Field(default=None, min_length=1, max_length=200)
    dedupe_key: Optional[str] = Field(default=None, min_length=1, max_length=200)

    @model_validator(mode="before")
    @classmethod
    def canonicalize_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if "title" not in data and "message" in data:
                data["title"] = data["message"]
            if data.get("status") is None:
                data.pop("status", None)
        return data

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _required_text(v, MAX_TITLE_LENGTH)

    def to_event(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AgentEventIn(BaseModel):
    """Body of POST /api/webhooks/{agent_id}; unknown fields are kept in the ledger payload"""

    model_config = ConfigDict(extra="allow")

    event_type: str = Field(strict=True, min_length=1, max_length=100)
    provider_event_id: str = Field(strict=True, min_length=1, max_length=200)
    message: str = Field(strict=True)
    dedupe_key: Optional[str] = Field(default=None, min_length=1, max_length=200)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        return _required_text(v, MAX_MESSAGE_LENGTH)

    def to_event(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class WebhookAcceptedResponse(BaseModel):
    success: bool = True
    accepted: bool = True
    duplicate: bool
    eventId: int
    taskId: int


class DispatchResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    retried: int
    skipped: int
    noSubscriptions: int
    disabledSubscriptions: int


# ==================== Push subscriptions ====================


class PushKeys(BaseModel):
    p256dh: str = Field(min_length=1, max_length=255)
    auth: str = Field(min_length=1, max_length=255)

    @field_validator("p256dh", "auth")
    @classmethod
    def strip_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class PushSubscriptionIn(BaseModel):
    """The browser's PushSubscription.toJSON() plus an optional user agent"""

    model_config = ConfigDict(populate_by_name=True)

    endpoint: str
    keys: PushKeys
    user_agent: Optional[str] = Field(default=None, alias="userAgent", max_length=500)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        v = v.strip()
        if not PushEndpointValidator.validate(v):
            raise ValueError("endpoint must be an https URL")
        return v


class PushSubscriptionDelete(BaseModel):
    endpoint: str = Field(min_length=1)


class PushSubscriptionResponse(BaseModel):
    success: bool = True
    id: int


class VapidPublicKeyResponse(BaseModel):
    publicKey: str


class NotificationTestResponse(BaseModel):
    success: bool
    sent: int
    failed: int
    disabledSubscriptions: int


# ==================== API keys ====================


class ApiKeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class ApiKeyResponse(BaseModel):
    id: int
    name: str
    keyPrefix: str
    lastUsedAt: Optional[datetime] = None
    createdAt: datetime


class ApiKeyCreatedResponse(BaseModel):
    """The only response that ever contains the raw key"""
    id: int
    name: str
    keyPrefix: str
    key: str


# ==================== Agents, settings, tasks ====================


class AgentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class AgentResponse(BaseModel):
    id: str
    name: str
    status: str
    webhookPath: str
    createdAt: datetime


class UserSettingsIn(BaseModel):
    pushEnabled: Optional[bool] = None
    soundEnabled: Optional[bool] = None


class UserSettingsResponse(BaseModel):
    pushEnabled: bool
    soundEnabled: bool


class TaskEventResponse(BaseModel):
    id: int
    provider: str
    status: str
    payload: dict[str, Any]
    receivedAt: datetime
    processedAt: Optional[datetime] = None


class TaskListResponse(BaseModel):
    tasks: List[TaskEventResponse]


# ==================== Admin ====================


class NotificationJobResponse(BaseModel):
    id: int
    tenantId: Optional[str] = None
    sourceEventId: Optional[int] = None
    channel: str
    dedupeKey: str
    status: str
    attempts: int
    maxAttempts: int
    lastError: Optional[str] = None
    runAt: datetime
    createdAt: datetime
    completedAt: Optional[datetime] = None


class NotificationJobListResponse(BaseModel):
    jobs: List[NotificationJobResponse]
    count: int


class CircuitBreakerStatusResponse(BaseModel):
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    success_count: int
    half_open_calls: int
    retry_after_seconds: float = Field(description="0 unless the circuit is open")
