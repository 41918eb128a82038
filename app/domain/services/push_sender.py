"""
Web Push sender (VAPID + RFC 8291 payload encryption via pywebpush).

The sender is built once per process from immutable ``VapidCredentials`` and
handed to whoever delivers notifications. Each send is classified into one of
three outcomes:

- returns normally: the push service accepted the message
- ``PushSubscriptionGoneError``: 404/410, the endpoint will never work again
- ``PushTransportError``: anything else (HTTP error, timeout, open breaker)
"""
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Protocol

import requests
from py_vapid import Vapid
from pywebpush import webpush, WebPushException

from app.core.circuit_breaker import get_push_circuit_breaker
from app.core.config import Settings, settings
from app.core.exceptions import (
    CircuitBreakerOpenError,
    PushNotConfiguredError,
    PushSubscriptionGoneError,
    PushTransportError,
)
from app.core.logging import get_logger

logger = get_logger(__name__)

GONE_STATUS_CODES = frozenset({404, 410})


class PushTarget(Protocol):
    endpoint: str
    p256dh: str
    auth: str


@dataclass(frozen=True)
class VapidCredentials:
    subject: str
    public_key: str
    private_key: str

    def __repr__(self) -> str:
        return f"VapidCredentials(subject={self.subject!r}, public_key={self.public_key[:12]!r}...)"


def missing_vapid_settings(config: Settings | None = None) -> list[str]:
    config = config or settings
    return [
        name for name, value in (
            ("WEB_PUSH_SUBJECT", config.WEB_PUSH_SUBJECT),
            ("WEB_PUSH_PUBLIC_KEY", config.WEB_PUSH_PUBLIC_KEY),
            ("WEB_PUSH_PRIVATE_KEY", config.WEB_PUSH_PRIVATE_KEY),
        )
        if not value
    ]


def load_vapid_credentials(config: Settings | None = None) -> VapidCredentials:
    """Raises PushNotConfiguredError naming every missing setting"""
    config = config or settings
    missing = missing_vapid_settings(config)
    if missing:
        raise PushNotConfiguredError(missing)
    return VapidCredentials(
        subject=config.WEB_PUSH_SUBJECT,
        public_key=config.WEB_PUSH_PUBLIC_KEY,
        private_key=config.WEB_PUSH_PRIVATE_KEY,
    )


def build_push_payload(title: str, body: str, url: str | None = None) -> dict[str, Any]:
    return {"title": title, "body": body, "data": {"url": url or settings.PUSH_DEFAULT_URL}}


class WebPushSender:
    def __init__(
        self,
        credentials: VapidCredentials,
        *,
        timeout_seconds: float | None = None,
        ttl_seconds: int | None = None,
    ):
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds or settings.PUSH_REQUEST_TIMEOUT_SECONDS
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.PUSH_TTL_SECONDS
        # Parsed once; a malformed private key fails at startup, not on the first job
        self._vapid = Vapid.from_string(private_key=credentials.private_key)

    async def send(self, target: PushTarget, payload: dict[str, Any]) -> None:
        breaker = get_push_circuit_breaker(target.endpoint)
        data = json.dumps(payload, ensure_ascii=False)
        try:
            await breaker.execute(self._send_with_timeout, target, data)
        except CircuitBreakerOpenError as e:
            raise PushTransportError(e.message, details=e.details) from e

    async def _send_with_timeout(self, target: PushTarget, data: str) -> None:
        # requests enforces the socket timeout; wait_for also bounds encryption and DNS
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send_blocking, target, data),
                timeout=self.timeout_seconds + 1,
            )
        except asyncio.TimeoutError as e:
            raise PushTransportError(
                f"push request timed out after {self.timeout_seconds}s"
            ) from e

    def _send_blocking(self, target: PushTarget, data: str) -> None:
        subscription_info = {
            "endpoint": target.endpoint,
            "keys": {"p256dh": target.p256dh, "auth": target.auth},
        }
        try:
            webpush(
                subscription_info=subscription_info,
                data=data,
                vapid_private_key=self._vapid,
                # pywebpush adds aud/exp to the dict it is given
                vapid_claims={"sub": self.credentials.subject},
                ttl=self.ttl_seconds,
                timeout=self.timeout_seconds,
            )
        except WebPushException as e:
            response = e.response
            status_code = getattr(response, "status_code", None)
            if status_code in GONE_STATUS_CODES:
                raise PushSubscriptionGoneError(target.endpoint, status_code) from e
            if response is not None:
                raise PushTransportError.from_response("send", response) from e
            raise PushTransportError(f"push send failed: {e.message}") from e
        except requests.Timeout as e:
            raise PushTransportError(
                f"push request timed out after {self.timeout_seconds}s"
            ) from e
        except requests.RequestException as e:
            raise PushTransportError(f"push request failed: {e}") from e


def build_push_sender(config: Settings | None = None) -> WebPushSender:
    return WebPushSender(load_vapid_credentials(config))
