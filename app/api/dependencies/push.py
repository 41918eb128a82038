"""
Web Push sender dependency.

The sender is built once at startup and stored on ``app.state``; routes get
it injected rather than reading configuration themselves.
"""
from fastapi import Request

from app.core.exceptions import PushNotConfiguredError
from app.domain.services.push_sender import WebPushSender, missing_vapid_settings


def get_push_sender(request: Request) -> WebPushSender:
    sender = getattr(request.app.state, "push_sender", None)
    if sender is None:
        raise PushNotConfiguredError(missing_vapid_settings())
    return sender
