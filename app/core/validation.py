"""
Input Validation Utilities

- Text sanitization for notification titles and bodies
- JSON body parsing that maps every failure to MalformedPayloadError
- Push endpoint URL validation
"""
import json
import re
from typing import Any, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError

from app.core.exceptions import MalformedPayloadError

ModelT = TypeVar("ModelT", bound=BaseModel)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_MULTI_SPACE = re.compile(r" +")

MAX_PUSH_ENDPOINT_LENGTH = 2048


class TextSanitizer:
    """Text sanitization for values that end up on a lock screen"""

    @staticmethod
    def remove_control_characters(text: str) -> str:
        """Keeps \\t, \\n and \\r"""
        return _CONTROL_CHARS.sub("", text)

    @staticmethod
    def sanitize(text: str, max_length: int = 1000) -> str:
        """
        Trim, drop control characters, collapse runs of spaces, cap length.

        Does NOT HTML escape; the service worker renders notifications as text.
        """
        if not text:
            return ""
        sanitized = TextSanitizer.remove_control_characters(text.strip())
        sanitized = _MULTI_SPACE.sub(" ", sanitized)
        return sanitized[:max_length]


def parse_json_object(raw_body: bytes) -> dict[str, Any]:
    """Decode a request body that must be a JSON object"""
    if not raw_body:
        raise MalformedPayloadError("Request body is empty")
    try:
        data = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPayloadError("Request body is not valid JSON") from e
    if not isinstance(data, dict):
        raise MalformedPayloadError("Request body must be a JSON object")
    return data


def _error_summary(exc: ValidationError) -> list[dict[str, Any]]:
    # ctx may hold exception instances, which are not JSON serializable
    return [
        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]


def validate_payload(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedPayloadError("Invalid payload", errors=_error_summary(e)) from e


def parse_body(model: type[ModelT], raw_body: bytes) -> ModelT:
    return validate_payload(model, parse_json_object(raw_body))


class PushEndpointValidator:
    """Push service endpoints are absolute https URLs"""

    @staticmethod
    def validate(endpoint: str) -> bool:
        if not endpoint or len(endpoint) > MAX_PUSH_ENDPOINT_LENGTH:
            return False
        parsed = urlparse(endpoint)
        return parsed.scheme == "https" and bool(parsed.hostname)
