"""
Secrets handling: API key material and signed-request verification.

API keys look like ``fin_<32 alphanumerics>``. Only the SHA-256 hex digest is
stored; the first 12 characters are kept as a non-secret display prefix.

Signed requests (dispatch trigger, agent webhooks relayed through a queue
service) carry ``Upstash-Signature: v1=<hmac>``, an HMAC-SHA256 of the raw body
with the current or next signing key, encoded as base64, base64url or hex.
"""
import base64
import hashlib
import hmac
import secrets
import string

from app.core.config import settings

_KEY_ALPHABET = string.ascii_letters + string.digits
KEY_PREFIX_DISPLAY_LENGTH = 12
SIGNATURE_VERSION_PREFIX = "v1="


def generate_api_key() -> str:
    body = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(settings.API_KEY_RANDOM_LENGTH))
    return f"{settings.API_KEY_PREFIX}{body}"


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def key_display_prefix(raw_key: str) -> str:
    return raw_key[:KEY_PREFIX_DISPLAY_LENGTH]


def has_api_key_format(raw_key: str) -> bool:
    return raw_key.startswith(settings.API_KEY_PREFIX)


def constant_time_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def extract_signature_value(header: str) -> str | None:
    """
    Pull the signature out of a header value.

    Accepts ``v1=<sig>``, a comma-separated list containing a ``v1=`` part, or
    a bare signature.
    """
    value = header.strip()
    if not value:
        return None
    if value.startswith(SIGNATURE_VERSION_PREFIX):
        return value[len(SIGNATURE_VERSION_PREFIX):]
    if "," not in value:
        return value

    parts = [part.strip() for part in value.split(",")]
    for part in parts:
        if part.startswith(SIGNATURE_VERSION_PREFIX):
            return part[len(SIGNATURE_VERSION_PREFIX):]
    return parts[0] or None


def _signature_encodings(key: str, body: bytes) -> tuple[str, str, str]:
    digest = hmac.new(key.encode("utf-8"), body, hashlib.sha256).digest()
    b64 = base64.b64encode(digest).decode("ascii")
    b64url = b64.replace("+", "-").replace("/", "_").rstrip("=")
    return b64, b64url, digest.hex()


def verify_request_signature(header: str, body: bytes, keys: list[str] | None = None) -> bool:
    """True when the header matches the body under any configured signing key"""
    provided = extract_signature_value(header)
    if not provided:
        return False

    signing_keys = settings.signing_keys if keys is None else [k for k in keys if k]
    if not signing_keys:
        return False

    for key in signing_keys:
        for expected in _signature_encodings(key, body):
            if constant_time_equals(provided, expected):
                return True
    return False


def sign_request_body(body: bytes, key: str) -> str:
    """Header value for a signed request (used by scripts and tests)"""
    return SIGNATURE_VERSION_PREFIX + _signature_encodings(key, body)[0]
