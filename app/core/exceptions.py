"""
Application exceptions

Each subclass pins its ``error_code`` and HTTP ``status_code`` as class
attributes; ``app_exception_handler`` renders any of them as

    {"error": {"code": "ERR_xxxx", "message": "...", "details": {...}}}
"""
from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable codes returned to API clients"""

    # General (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"
    CONFLICT = "ERR_1007"

    # Credentials (2xxx)
    INVALID_CREDENTIAL = "ERR_2001"
    INVALID_KEY_FORMAT = "ERR_2002"
    WEBHOOK_SECRET_NOT_CONFIGURED = "ERR_2003"
    INVALID_SIGNATURE = "ERR_2004"

    # Intake (3xxx)
    MALFORMED_PAYLOAD = "ERR_3001"
    AGENT_NOT_FOUND = "ERR_3002"

    # Notification jobs (4xxx)
    JOB_NOT_FOUND = "ERR_4001"
    INVALID_JOB_STATE = "ERR_4002"
    MISSING_TENANT = "ERR_4003"

    # Push services (5xxx)
    PUSH_NOT_CONFIGURED = "ERR_5001"
    PUSH_TRANSPORT_ERROR = "ERR_5002"
    PUSH_SUBSCRIPTION_GONE = "ERR_5003"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5004"


class AppException(Exception):
    """Base exception; ``error_code`` and ``status_code`` default to the class values"""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details,
            }
        }


# ==================== Request validation ====================


class ValidationException(AppException):
    error_code = ErrorCode.VALIDATION_ERROR
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        super().__init__(message, details=details)
        if field:
            self.details["field"] = field


class MalformedPayloadError(ValidationException):
    """A webhook body failed schema validation. Nothing is persisted."""

    error_code = ErrorCode.MALFORMED_PAYLOAD

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message, details={"errors": errors or []})


class NotFoundException(AppException):
    error_code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, identifier: Any, error_code: Optional[ErrorCode] = None):
        super().__init__(
            f"{resource} not found: {identifier}",
            error_code=error_code,
            details={"resource": resource, "identifier": str(identifier)},
        )


class AgentNotFoundError(NotFoundException):
    def __init__(self, agent_id: str):
        super().__init__("Agent", agent_id, error_code=ErrorCode.AGENT_NOT_FOUND)


# ==================== Credentials ====================


class CredentialException(AppException):
    """Inbound call could not be authenticated. Rendered with WWW-Authenticate."""

    error_code = ErrorCode.INVALID_CREDENTIAL
    status_code = 401


class InvalidCredentialError(CredentialException):
    def __init__(self, message: str = "Invalid API key"):
        super().__init__(message)


class InvalidKeyFormatError(CredentialException):
    """Bearer token without the API key prefix"""

    error_code = ErrorCode.INVALID_KEY_FORMAT

    def __init__(self, expected_prefix: str):
        super().__init__(
            f"Invalid API key format. Key must start with '{expected_prefix}'",
            details={"expected_prefix": expected_prefix},
        )


class InvalidSignatureError(CredentialException):
    """Signed request that verifies against none of the signing keys"""

    error_code = ErrorCode.INVALID_SIGNATURE

    def __init__(self, message: str = "Invalid request signature"):
        super().__init__(message)


class WebhookSecretNotConfiguredError(CredentialException):
    # A server-side gap, not the caller's fault
    error_code = ErrorCode.WEBHOOK_SECRET_NOT_CONFIGURED
    status_code = 500

    def __init__(self):
        super().__init__("Webhook secret is not configured")


# ==================== Notification jobs ====================


class NotificationJobException(AppException):
    status_code = 400

    def __init__(self, message: str, job_id: int, details: Optional[dict[str, Any]] = None):
        super().__init__(message, details={"job_id": job_id, **(details or {})})
        self.job_id = job_id


class JobNotFoundError(NotificationJobException):
    error_code = ErrorCode.JOB_NOT_FOUND
    status_code = 404

    def __init__(self, job_id: int):
        super().__init__(f"Notification job not found: {job_id}", job_id)


class JobStateError(NotificationJobException):
    """Operator action that does not fit the job's current status"""

    error_code = ErrorCode.INVALID_JOB_STATE
    status_code = 409

    def __init__(self, job_id: int, current_status: str, required_status: str):
        super().__init__(
            f"Job {job_id} has status '{current_status}', required '{required_status}'",
            job_id,
            details={"current_status": current_status, "required_status": required_status},
        )


class MissingTenantError(NotificationJobException):
    """Job whose tenant cannot be resolved. Terminal, never retried."""

    error_code = ErrorCode.MISSING_TENANT
    status_code = 500

    def __init__(self, job_id: int):
        super().__init__("missing tenant", job_id)


# ==================== Push services ====================


class ExternalServiceException(AppException):
    error_code = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE
    status_code = 503

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: Optional[ErrorCode] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, details={"service": service_name, **(details or {})})


class PushNotConfiguredError(ExternalServiceException):
    """VAPID credentials are missing; ``details["missing"]`` names the settings"""

    error_code = ErrorCode.PUSH_NOT_CONFIGURED

    def __init__(self, missing: list[str]):
        super().__init__("web_push", "Web Push is not configured", details={"missing": missing})


class PushTransportError(ExternalServiceException):
    """Delivery failed for any reason other than the endpoint being gone; retryable"""

    error_code = ErrorCode.PUSH_TRANSPORT_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__("web_push", message, details=details)
        # HTTP status of the push service, not of our response
        self.push_status_code = status_code
        if status_code is not None:
            self.details["push_status_code"] = status_code

    @classmethod
    def from_response(cls, operation: str, response: Any, *, max_response_chars: int = 500) -> "PushTransportError":
        """From a requests/httpx response; the body is truncated to ``max_response_chars``"""
        status_code = getattr(response, "status_code", None)
        body = getattr(response, "text", "") or ""
        return cls(
            f"push {operation} returned status {status_code}",
            status_code=status_code,
            details={"operation": operation, "response_text": body[:max_response_chars]},
        )


class PushSubscriptionGoneError(ExternalServiceException):
    """Push service answered 404/410: the subscription will never work again"""

    error_code = ErrorCode.PUSH_SUBSCRIPTION_GONE

    def __init__(self, endpoint: str, status_code: int):
        super().__init__(
            "web_push",
            f"Push subscription gone ({status_code})",
            details={"push_status_code": status_code},
        )
        self.endpoint = endpoint
        self.push_status_code = status_code


class CircuitBreakerOpenError(ExternalServiceException):
    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name,
            f"{service_name} is temporarily unavailable (circuit breaker open)",
            details={"retry_after_seconds": retry_after_seconds},
        )
