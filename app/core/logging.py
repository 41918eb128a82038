"""
Structured Logging Infrastructure

JSON log lines with correlation IDs, so a webhook request can be followed
through intake, the job queue and the dispatcher tick that delivers it.

Every logger returned by ``get_logger`` accepts ``extra_data=`` on its level
methods; the dict is redacted and written under ``"extra"``.
"""
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

# Never written to logs in clear: raw API keys, webhook secrets, push keys
SENSITIVE_KEYS = frozenset({
    "authorization", "api_key", "raw_key", "key", "secret",
    "p256dh", "auth", "private_key", "signature",
})

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s"

# Third-party loggers that are too chatty at the application level
_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.INFO,
}


def redact(data: Any) -> Any:
    """Replace values of sensitive keys, recursively"""
    if isinstance(data, dict):
        return {
            k: "***" if str(k).lower() in SENSITIVE_KEYS else redact(v)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(v) for v in data]
    return data


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class JSONFormatter(logging.Formatter):
    """One JSON object per line"""

    def __init__(self, service: str = ""):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _utc_timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        optional = {
            "service": self.service,
            "correlation_id": correlation_id_var.get(),
            "exception": self.formatException(record.exc_info) if record.exc_info else None,
        }
        entry.update((k, v) for k, v in optional.items() if v)

        extra_data = getattr(record, "extra_data", None)
        if extra_data is not None:
            entry["extra"] = redact(extra_data)

        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra_data: dict[str, Any] | None = None,
    ) -> None:
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        # One more frame than usual so records point at the caller, not here
        super()._log(
            level, msg, args,
            exc_info=exc_info, extra=extra,
            stack_info=stack_info, stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Adds correlation_id to records for the human-readable format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def _build_handler(level: int, json_format: bool, service: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JSONFormatter(service=service))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handler.addFilter(CorrelationIdFilter())
    return handler


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "finished-notify"
) -> None:
    """
    Replace the root handlers with a single stdout handler.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines for production, plain text for development
        app_name: written as "service" on every JSON line
    """
    numeric_level = logging.getLevelName(level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_build_handler(numeric_level, json_format, app_name))

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation ID; one is generated and kept if none is set"""
    return correlation_id_var.get() or set_correlation_id()


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def log_async_operation(operation_name: str):
    """Logs start, completion and failure of the wrapped coroutine with its duration"""
    def decorator(func):
        logger = get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.perf_counter()
            fields: dict[str, Any] = {"operation": operation_name}
            logger.debug(f"Starting {operation_name}", extra_data={**fields, "status": "started"})

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                fields["duration_seconds"] = round(time.perf_counter() - started, 4)
                logger.error(
                    f"Failed {operation_name}: {e}",
                    extra_data={**fields, "status": "failed", "error": str(e)},
                    exc_info=True,
                )
                raise

            fields["duration_seconds"] = round(time.perf_counter() - started, 4)
            logger.info(f"Completed {operation_name}", extra_data={**fields, "status": "completed"})
            return result

        return wrapper
    return decorator
