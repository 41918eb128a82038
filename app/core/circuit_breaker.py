"""
Circuit Breaker for push services

Every subscription endpoint belongs to a push service (FCM, Mozilla autopush,
Apple). When one of them starts failing, its breaker opens and the dispatcher
records fast transport errors for that host instead of waiting on timeouts,
while devices on other services keep receiving notifications.

    CLOSED --(failure_threshold failures)--> OPEN
    OPEN --(timeout_seconds elapsed)--> HALF_OPEN
    HALF_OPEN --(success_threshold successes)--> CLOSED
    HALF_OPEN --(any failure)--> OPEN
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ParamSpec, TypeVar
from urllib.parse import urlparse

from app.core.exceptions import CircuitBreakerOpenError, PushSubscriptionGoneError
from app.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3
    # Raised by the call but proof the service answered; counted as success
    excluded_exceptions: tuple[type[BaseException], ...] = ()


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view for the admin endpoint"""
    service: str
    state: CircuitState
    failure_count: int
    success_count: int
    half_open_calls: int
    retry_after_seconds: float


class CircuitBreaker:
    """
    One breaker per service name, shared process-wide through ``get_instance``.

    Counters are guarded by a ``threading.Lock``: Celery runs every task on a
    fresh event loop, so an asyncio lock would be bound to the wrong loop.
    """

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_calls = 0
        self._opened_at = 0.0

    @classmethod
    def get_instance(cls, service_name: str, config: CircuitBreakerConfig | None = None) -> "CircuitBreaker":
        """Existing breaker for the service, or a new one built with ``config``"""
        with cls._instances_lock:
            breaker = cls._instances.get(service_name)
            if breaker is None:
                breaker = cls._instances[service_name] = cls(service_name, config)
            return breaker

    @classmethod
    def all_instances(cls) -> list["CircuitBreaker"]:
        with cls._instances_lock:
            return [cls._instances[name] for name in sorted(cls._instances)]

    @classmethod
    def reset_all(cls) -> None:
        """Forget every breaker (tests)"""
        with cls._instances_lock:
            cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state is CircuitState.HALF_OPEN

    def get_retry_after(self) -> float:
        """Seconds until an open circuit lets a trial call through; 0 otherwise"""
        if self._state is not CircuitState.OPEN:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(
                service=self.service_name,
                state=self._state,
                failure_count=self._failures,
                success_count=self._successes,
                half_open_calls=self._half_open_calls,
                retry_after_seconds=self.get_retry_after(),
            )

    def _move_to(self, new_state: CircuitState) -> None:
        """Caller holds ``self._lock``"""
        if new_state is self._state:
            return
        logger.info(
            f"Circuit breaker '{self.service_name}' {self._state.value} -> {new_state.value}",
            extra_data={
                "service": self.service_name,
                "old_state": self._state.value,
                "new_state": new_state.value,
                "failure_count": self._failures,
            },
        )
        self._state = new_state
        self._successes = 0
        self._half_open_calls = 0
        if new_state is CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state is CircuitState.CLOSED:
            self._failures = 0

    def allow_request(self) -> bool:
        """Admit a call, moving OPEN to HALF_OPEN once the timeout has passed"""
        with self._lock:
            if self._state is CircuitState.OPEN:
                if self.get_retry_after() > 0:
                    return False
                self._move_to(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    return False
                self._half_open_calls += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self.config.success_threshold:
                    self._move_to(CircuitState.CLOSED)
            else:
                self._failures = 0

    def record_failure(self, error: BaseException | None = None) -> None:
        with self._lock:
            self._failures += 1
            logger.warning(
                f"Circuit breaker '{self.service_name}' recorded failure",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._failures,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None,
                },
            )
            if self._state is CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
                self._move_to(CircuitState.OPEN)

    async def execute(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        """
        Run ``func`` (sync or async) through the breaker.

        Raises:
            CircuitBreakerOpenError: the circuit is open, ``func`` was not called
        """
        if not self.allow_request():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                result = await result
        except self.config.excluded_exceptions:
            self.record_success()
            raise
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result


PUSH_BREAKER_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    success_threshold=2,
    timeout_seconds=30.0,
    excluded_exceptions=(PushSubscriptionGoneError,),
)


def push_service_name(endpoint: str) -> str:
    """Breaker key for a subscription endpoint: one breaker per push service host"""
    host = urlparse(endpoint).hostname or "unknown"
    return f"web_push:{host}"


def get_push_circuit_breaker(endpoint: str) -> CircuitBreaker:
    return CircuitBreaker.get_instance(push_service_name(endpoint), PUSH_BREAKER_CONFIG)
