"""
Per-host circuit breakers guarding Web Push sends
"""
import asyncio

import pytest

from app.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    get_push_circuit_breaker,
    push_service_name,
)
from app.core.exceptions import CircuitBreakerOpenError, PushSubscriptionGoneError

# Short enough that tests can wait out an open circuit
TIMEOUT = 0.1


async def _fail():
    raise RuntimeError("push service down")


async def _succeed():
    return "delivered"


async def _trip(breaker: CircuitBreaker, failures: int = 3) -> None:
    for _ in range(failures):
        with pytest.raises(RuntimeError):
            await breaker.execute(_fail)


@pytest.fixture
def breaker() -> CircuitBreaker:
    return CircuitBreaker(
        "web_push:test",
        CircuitBreakerConfig(
            failure_threshold=3,
            success_threshold=2,
            timeout_seconds=TIMEOUT,
            half_open_max_calls=2,
        ),
    )


@pytest.fixture
async def half_open(breaker: CircuitBreaker) -> CircuitBreaker:
    await _trip(breaker)
    await asyncio.sleep(TIMEOUT * 1.5)
    return breaker


class TestClosed:

    @pytest.mark.unit
    async def test_fresh_breaker_admits_calls(self, breaker: CircuitBreaker):
        assert breaker.state is CircuitState.CLOSED
        assert breaker.get_retry_after() == 0.0
        assert await breaker.execute(_succeed) == "delivered"

    @pytest.mark.unit
    async def test_plain_functions_are_called_too(self, breaker: CircuitBreaker):
        assert await breaker.execute(lambda x: x * 2, 21) == 42

    @pytest.mark.unit
    async def test_failures_below_threshold_keep_it_closed(self, breaker: CircuitBreaker):
        await _trip(breaker, failures=2)

        assert breaker.is_closed

    @pytest.mark.unit
    async def test_a_success_forgets_earlier_failures(self, breaker: CircuitBreaker):
        await _trip(breaker, failures=2)
        await breaker.execute(_succeed)
        await _trip(breaker, failures=2)

        assert breaker.is_closed

    @pytest.mark.unit
    async def test_excluded_exceptions_never_trip(self):
        breaker = CircuitBreaker(
            "excluded",
            CircuitBreakerConfig(failure_threshold=2, excluded_exceptions=(LookupError,)),
        )

        async def gone():
            raise LookupError("endpoint gone")

        for _ in range(5):
            with pytest.raises(LookupError):
                await breaker.execute(gone)

        assert breaker.is_closed


class TestOpen:

    @pytest.mark.unit
    async def test_threshold_opens_it(self, breaker: CircuitBreaker):
        await _trip(breaker)

        assert breaker.is_open
        assert 0 < breaker.get_retry_after() <= TIMEOUT

    @pytest.mark.unit
    async def test_calls_are_refused_without_running(self, breaker: CircuitBreaker):
        await _trip(breaker)
        calls = []

        async def record():
            calls.append(1)

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await breaker.execute(record)

        assert calls == []
        assert "web_push:test" in exc_info.value.message
        assert exc_info.value.details["retry_after_seconds"] > 0


class TestHalfOpen:

    @pytest.mark.unit
    async def test_timeout_moves_to_half_open(self, half_open: CircuitBreaker):
        assert half_open.allow_request()
        assert half_open.is_half_open

    @pytest.mark.unit
    async def test_half_open_trial_calls_are_capped(self, half_open: CircuitBreaker):
        assert [half_open.allow_request() for _ in range(3)] == [True, True, False]

    @pytest.mark.unit
    async def test_enough_successes_close_it(self, half_open: CircuitBreaker):
        for _ in range(2):
            await half_open.execute(_succeed)

        assert half_open.is_closed

    @pytest.mark.unit
    async def test_any_failure_reopens_it(self, half_open: CircuitBreaker):
        with pytest.raises(RuntimeError):
            await half_open.execute(_fail)

        assert half_open.is_open


class TestRegistry:

    @pytest.mark.unit
    def test_get_instance_returns_the_same_breaker(self):
        first = CircuitBreaker.get_instance("shared", CircuitBreakerConfig())

        assert CircuitBreaker.get_instance("shared") is first

    @pytest.mark.unit
    def test_reset_all_forgets_breakers(self):
        first = CircuitBreaker.get_instance("shared")
        CircuitBreaker.reset_all()

        assert CircuitBreaker.get_instance("shared") is not first

    @pytest.mark.unit
    def test_all_instances_sorted_by_name(self):
        CircuitBreaker.get_instance("web_push:b.example")
        CircuitBreaker.get_instance("web_push:a.example")

        names = [b.service_name for b in CircuitBreaker.all_instances()]

        assert names == ["web_push:a.example", "web_push:b.example"]

    @pytest.mark.unit
    async def test_snapshot_reports_counters(self, breaker: CircuitBreaker):
        await _trip(breaker, failures=2)

        snapshot = breaker.snapshot()

        assert snapshot.service == "web_push:test"
        assert snapshot.state is CircuitState.CLOSED
        assert snapshot.failure_count == 2
        assert snapshot.retry_after_seconds == 0.0


class TestPushCircuitBreaker:

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "endpoint, expected",
        [
            ("https://fcm.googleapis.com/fcm/send/abc", "web_push:fcm.googleapis.com"),
            ("https://updates.push.services.mozilla.com/wpush/v2/x", "web_push:updates.push.services.mozilla.com"),
            ("not a url", "web_push:unknown"),
        ],
    )
    def test_push_service_name(self, endpoint: str, expected: str):
        assert push_service_name(endpoint) == expected

    @pytest.mark.unit
    def test_one_breaker_per_push_host(self):
        a = get_push_circuit_breaker("https://fcm.googleapis.com/fcm/send/device-a")
        b = get_push_circuit_breaker("https://fcm.googleapis.com/fcm/send/device-b")
        c = get_push_circuit_breaker("https://web.push.apple.com/QGk")

        assert a is b
        assert a is not c

    @pytest.mark.unit
    async def test_gone_subscriptions_do_not_open_breaker(self):
        breaker = get_push_circuit_breaker("https://fcm.googleapis.com/fcm/send/gone")

        async def gone():
            raise PushSubscriptionGoneError("https://fcm.googleapis.com/fcm/send/gone", 410)

        for _ in range(10):
            with pytest.raises(PushSubscriptionGoneError):
                await breaker.execute(gone)

        assert breaker.is_closed
