"""Circuit breaker.

Tests cover:
    - Closed -> Open after exactly `threshold` consecutive failures
    - Open fails fast until the reset timeout, then admits one probe
    - Probe success closes the circuit; probe failure reopens it
    - abandon() frees the probe slot, snapshot() reflects state
    - Outcomes of calls admitted before a transition are ignored
"""

import asyncio

import pytest

from ingredient_ocr.errors import CircuitOpenError, CorruptionError
from ingredient_ocr.services.circuit_breaker import CircuitBreaker, CircuitState


def _trip(breaker: CircuitBreaker, n: int) -> None:
    for _ in range(n):
        permit = breaker.before_call()
        breaker.record_failure(permit)


def test_starts_closed(clock):
    b = CircuitBreaker(threshold=3, reset_timeout=10, clock=clock)
    assert b.state is CircuitState.CLOSED
    b.before_call()


def test_opens_at_threshold(clock):
    b = CircuitBreaker(threshold=3, reset_timeout=10, clock=clock)
    _trip(b, 2)
    assert b.state is CircuitState.CLOSED
    _trip(b, 1)
    assert b.state is CircuitState.OPEN

    with pytest.raises(CircuitOpenError) as exc:
        b.before_call()
    assert exc.value.retry_after == pytest.approx(10)
    assert not exc.value.retryable


def test_success_resets_counter(clock):
    b = CircuitBreaker(threshold=3, reset_timeout=10, clock=clock)
    _trip(b, 2)
    permit = b.before_call()
    b.record_success(permit)
    _trip(b, 2)
    assert b.state is CircuitState.CLOSED
    assert b.snapshot().consecutive_failures == 2


def test_half_open_admits_exactly_one_probe(clock):
    b = CircuitBreaker(threshold=2, reset_timeout=60, clock=clock)
    _trip(b, 2)

    clock.advance(59)
    with pytest.raises(CircuitOpenError):
        b.before_call()

    clock.advance(1)
    assert b.state is CircuitState.HALF_OPEN
    b.before_call()
    with pytest.raises(CircuitOpenError) as exc:
        b.before_call()
    # no countdown while a probe is running
    assert exc.value.retry_after is None


def test_probe_success_closes(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    _trip(b, 1)
    clock.advance(5)
    permit = b.before_call()
    b.record_success(permit)

    snap = b.snapshot()
    assert snap.state is CircuitState.CLOSED
    assert snap.consecutive_failures == 0
    b.before_call()


def test_probe_failure_reopens_and_restarts_timer(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    _trip(b, 1)
    clock.advance(5)
    permit = b.before_call()
    b.record_failure(permit)

    assert b.state is CircuitState.OPEN
    clock.advance(4)
    with pytest.raises(CircuitOpenError):
        b.before_call()
    clock.advance(1)
    b.before_call()


def test_never_closes_straight_from_open(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    _trip(b, 1)
    clock.advance(100)
    # timer elapsed, but the circuit only reaches CLOSED through a probe
    assert b.state is CircuitState.HALF_OPEN


def test_abandon_frees_probe_slot(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    _trip(b, 1)
    clock.advance(5)
    permit = b.before_call()
    assert b.snapshot().probe_in_flight
    b.abandon(permit)
    assert not b.snapshot().probe_in_flight
    b.before_call()


def test_late_success_does_not_close_open_circuit(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    slow = b.before_call()
    fast = b.before_call()
    b.record_failure(fast)
    assert b.state is CircuitState.OPEN
    opened_at = b.snapshot().last_transition

    clock.advance(2)
    b.record_success(slow)
    snap = b.snapshot()
    assert snap.state is CircuitState.OPEN
    assert snap.last_transition == opened_at
    assert snap.consecutive_failures == 1


def test_late_outcomes_leave_probe_alone(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    slow = b.before_call()
    b.record_failure(b.before_call())
    clock.advance(5)
    probe = b.before_call()

    b.record_success(slow)
    assert b.state is CircuitState.HALF_OPEN
    b.record_failure(slow)
    b.abandon(slow)
    snap = b.snapshot()
    assert snap.state is CircuitState.HALF_OPEN
    assert snap.probe_in_flight

    b.record_success(probe)
    assert b.state is CircuitState.CLOSED


def test_stale_probe_outcome_ignored(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    b.record_failure(b.before_call())
    clock.advance(5)
    first = b.before_call()
    b.abandon(first)
    second = b.before_call()

    b.record_failure(first)
    assert b.state is CircuitState.HALF_OPEN
    b.record_success(second)
    assert b.state is CircuitState.CLOSED


def test_invalid_settings():
    with pytest.raises(ValueError):
        CircuitBreaker(threshold=0)
    with pytest.raises(ValueError):
        CircuitBreaker(reset_timeout=0)


@pytest.mark.asyncio
async def test_call_records_outcomes(clock):
    b = CircuitBreaker(threshold=2, reset_timeout=5, clock=clock)

    async def ok():
        return "text"

    async def broken():
        raise CorruptionError("boom")

    assert await b.call(ok) == "text"
    for _ in range(2):
        with pytest.raises(CorruptionError):
            await b.call(broken)
    assert b.state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await b.call(ok)


@pytest.mark.asyncio
async def test_concurrent_probe_admission(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    _trip(b, 1)
    clock.advance(5)

    admitted = 0
    blocked = 0

    async def attempt():
        nonlocal admitted, blocked
        try:
            b.before_call()
            admitted += 1
        except CircuitOpenError:
            blocked += 1

    await asyncio.gather(*(attempt() for _ in range(10)))
    assert admitted == 1
    assert blocked == 9


@pytest.mark.asyncio
async def test_interleaved_calls_keep_circuit_open(clock):
    b = CircuitBreaker(threshold=1, reset_timeout=5, clock=clock)
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "late text"

    async def broken():
        raise CorruptionError("boom")

    pending = asyncio.create_task(b.call(slow))
    await asyncio.sleep(0)
    with pytest.raises(CorruptionError):
        await b.call(broken)
    assert b.state is CircuitState.OPEN

    release.set()
    assert await pending == "late text"
    assert b.state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await b.call(slow)
