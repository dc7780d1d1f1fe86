"""OCR invoker.

Tests cover:
    - Happy path returns RawOcrResult and leaves the lease free
    - Validation failures never reach the engine or the breaker
    - Transient failures are retried, corrupted engines recreated
    - One breaker outcome per invoke(), fast-fail once open
    - Hard timeout invalidates the engine
    - Unexpected engine exceptions are classified
    - Cancellation releases the probe slot
"""

import asyncio

import pytest

from conftest import FakeFactory, make_image
from ingredient_ocr.errors import (
    CircuitOpenError,
    CorruptionError,
    FormatError,
    OcrErrorKind,
    OcrTimeoutError,
    ResourceExhaustion,
    RetryExhausted,
)
from ingredient_ocr.models import ImageFormat, RetryPolicy
from ingredient_ocr.services.circuit_breaker import CircuitBreaker, CircuitState
from ingredient_ocr.services.invoker import OcrInvoker
from ingredient_ocr.services.pool import InstancePool
from ingredient_ocr.services.retry import RetryController

PNG = make_image("png")


def _invoker(factory, sleeps, clock=None, attempts=3, threshold=5, timeout=5.0):
    breaker_kwargs = {"clock": clock} if clock is not None else {}
    return OcrInvoker(
        pool=InstancePool(factory),
        breaker=CircuitBreaker(threshold=threshold, reset_timeout=60, **breaker_kwargs),
        retry=RetryController(RetryPolicy(max_attempts=attempts), sleep=sleeps, rng=lambda: 0),
        timeout=timeout,
    )


@pytest.mark.asyncio
async def test_invoke_returns_text(sleeps):
    factory = FakeFactory(["2 cups flour"])
    inv = _invoker(factory, sleeps)

    result = await inv.invoke(PNG, "png", "eng+fra")

    assert result.text == "2 cups flour"
    assert result.language_key == "eng+fra"
    assert result.image_format is ImageFormat.PNG
    assert result.byte_size == len(PNG)
    assert result.attempts == 1
    assert not inv.pool.is_leased("eng+fra")
    assert inv.breaker.snapshot().consecutive_failures == 0


@pytest.mark.asyncio
async def test_validation_failure_skips_engine(sleeps):
    factory = FakeFactory()
    inv = _invoker(factory, sleeps)

    with pytest.raises(FormatError):
        await inv.invoke(b"not an image", "png")

    assert factory.created == 0
    assert inv.breaker.snapshot().consecutive_failures == 0


@pytest.mark.asyncio
async def test_corruption_recreates_engine_and_retries(sleeps):
    factory = FakeFactory([CorruptionError, "recovered"])
    inv = _invoker(factory, sleeps)

    result = await inv.invoke(PNG, "png", "eng")

    assert result.text == "recovered"
    assert result.attempts == 2
    assert factory.created == 2
    assert sleeps.delays == [1.0]


@pytest.mark.asyncio
async def test_exhausted_retries_count_once(sleeps):
    factory = FakeFactory([OcrTimeoutError] * 3)
    inv = _invoker(factory, sleeps)

    with pytest.raises(RetryExhausted) as exc:
        await inv.invoke(PNG, "png", "eng")

    assert exc.value.kind is OcrErrorKind.RETRY_EXHAUSTED
    assert isinstance(exc.value.last_error, OcrTimeoutError)
    assert exc.value.context.language_key == "eng"
    assert inv.breaker.snapshot().consecutive_failures == 1
    assert not inv.pool.is_leased("eng")


@pytest.mark.asyncio
async def test_resource_exhaustion_not_retried(sleeps):
    factory = FakeFactory([ResourceExhaustion, "never"])
    inv = _invoker(factory, sleeps)

    with pytest.raises(ResourceExhaustion):
        await inv.invoke(PNG, "png", "eng")
    assert factory.engines[0].calls == 1
    assert inv.breaker.snapshot().consecutive_failures == 1


@pytest.mark.asyncio
async def test_open_circuit_fails_fast(sleeps, clock):
    factory = FakeFactory([ResourceExhaustion] * 2)
    inv = _invoker(factory, sleeps, clock=clock, threshold=2)

    for _ in range(2):
        with pytest.raises(ResourceExhaustion):
            await inv.invoke(PNG, "png", "eng")
    assert inv.breaker.state is CircuitState.OPEN

    calls_before = factory.engines[0].calls
    with pytest.raises(CircuitOpenError) as exc:
        await inv.invoke(PNG, "png", "eng")
    assert factory.engines[0].calls == calls_before
    assert exc.value.context.language_key == "eng"
    # a rejected call is not a new failure
    assert inv.breaker.snapshot().consecutive_failures == 2


@pytest.mark.asyncio
async def test_probe_after_reset_closes_circuit(sleeps, clock):
    factory = FakeFactory([ResourceExhaustion, "back"])
    inv = _invoker(factory, sleeps, clock=clock, threshold=1)

    with pytest.raises(ResourceExhaustion):
        await inv.invoke(PNG, "png", "eng")
    clock.advance(60)

    result = await inv.invoke(PNG, "png", "eng")
    assert result.text == "back"
    assert inv.breaker.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_timeout_invalidates_engine(sleeps):
    factory = FakeFactory(["late"], delay=0.3)
    inv = _invoker(factory, sleeps, attempts=1, timeout=0.05)

    with pytest.raises(RetryExhausted) as exc:
        await inv.invoke(PNG, "png", "eng")

    assert isinstance(exc.value.last_error, OcrTimeoutError)
    assert not inv.pool.is_leased("eng")
    # the next checkout builds a fresh engine
    factory.delay = 0
    factory.script.append("fresh")
    async with inv.pool.lease("eng"):
        pass
    assert factory.created == 2


@pytest.mark.asyncio
async def test_unexpected_engine_error_is_classified(sleeps):
    factory = FakeFactory([ValueError, "fine"])
    inv = _invoker(factory, sleeps)

    result = await inv.invoke(PNG, "png", "eng")
    assert result.text == "fine"
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_cancelled_probe_is_abandoned(sleeps, clock):
    factory = FakeFactory([ResourceExhaustion, "slow"], delay=0.0)
    inv = _invoker(factory, sleeps, clock=clock, threshold=1)

    with pytest.raises(ResourceExhaustion):
        await inv.invoke(PNG, "png", "eng")
    clock.advance(60)
    factory.engines[0].delay = 0.3

    task = asyncio.create_task(inv.invoke(PNG, "png", "eng"))
    await asyncio.sleep(0.05)
    assert inv.breaker.snapshot().probe_in_flight
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    snap = inv.breaker.snapshot()
    assert snap.state is CircuitState.HALF_OPEN
    assert not snap.probe_in_flight
    assert not inv.pool.is_leased("eng")
