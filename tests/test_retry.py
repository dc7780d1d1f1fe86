"""Retry controller.

Tests cover:
    - Exponential delays: 2nd attempt in [1, 2), 3rd in [2, 4), capped at max
    - Only retryable kinds are retried
    - RetryExhausted wraps the last error
    - Non-OcrError exceptions propagate untouched
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from ingredient_ocr.errors import (
    CircuitOpenError,
    CorruptionError,
    FormatError,
    InitializationError,
    OcrTimeoutError,
    ResourceExhaustion,
    RetryExhausted,
    ValidationReason,
)
from ingredient_ocr.models import RetryPolicy
from ingredient_ocr.services.retry import RetryController

POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0)


def _scripted(*outcomes):
    """Operation that raises/returns the given outcomes in order."""
    calls = []

    async def op(attempt):
        calls.append(attempt)
        outcome = outcomes[len(calls) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    op.calls = calls
    return op


def test_base_delays():
    r = RetryController(POLICY)
    assert r.base_delay_for(1) == 0
    assert r.base_delay_for(2) == 1.0
    assert r.base_delay_for(3) == 2.0
    assert r.base_delay_for(6) == 10.0


@pytest.mark.parametrize("jitter", [0.0, 0.5, 0.999])
def test_jittered_delays_stay_in_window(jitter):
    r = RetryController(POLICY, rng=lambda: jitter)
    assert 1.0 <= r.delay_for(2) < 2.0
    assert 2.0 <= r.delay_for(3) < 4.0


def test_no_jitter_when_factor_zero():
    policy = RetryPolicy(base_delay=1.0, max_delay=10.0, jitter_factor=0)
    r = RetryController(policy, rng=lambda: 0.9)
    assert r.delay_for(3) == 2.0


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures(sleeps):
    op = _scripted(OcrTimeoutError("slow"), CorruptionError("crash"), "text")
    r = RetryController(POLICY, sleep=sleeps, rng=lambda: 0)

    assert await r.run(op) == "text"
    assert op.calls == [1, 2, 3]
    assert sleeps.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhaustion_wraps_last_error(sleeps):
    last = OcrTimeoutError("third")
    op = _scripted(OcrTimeoutError("first"), OcrTimeoutError("second"), last)
    r = RetryController(POLICY, sleep=sleeps, rng=lambda: 0)

    with pytest.raises(RetryExhausted) as exc:
        await r.run(op)
    assert exc.value.last_error is last
    assert exc.value.__cause__ is last
    assert exc.value.attempts == 3
    assert exc.value.context.attempt == 3
    assert exc.value.to_dict()["last_error"]["code"] == "OCR_TIMEOUT"


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    FormatError("bad", ValidationReason.CORRUPT_HEADER),
    ResourceExhaustion("oom"),
    CircuitOpenError(),
    InitializationError("no tesseract", transient=False),
])
async def test_permanent_errors_not_retried(error, sleeps):
    op = _scripted(error, "text")
    r = RetryController(POLICY, sleep=sleeps)

    with pytest.raises(type(error)):
        await r.run(op)
    assert op.calls == [1]
    assert sleeps.delays == []


@pytest.mark.asyncio
async def test_transient_initialization_retried(sleeps):
    op = _scripted(InitializationError("busy"), "text")
    r = RetryController(POLICY, sleep=sleeps)
    assert await r.run(op) == "text"


@pytest.mark.asyncio
async def test_other_exceptions_propagate(sleeps):
    op = _scripted(KeyError("x"), "text")
    r = RetryController(POLICY, sleep=sleeps)
    with pytest.raises(KeyError):
        await r.run(op)
    assert op.calls == [1]


@pytest.mark.asyncio
async def test_on_retry_callback(sleeps):
    seen = []
    op = _scripted(CorruptionError("a"), "text")
    r = RetryController(POLICY, sleep=sleeps)
    await r.run(op, on_retry=lambda e, n: seen.append((e.code, n)))
    assert seen == [("OCR_CORRUPT", 1)]


def test_policy_bounds():
    with pytest.raises(PydanticValidationError):
        RetryPolicy(base_delay=5, max_delay=1)
    with pytest.raises(PydanticValidationError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(PydanticValidationError):
        RetryPolicy(jitter_factor=1.5)
