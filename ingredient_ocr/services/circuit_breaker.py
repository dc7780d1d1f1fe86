"""
Circuit breaker around OCR engine calls.

    CLOSED --threshold consecutive failures--> OPEN
    OPEN --reset timeout elapsed--> HALF_OPEN (admits exactly one probe)
    HALF_OPEN --probe succeeds--> CLOSED
    HALF_OPEN --probe fails--> OPEN (timer restarts)

Every check-and-transition runs under one lock, so concurrent callers cannot
both take the probe slot. The breaker never retries; it only answers PASS
(returns a CallPermit) or BLOCKED (raises CircuitOpenError).

Outcomes are recorded against the permit. A call admitted before the last
transition is late: its outcome is ignored, so only the probe can move the
circuit out of HALF_OPEN.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from .. import config
from ..errors import CircuitOpenError, OcrError

log = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitSnapshot:
    state: CircuitState
    consecutive_failures: int
    last_transition: float
    probe_in_flight: bool


@dataclass(frozen=True, eq=False)
class CallPermit:
    """Returned by before_call(). Compared by identity."""
    epoch: int
    probe: bool = False


class CircuitBreaker:
    def __init__(
        self,
        threshold: int = config.CIRCUIT_BREAKER_THRESHOLD,
        reset_timeout: float = config.CIRCUIT_BREAKER_RESET_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        if reset_timeout <= 0:
            raise ValueError("reset_timeout must be positive")
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._since = clock()
        self._epoch = 0
        self._probe: CallPermit | None = None

    @property
    def state(self) -> CircuitState:
        return self.snapshot().state

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            self._maybe_half_open()
            return CircuitSnapshot(
                state=self._state,
                consecutive_failures=self._failures,
                last_transition=self._since,
                probe_in_flight=self._probe is not None,
            )

    def _transition(self, new: CircuitState) -> None:
        if new is not self._state:
            log.warning(
                "Circuit %s -> %s (failures=%d)",
                self._state.value, new.value, self._failures,
                extra={"circuit_state": new.value},
            )
        self._state = new
        self._since = self._clock()
        self._epoch += 1
        self._probe = None

    def _maybe_half_open(self) -> None:
        if self._state is CircuitState.OPEN and self._clock() - self._since >= self.reset_timeout:
            self._transition(CircuitState.HALF_OPEN)

    def _is_late(self, permit: CallPermit) -> bool:
        if permit.probe:
            return permit is not self._probe
        return permit.epoch != self._epoch

    def before_call(self) -> CallPermit:
        """PASS by returning a permit; BLOCKED by raising CircuitOpenError."""
        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.CLOSED:
                return CallPermit(self._epoch)
            if self._state is CircuitState.HALF_OPEN and self._probe is None:
                self._probe = CallPermit(self._epoch, probe=True)
                log.info("Circuit half-open: admitting probe call")
                return self._probe
            retry_after = None
            if self._state is CircuitState.OPEN:
                retry_after = max(0.0, self.reset_timeout - (self._clock() - self._since))
        raise CircuitOpenError(retry_after=retry_after)

    def record_success(self, permit: CallPermit) -> None:
        with self._lock:
            if self._is_late(permit):
                log.debug("Ignoring late success from epoch %d", permit.epoch)
                return
            self._failures = 0
            if permit.probe:
                self._transition(CircuitState.CLOSED)

    def record_failure(self, permit: CallPermit) -> None:
        with self._lock:
            if self._is_late(permit):
                log.debug("Ignoring late failure from epoch %d", permit.epoch)
                return
            self._failures += 1
            if permit.probe or self._failures >= self.threshold:
                self._transition(CircuitState.OPEN)

    def abandon(self, permit: CallPermit) -> None:
        """Give back an admitted probe slot without recording an outcome."""
        with self._lock:
            if permit.probe and permit is self._probe:
                self._probe = None

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Guard a single attempt and record its outcome."""
        permit = self.before_call()
        try:
            result = await operation()
        except OcrError:
            self.record_failure(permit)
            raise
        except BaseException:
            self.abandon(permit)
            raise
        self.record_success(permit)
        return result
