"""
OCR invocation: validate -> breaker -> retry(pool lease -> timed engine call).

The breaker sees one outcome per invoke(), however many attempts the retry
controller made. Leases are released on every path; a handle whose call
timed out or corrupted is invalidated so the next checkout gets a fresh one.
"""

import asyncio
import logging
import time

from .. import config
from ..errors import (
    CorruptionError,
    ErrorContext,
    OcrError,
    OcrTimeoutError,
    ValidationError,
)
from ..middleware.errors import ErrorBoundary
from ..models import ImageInfo, ImageSubmission, OcrInstanceKey, RawOcrResult
from .circuit_breaker import CircuitBreaker
from .pool import InstancePool
from .retry import RetryController
from .validation import FormatValidator

log = logging.getLogger(__name__)


class OcrInvoker:
    def __init__(
        self,
        pool: InstancePool | None = None,
        breaker: CircuitBreaker | None = None,
        retry: RetryController | None = None,
        validator: FormatValidator | None = None,
        timeout: float = config.OCR_TIMEOUT_SEC,
    ):
        self.pool = pool or InstancePool()
        self.breaker = breaker or CircuitBreaker()
        self.retry = retry or RetryController()
        self.validator = validator or FormatValidator()
        self.timeout = timeout
        self._boundary = ErrorBoundary()

    async def invoke(
        self,
        image: bytes,
        image_format: str,
        language_key: "str | OcrInstanceKey" = config.OCR_LANGUAGES,
    ) -> RawOcrResult:
        """Extract text from one image. Raises OcrError on failure."""
        started = time.monotonic()
        key = OcrInstanceKey.of(language_key)
        submission = ImageSubmission(data=image, declared_format=image_format)

        info = self.validator.validate(submission)
        try:
            permit = self.breaker.before_call()
        except OcrError as e:
            e.context.language_key = str(key)
            log.warning("Circuit open, rejecting OCR request", extra={"language_key": str(key)})
            raise

        attempts = 0

        async def attempt(n: int) -> str:
            nonlocal attempts
            attempts = n
            return await self._attempt(submission, info, key, n)

        try:
            text = await self.retry.run(attempt)
        except ValidationError:
            # Undecodable image: the engine was never exercised
            self.breaker.abandon(permit)
            raise
        except OcrError:
            self.breaker.record_failure(permit)
            raise
        except BaseException:
            self.breaker.abandon(permit)
            raise
        self.breaker.record_success(permit)

        duration_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "OCR completed on attempt %d in %dms, extracted %d characters",
            attempts, duration_ms, len(text),
            extra={"language_key": str(key), "attempt": attempts},
        )
        return RawOcrResult(
            text=text,
            language_key=str(key),
            image_format=info.format,
            byte_size=info.byte_size,
            attempts=attempts,
            duration_ms=duration_ms,
        )

    async def _attempt(
        self,
        submission: ImageSubmission,
        info: ImageInfo,
        key: OcrInstanceKey,
        n: int,
    ) -> str:
        ctx = ErrorContext(
            language_key=str(key),
            image_format=info.format.value,
            byte_size=info.byte_size,
            attempt=n,
        )
        async with self.pool.lease(key) as lease:
            loop = asyncio.get_running_loop()

            async def recognize() -> str:
                return await loop.run_in_executor(
                    None, lease.engine.recognize, submission.data, self.timeout,
                )

            try:
                return await asyncio.wait_for(
                    self._boundary(recognize, context=ctx), self.timeout,
                )
            except asyncio.TimeoutError as e:
                # The worker thread may still be running: never hand it out again
                self.pool.invalidate(lease)
                raise OcrTimeoutError(
                    f"OCR operation timed out after {self.timeout} seconds", ctx,
                ) from e
            except OcrError as e:
                _fill_context(e.context, ctx)
                if isinstance(e, (CorruptionError, OcrTimeoutError)):
                    self.pool.invalidate(lease)
                raise


def _fill_context(target: ErrorContext, source: ErrorContext) -> None:
    """Copy call metadata into an engine error's context where it is missing."""
    if target.language_key is None:
        target.language_key = source.language_key
    if target.image_format is None:
        target.image_format = source.image_format
    if target.byte_size is None:
        target.byte_size = source.byte_size


_default: OcrInvoker | None = None


def default_invoker() -> OcrInvoker:
    global _default
    if _default is None:
        _default = OcrInvoker()
    return _default


async def invoke(
    image: bytes,
    image_format: str,
    language_key: "str | OcrInstanceKey" = config.OCR_LANGUAGES,
) -> RawOcrResult:
    return await default_invoker().invoke(image, image_format, language_key)
