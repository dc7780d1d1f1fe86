"""
Error taxonomy for the OCR subsystem.

Every failure surfaces as an `OcrError` carrying a `kind` and an
`ErrorContext`; callers decide the user-facing wording. `retryable` tells
the retry controller whether another attempt may help.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class OcrErrorKind(str, Enum):
    VALIDATION = "validation"
    INITIALIZATION = "initialization"
    TIMEOUT = "timeout"
    CORRUPTION = "corruption"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    CIRCUIT_OPEN = "circuit_open"
    RETRY_EXHAUSTED = "retry_exhausted"


class ValidationReason(str, Enum):
    EMPTY = "empty"
    UNSUPPORTED_FORMAT = "unsupported_format"
    FORMAT_MISMATCH = "format_mismatch"
    CORRUPT_HEADER = "corrupt_header"
    SIZE_EXCEEDED = "size_exceeded"
    MEMORY_EXCEEDED = "memory_exceeded"


@dataclass
class ErrorContext:
    """Where and when a failure happened."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    language_key: str | None = None
    image_format: str | None = None
    byte_size: int | None = None
    attempt: int | None = None
    detail: dict[str, Any] = field(default_factory=dict)


class ConfigError(Exception):
    """Invalid configuration or parser table."""


class OcrError(Exception):
    """Base for all OCR-subsystem failures."""

    kind: OcrErrorKind = OcrErrorKind.CORRUPTION
    code: str = "OCR_ERROR"
    retryable: bool = False

    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict:
        ctx = asdict(self.context)
        ctx["timestamp"] = self.context.timestamp.isoformat()
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": ctx,
        }


# ─── Permanent ──────────────────────────────────────────────────

class ValidationError(OcrError):
    """Bad format, size or header. Never retried."""
    kind = OcrErrorKind.VALIDATION
    code = "VALIDATION"

    def __init__(
        self,
        message: str,
        reason: ValidationReason,
        context: ErrorContext | None = None,
    ):
        super().__init__(message, context)
        self.reason = reason
        self.context.detail.setdefault("reason", reason.value)


class FormatError(ValidationError):
    code = "FORMAT_ERROR"


class SizeExceeded(ValidationError):
    code = "SIZE_EXCEEDED"

    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(message, ValidationReason.SIZE_EXCEEDED, context)


class MemoryExceeded(ValidationError):
    code = "MEMORY_EXCEEDED"

    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(message, ValidationReason.MEMORY_EXCEEDED, context)


class ResourceExhaustion(OcrError):
    """Out of memory or similar. Not retried, counted by the breaker."""
    kind = OcrErrorKind.RESOURCE_EXHAUSTION
    code = "OCR_RESOURCE"


class CircuitOpenError(OcrError):
    """Breaker refused the call. Not counted as a new failure."""
    kind = OcrErrorKind.CIRCUIT_OPEN
    code = "CIRCUIT_OPEN"

    def __init__(
        self,
        message: str = "OCR service is temporarily unavailable due to repeated failures",
        retry_after: float | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(message, context)
        self.retry_after = retry_after
        if retry_after is not None:
            self.context.detail.setdefault("retry_after_sec", round(retry_after, 3))


# ─── Transient ──────────────────────────────────────────────────

class InitializationError(OcrError):
    """Engine could not be started. Retried only when transient."""
    kind = OcrErrorKind.INITIALIZATION
    code = "OCR_INIT"

    def __init__(
        self,
        message: str,
        transient: bool = True,
        context: ErrorContext | None = None,
    ):
        super().__init__(message, context)
        self.transient = transient

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.transient


class OcrTimeoutError(OcrError):
    kind = OcrErrorKind.TIMEOUT
    code = "OCR_TIMEOUT"
    retryable = True


class CorruptionError(OcrError):
    """Engine failed mid-call; its pooled instance must be recreated."""
    kind = OcrErrorKind.CORRUPTION
    code = "OCR_CORRUPT"
    retryable = True


class RetryExhausted(OcrError):
    """All attempts failed; wraps the last error."""
    kind = OcrErrorKind.RETRY_EXHAUSTED
    code = "RETRY_EXHAUSTED"

    def __init__(self, last_error: OcrError, attempts: int):
        ctx = last_error.context
        ctx.attempt = attempts
        super().__init__(
            f"gave up after {attempts} attempts: {last_error.message}", ctx,
        )
        self.last_error = last_error
        self.attempts = attempts

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["last_error"] = {
            "kind": self.last_error.kind.value,
            "code": self.last_error.code,
            "message": self.last_error.message,
        }
        return out
