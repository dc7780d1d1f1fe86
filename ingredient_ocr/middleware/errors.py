
"""
Error boundary around engine calls: nothing escapes untyped.
"""

import logging
from typing import Any, Awaitable, Callable, TypeVar

from PIL import Image

from ..errors import CorruptionError, ErrorContext, OcrError, ResourceExhaustion

log = logging.getLogger(__name__)

T = TypeVar("T")


def classify(exc: BaseException, context: ErrorContext | None = None) -> OcrError:
    """Map an arbitrary engine-side exception onto the OCR taxonomy."""
    if isinstance(exc, OcrError):
        return exc
    ctx = context or ErrorContext()
    ctx.detail.setdefault("exception", type(exc).__name__)
    if isinstance(exc, (MemoryError, Image.DecompressionBombError)):
        return ResourceExhaustion(f"resources exhausted during OCR: {exc}", ctx)
    return CorruptionError(f"unexpected engine failure: {exc}", ctx)


class ErrorBoundary:
    async def __call__(
        self,
        handler: Callable[..., Awaitable[T]],
        *args: Any,
        context: ErrorContext | None = None,
    ) -> T:
        try:
            return await handler(*args)
        except OcrError:
            raise
        except Exception as e:
            err = classify(e, context)
            log.error(
                "Engine call failed: %s", err,
                exc_info=True,
                extra={"error_code": err.code, "language_key": err.context.language_key},
            )
            raise err from e
