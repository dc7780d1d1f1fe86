"""
Pre-flight checks on uploaded images before any engine work.

Order: declared format -> magic header -> per-format size ceiling ->
estimated decode memory (from header dimensions, no pixel decode).
"""

import io
import logging

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict

from .. import config
from ..errors import (
    ErrorContext,
    FormatError,
    MemoryExceeded,
    SizeExceeded,
    ValidationReason,
)
from ..models import ImageFormat, ImageInfo, ImageSubmission, resolve_format

log = logging.getLogger(__name__)

_MAGIC = {
    ImageFormat.PNG: (b"\x89PNG\r\n\x1a\n",),
    ImageFormat.JPEG: (b"\xff\xd8\xff",),
    ImageFormat.BMP: (b"BM",),
    ImageFormat.TIFF: (b"II*\x00", b"MM\x00*"),
}


def sniff_format(data: bytes) -> ImageFormat | None:
    """Identify the format from magic bytes alone."""
    for fmt, prefixes in _MAGIC.items():
        if any(data.startswith(p) for p in prefixes):
            return fmt
    return None


class FormatLimits(BaseModel):
    """Per-format byte ceilings."""
    model_config = ConfigDict(frozen=True)

    png_max: int = int(config.OCR_MAX_PNG_MB * config.MB)
    jpeg_max: int = int(config.OCR_MAX_JPEG_MB * config.MB)
    bmp_max: int = int(config.OCR_MAX_BMP_MB * config.MB)
    tiff_max: int = int(config.OCR_MAX_TIFF_MB * config.MB)

    def ceiling(self, fmt: ImageFormat) -> int:
        return {
            ImageFormat.PNG: self.png_max,
            ImageFormat.JPEG: self.jpeg_max,
            ImageFormat.BMP: self.bmp_max,
            ImageFormat.TIFF: self.tiff_max,
        }[fmt]


def estimate_memory_mb(width: int, height: int, bands: int) -> float:
    """Decoded raster plus one grayscale working copy, in MB."""
    pixels = width * height
    return (pixels * max(bands, 1) + pixels) / config.MB


class FormatValidator:
    """Pure check; raises a ValidationError subclass or returns ImageInfo."""

    def __init__(
        self,
        limits: FormatLimits | None = None,
        memory_limit_mb: float = config.OCR_MEMORY_LIMIT_MB,
    ):
        self.limits = limits or FormatLimits()
        self.memory_limit_mb = memory_limit_mb

    def validate(self, submission: ImageSubmission) -> ImageInfo:
        data = submission.data
        ctx = ErrorContext(image_format=submission.declared_format, byte_size=len(data))

        if not data:
            raise FormatError("image is empty", ValidationReason.EMPTY, ctx)

        fmt = resolve_format(submission.declared_format)
        if fmt is None:
            raise FormatError(
                f"unsupported image format '{submission.declared_format}'",
                ValidationReason.UNSUPPORTED_FORMAT,
                ctx,
            )

        if not any(data.startswith(p) for p in _MAGIC[fmt]):
            actual = sniff_format(data)
            ctx.detail["detected"] = actual.value if actual else None
            raise FormatError(
                f"header does not match declared format {fmt.value}"
                + (f" (looks like {actual.value})" if actual else ""),
                ValidationReason.FORMAT_MISMATCH,
                ctx,
            )

        ceiling = self.limits.ceiling(fmt)
        if len(data) > ceiling:
            ctx.detail["limit_bytes"] = ceiling
            raise SizeExceeded(
                f"{fmt.value} image too large: {len(data)} bytes (maximum allowed: {ceiling} bytes)",
                ctx,
            )

        width, height, bands = self._read_header(data, fmt, ctx)
        memory_mb = estimate_memory_mb(width, height, bands)
        log.debug(
            "Validated %s %dx%d (%d bands), estimated %.1fMB",
            fmt.value, width, height, bands, memory_mb,
        )
        if memory_mb > self.memory_limit_mb:
            ctx.detail.update(estimated_mb=round(memory_mb, 2), limit_mb=self.memory_limit_mb)
            raise MemoryExceeded(
                f"estimated decode memory {memory_mb:.1f}MB exceeds {self.memory_limit_mb}MB",
                ctx,
            )

        return ImageInfo(
            format=fmt,
            byte_size=len(data),
            width=width,
            height=height,
            bands=bands,
            estimated_memory_mb=memory_mb,
        )

    def _read_header(self, data: bytes, fmt: ImageFormat, ctx: ErrorContext) -> tuple[int, int, int]:
        # Image.open only parses the header; pixels are decoded on load()
        try:
            with Image.open(io.BytesIO(data)) as img:
                width, height = img.size
                bands = len(img.getbands())
        except Image.DecompressionBombError as e:
            raise MemoryExceeded(f"declared dimensions are too large: {e}", ctx) from e
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise FormatError(
                f"corrupt {fmt.value} header: {e}", ValidationReason.CORRUPT_HEADER, ctx,
            ) from e
        if width <= 0 or height <= 0:
            raise FormatError(
                f"invalid dimensions {width}x{height}", ValidationReason.CORRUPT_HEADER, ctx,
            )
        return width, height, bands


def validate(data: bytes, declared_format: str) -> ImageInfo:
    """Validate with the configured defaults."""
    return FormatValidator().validate(ImageSubmission(data=data, declared_format=declared_format))
