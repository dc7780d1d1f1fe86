"""
Tesseract engine handle (pytesseract + Pillow).

Startup verifies the binary and the requested language packs, which is the
expensive part the instance pool amortizes. `recognize` is blocking and is
run in a worker thread by the invoker.
"""

import io
import logging
from typing import Callable, Protocol

import pytesseract
from PIL import Image, ImageEnhance, ImageOps, UnidentifiedImageError

from .. import config
from ..errors import (
    CorruptionError,
    ErrorContext,
    FormatError,
    InitializationError,
    OcrTimeoutError,
    ResourceExhaustion,
    ValidationReason,
)
from ..models import OcrInstanceKey

log = logging.getLogger(__name__)

# Allow explicit tesseract path (Windows)
if config.TESSERACT_CMD:
    pytesseract.pytesseract.tesseract_cmd = config.TESSERACT_CMD


class OcrEngine(Protocol):
    """What the pool hands out. Implementations need not be thread-safe."""

    name: str

    def recognize(self, image_bytes: bytes, timeout: float) -> str:
        ...


EngineFactory = Callable[[OcrInstanceKey], OcrEngine]


# Small shots are upscaled until the long side reaches this, at most 3x
_MIN_LONG_SIDE = 1600
_MAX_UPSCALE = 3.0


def _preprocess(img: Image.Image) -> Image.Image:
    """
    Grayscale pass for photographed recipe cards and cookbook pages: undo the
    phone's EXIF rotation, stretch levels (clipping 2% glare and shadow),
    sharpen, and upscale small shots with Lanczos.
    """
    gray = ImageOps.grayscale(ImageOps.exif_transpose(img))
    gray = ImageOps.autocontrast(gray, cutoff=2)
    gray = ImageEnhance.Sharpness(gray).enhance(1.5)
    w, h = gray.size
    long_side = max(w, h)
    if long_side < _MIN_LONG_SIDE:
        scale = min(_MAX_UPSCALE, _MIN_LONG_SIDE / long_side)
        gray = gray.resize((round(w * scale), round(h * scale)), Image.Resampling.LANCZOS)
    return gray


def clean_text(text: str) -> str:
    """Trim every line and drop the empty ones."""
    return "\n".join(line.strip() for line in text.strip().splitlines() if line.strip())


class TesseractEngine:
    name = "tesseract"

    def __init__(self, key: OcrInstanceKey, psm: int = config.OCR_PSM):
        self.key = key
        self.psm = psm
        self.version: str | None = None
        self._started = False

    def start(self) -> "TesseractEngine":
        """Check the binary and language packs. Raises InitializationError."""
        ctx = ErrorContext(language_key=str(self.key))
        try:
            self.version = str(pytesseract.get_tesseract_version())
            available = set(pytesseract.get_languages(config=""))
        except pytesseract.TesseractNotFoundError as e:
            raise InitializationError(
                "tesseract binary not found on PATH", transient=False, context=ctx,
            ) from e
        except (OSError, RuntimeError) as e:
            raise InitializationError(f"tesseract failed to start: {e}", context=ctx) from e

        missing = [lang for lang in self.key.languages.split("+") if lang not in available]
        if missing:
            ctx.detail["missing"] = missing
            raise InitializationError(
                f"language data not installed: {', '.join(missing)}",
                transient=False,
                context=ctx,
            )
        self._started = True
        log.info("Started tesseract %s for %s (psm %d)", self.version, self.key, self.psm)
        return self

    def recognize(self, image_bytes: bytes, timeout: float) -> str:
        ctx = ErrorContext(language_key=str(self.key), byte_size=len(image_bytes))
        if not self._started:
            raise InitializationError("engine used before start()", context=ctx)

        try:
            with Image.open(io.BytesIO(image_bytes)) as raw:
                img = _preprocess(raw)
        except MemoryError as e:
            raise ResourceExhaustion("out of memory while decoding image", ctx) from e
        except Image.DecompressionBombError as e:
            raise ResourceExhaustion(f"image too large to decode: {e}", ctx) from e
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise FormatError(
                f"image could not be decoded: {e}", ValidationReason.CORRUPT_HEADER, ctx,
            ) from e

        try:
            text = pytesseract.image_to_string(
                img,
                lang=self.key.languages,
                config=f"--psm {self.psm}",
                timeout=timeout,
            )
        except MemoryError as e:
            raise ResourceExhaustion("out of memory during recognition", ctx) from e
        except pytesseract.TesseractNotFoundError as e:
            raise InitializationError(
                "tesseract binary disappeared", transient=False, context=ctx,
            ) from e
        except pytesseract.TesseractError as e:
            ctx.detail["status"] = e.status
            raise CorruptionError(f"tesseract failed mid-call: {e.message}", ctx) from e
        except RuntimeError as e:
            # pytesseract kills the process and raises RuntimeError on timeout
            if "timeout" in str(e).lower():
                raise OcrTimeoutError(f"tesseract timed out after {timeout}s", ctx) from e
            raise CorruptionError(f"tesseract failed: {e}", ctx) from e
        return clean_text(text)


def tesseract_factory(key: OcrInstanceKey) -> OcrEngine:
    return TesseractEngine(key).start()
