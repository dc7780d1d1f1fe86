
"""
Typed models used across services.
"""

from enum import Enum
from fractions import Fraction
from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


class ImageFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    BMP = "bmp"
    TIFF = "tiff"


_FORMAT_ALIASES = {
    "png": ImageFormat.PNG,
    "image/png": ImageFormat.PNG,
    "jpeg": ImageFormat.JPEG,
    "jpg": ImageFormat.JPEG,
    "image/jpeg": ImageFormat.JPEG,
    "image/jpg": ImageFormat.JPEG,
    "bmp": ImageFormat.BMP,
    "image/bmp": ImageFormat.BMP,
    "tiff": ImageFormat.TIFF,
    "tif": ImageFormat.TIFF,
    "image/tiff": ImageFormat.TIFF,
}


def resolve_format(declared: str) -> ImageFormat | None:
    """Map a declared format ("JPG", "image/png", ".tif") to ImageFormat."""
    return _FORMAT_ALIASES.get((declared or "").strip().lower().lstrip("."))


class ImageSubmission(BaseModel):
    """
    One uploaded image, as received. Discarded after processing.
    """
    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    declared_format: str

    @computed_field
    @property
    def byte_size(self) -> int:
        return len(self.data)


class ImageInfo(BaseModel):
    """What the validator learned from the header."""
    model_config = ConfigDict(frozen=True)

    format: ImageFormat
    byte_size: int
    width: int
    height: int
    bands: int
    estimated_memory_mb: float


class OcrInstanceKey(BaseModel):
    """
    Language-set identifier for pooled engines, e.g. "eng+fra".
    """
    model_config = ConfigDict(frozen=True)

    languages: str

    @field_validator("languages")
    @classmethod
    def _normalize(cls, v: str) -> str:
        v = "+".join(p.strip().lower() for p in v.split("+") if p.strip())
        if not v:
            raise ValueError("language key cannot be empty")
        return v

    @classmethod
    def of(cls, key: "str | OcrInstanceKey") -> "OcrInstanceKey":
        return key if isinstance(key, OcrInstanceKey) else cls(languages=key)

    def __str__(self) -> str:
        return self.languages


class RetryPolicy(BaseModel):
    """Immutable retry configuration. Delays are in seconds."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=10.0, gt=0)
    jitter_factor: float = Field(default=1.0, ge=0, le=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> "RetryPolicy":
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self


class RawOcrResult(BaseModel):
    """
    Text extracted by the engine plus where it came from.
    """
    text: str
    language_key: str
    image_format: ImageFormat
    byte_size: int
    attempts: int = 1
    duration_ms: int = 0
    engine: str = "tesseract"


class MeasurementToken(BaseModel):
    """
    One parsed ingredient line: quantity (exact), canonical unit, name.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    quantity: Fraction | None = None
    unit: str | None = None
    name: str
    raw: str
    line_index: int = Field(ge=0)

    @field_validator("quantity")
    @classmethod
    def _non_negative(cls, v: Fraction | None) -> Fraction | None:
        if v is not None and v < 0:
            raise ValueError("quantity cannot be negative")
        return v

    def as_tuple(self) -> tuple[Fraction | None, str | None, str]:
        return (self.quantity, self.unit, self.name)


class ParsedIngredientList(BaseModel):
    """Ordered tokens parsed from one submission."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    tokens: tuple[MeasurementToken, ...] = ()

    def __iter__(self) -> Iterator[MeasurementToken]:  # type: ignore[override]
        return iter(self.tokens)

    def __len__(self) -> int:
        return len(self.tokens)

    def __getitem__(self, i: int) -> MeasurementToken:
        return self.tokens[i]

    def names(self) -> list[str]:
        return [t.name for t in self.tokens]

    def units(self) -> set[str]:
        """Canonical units used anywhere in the list."""
        return {t.unit for t in self.tokens if t.unit}
