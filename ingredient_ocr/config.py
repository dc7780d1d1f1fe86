"""
Central config: loads .env and exposes settings.

Values are read once at import time. The parser tables (unit synonyms,
countable nouns, known ingredient words) are loaded once into an immutable
`ParserTables` by `load_tables()`.
"""

import json
import os
import unicodedata
from dataclasses import dataclass
from functools import cached_property, lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()


def _get_int(name: str, default: int | None = None) -> int | None:
    v = os.getenv(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name, "")
    if v == "" or v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


# ───────────────────────────── Tesseract ───────────────────────────── #

# Language set used when the caller does not pass one (Tesseract "+" syntax)
OCR_LANGUAGES = os.getenv("OCR_LANGUAGES", "eng+fra").strip() or "eng+fra"

# Tesseract path (Windows users set this if tesseract.exe is not in PATH)
TESSERACT_CMD = os.getenv("TESSERACT_CMD", "").strip()

# Page segmentation mode; 6 = single uniform block of text
OCR_PSM = _get_int("OCR_PSM", 6) or 6

# Hard wall-clock limit for one engine call
OCR_TIMEOUT_SEC = _get_float("OCR_TIMEOUT_SEC", 30.0)


# ───────────────────────────── Validation ───────────────────────────── #

MB = 1024 * 1024

OCR_MAX_PNG_MB = _get_float("OCR_MAX_PNG_MB", 15.0)
OCR_MAX_JPEG_MB = _get_float("OCR_MAX_JPEG_MB", 10.0)
OCR_MAX_BMP_MB = _get_float("OCR_MAX_BMP_MB", 5.0)
OCR_MAX_TIFF_MB = _get_float("OCR_MAX_TIFF_MB", 20.0)

# Peak decode memory allowed per image (conservative for 512MB VMs)
OCR_MEMORY_LIMIT_MB = _get_float("OCR_MEMORY_LIMIT_MB", 80.0)


# ───────────────────────────── Resilience ───────────────────────────── #

CIRCUIT_BREAKER_THRESHOLD = _get_int("CIRCUIT_BREAKER_THRESHOLD", 5) or 5
CIRCUIT_BREAKER_RESET_SEC = _get_float("CIRCUIT_BREAKER_RESET_SEC", 60.0)

RETRY_MAX_ATTEMPTS = _get_int("RETRY_MAX_ATTEMPTS", 3) or 3
RETRY_BASE_DELAY_SEC = _get_float("RETRY_BASE_DELAY_SEC", 1.0)
RETRY_MAX_DELAY_SEC = _get_float("RETRY_MAX_DELAY_SEC", 10.0)
RETRY_JITTER = _get_float("RETRY_JITTER", 1.0)


# ───────────────────────────── Parsing ───────────────────────────── #

# Lines without a leading quantity become name-only tokens when enabled;
# otherwise they are dropped.
PARSER_NAME_ONLY_FALLBACK = _get_bool("PARSER_NAME_ONLY_FALLBACK", True)

# "quantity + name" lines are accepted even when the name is not a known
# countable noun.
PARSER_UNITLESS_DEFAULT = _get_bool("PARSER_UNITLESS_DEFAULT", True)

# A quantity line whose name has no closing punctuation may continue on the
# following lines ("1 cup old-fashioned rolled" / "oats"). Off by default.
PARSER_JOIN_WRAPPED_LINES = _get_bool("PARSER_JOIN_WRAPPED_LINES", False)
PARSER_MAX_JOINED_LINES = _get_int("PARSER_MAX_JOINED_LINES", 10) or 10

# Packaged defaults live in ingredient_ocr/data/; these override them
UNITS_TABLE_PATH = os.getenv("UNITS_TABLE_PATH", "").strip()
NOUNS_TABLE_PATH = os.getenv("NOUNS_TABLE_PATH", "").strip()


# ───────────────────────────── Logging ───────────────────────────── #

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
LOG_FORMAT = os.getenv("LOG_FORMAT", "text").strip().lower() or "text"


# ───────────────────────────── Tables ───────────────────────────── #

def fold(text: str) -> str:
    """Casefold and strip diacritics: "Cuillère" -> "cuillere"."""
    decomposed = unicodedata.normalize("NFKD", text.replace("’", "'"))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold().replace("œ", "oe").replace("æ", "ae")


@dataclass(frozen=True)
class ParserTables:
    """
    Immutable lookup built once at startup.

    unit_synonyms maps a folded synonym ("c. a soupe") to its canonical unit
    ("tbsp"); units lists the closed canonical vocabulary.
    """
    units: frozenset[str]
    unit_synonyms: Mapping[str, str]
    countable_nouns: frozenset[str]
    ingredient_words: frozenset[str]

    @cached_property
    def synonyms_longest_first(self) -> tuple[str, ...]:
        return tuple(sorted(self.unit_synonyms, key=lambda s: (-len(s), s)))


_DATA_DIR = Path(__file__).resolve().parent / "data"


def _read_json(path: str, packaged: str) -> dict:
    try:
        if path:
            raw = Path(path).read_text(encoding="utf-8")
        else:
            raw = (_DATA_DIR / packaged).read_text(encoding="utf-8")
        return json.loads(raw)
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot load table {path or packaged}: {e}") from e


def _check_word(word: object, where: str) -> str:
    if not isinstance(word, str) or not word.strip():
        raise ConfigError(f"{where}: entries must be non-empty strings")
    if any(unicodedata.category(ch) == "Cc" for ch in word):
        raise ConfigError(f"{where}: '{word!r}' contains control characters")
    return word


def build_tables(units_doc: dict, nouns_doc: dict) -> ParserTables:
    """Validate raw table documents and freeze them into ParserTables."""
    languages = units_doc.get("units")
    if not isinstance(languages, dict) or not languages:
        raise ConfigError("units table must map language -> canonical -> synonyms")

    synonyms: dict[str, str] = {}
    canonical: set[str] = set()
    for lang, table in languages.items():
        if not isinstance(table, dict) or not table:
            raise ConfigError(f"units.{lang} cannot be empty")
        for unit, words in table.items():
            _check_word(unit, f"units.{lang}")
            if not isinstance(words, list) or not words:
                raise ConfigError(f"units.{lang}.{unit} cannot be empty")
            canonical.add(unit)
            for i, word in enumerate(words):
                key = fold(_check_word(word, f"units.{lang}.{unit}[{i}]")).strip()
                owner = synonyms.get(key)
                if owner is not None and owner != unit:
                    raise ConfigError(
                        f"unit synonym '{word}' maps to both '{owner}' and '{unit}'"
                    )
                synonyms[key] = unit
            # The canonical name is always a synonym of itself
            synonyms.setdefault(fold(unit), unit)

    def _words(section: str) -> frozenset[str]:
        out: set[str] = set()
        for lang, words in (nouns_doc.get(section) or {}).items():
            if not isinstance(words, list):
                raise ConfigError(f"{section}.{lang} must be a list")
            for i, word in enumerate(words):
                out.add(fold(_check_word(word, f"{section}.{lang}[{i}]")).strip())
        return frozenset(out)

    countable = _words("countable")
    if not countable:
        raise ConfigError("countable noun dictionary cannot be empty")

    return ParserTables(
        units=frozenset(canonical),
        unit_synonyms=MappingProxyType(synonyms),
        countable_nouns=countable,
        ingredient_words=_words("ingredients") | countable,
    )


@lru_cache(maxsize=1)
def load_tables() -> ParserTables:
    """Load unit/noun tables once per process (no hot reload)."""
    return build_tables(
        _read_json(UNITS_TABLE_PATH, "units.json"),
        _read_json(NOUNS_TABLE_PATH, "nouns.json"),
    )
