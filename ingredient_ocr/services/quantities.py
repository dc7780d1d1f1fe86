"""
Leading-quantity lexer: "1 1/2", "1½", "¾", "3/4", "2,5", "0.5", "6".

All values are exact Fractions. Obvious OCR digit confusions in the quantity
token ("l/2", "1O0") are repaired before matching.
"""

import re
from fractions import Fraction
from typing import NamedTuple

VULGAR_FRACTIONS = {
    "¼": Fraction(1, 4),
    "½": Fraction(1, 2),
    "¾": Fraction(3, 4),
    "⅐": Fraction(1, 7),
    "⅑": Fraction(1, 9),
    "⅒": Fraction(1, 10),
    "⅓": Fraction(1, 3),
    "⅔": Fraction(2, 3),
    "⅕": Fraction(1, 5),
    "⅖": Fraction(2, 5),
    "⅗": Fraction(3, 5),
    "⅘": Fraction(4, 5),
    "⅙": Fraction(1, 6),
    "⅚": Fraction(5, 6),
    "⅛": Fraction(1, 8),
    "⅜": Fraction(3, 8),
    "⅝": Fraction(5, 8),
    "⅞": Fraction(7, 8),
}

_GLYPHS = "".join(VULGAR_FRACTIONS)
_SLASH = r"\s*[/⁄]\s*"
# Anything that would make the number longer if it followed it, or make it
# the start of a range ("2-3", "2 to 3", "2 à 3")
_END = rf"(?![\d/⁄{_GLYPHS}]|[.,]\d|\s*[-–—]\s*\d|\s+(?i:to|à)\s+\d)"

_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("mixed_glyph", re.compile(rf"(\d+)\s?([{_GLYPHS}]){_END}")),
    ("mixed", re.compile(rf"(\d+)\s+(\d+){_SLASH}(\d+){_END}")),
    ("fraction", re.compile(rf"(\d+){_SLASH}(\d+){_END}")),
    ("decimal", re.compile(rf"(\d*)[.,](\d+){_END}")),
    ("integer", re.compile(rf"(\d+){_END}")),
    ("glyph", re.compile(rf"([{_GLYPHS}]){_END}")),
)

_BULLET = re.compile(r"^[\s\-–•*·>]+")
# "1. " / "2) " list markers, not quantities
_ENUMERATION = re.compile(r"^\d{1,2}[.)]\s+")
_CONFUSABLE_TOKEN = re.compile(r"^[0-9lIOo|/.,]+(?=\s|$)")
_TRAILING_LETTERS = "lIOo"
_DIGIT_FIXES = str.maketrans({"l": "1", "I": "1", "|": "1", "O": "0", "o": "0"})


class Quantity(NamedTuple):
    value: Fraction
    text: str     # as written (after OCR repair)
    rest: str     # remainder of the line, left-stripped


def repair_ocr_digits(line: str) -> str:
    """
    Fix letter/digit confusions in the first whitespace-delimited token when
    it is otherwise numeric: "l/2 cup" -> "1/2 cup". Words are untouched, and
    so are letters trailing the number ("1l", "2O"), which are glued units.
    """
    m = _CONFUSABLE_TOKEN.match(line)
    if not m:
        return line
    core = m.group(0).rstrip(_TRAILING_LETTERS)
    if not any(ch.isdigit() for ch in core) or core.isdigit():
        return line
    return core.translate(_DIGIT_FIXES) + line[len(core):]


def _value(kind: str, groups: tuple[str, ...]) -> Fraction | None:
    if kind == "mixed_glyph":
        return int(groups[0]) + VULGAR_FRACTIONS[groups[1]]
    if kind == "mixed":
        whole, num, den = (int(g) for g in groups)
        if den == 0 or num >= den:
            return None
        return whole + Fraction(num, den)
    if kind == "fraction":
        num, den = int(groups[0]), int(groups[1])
        return Fraction(num, den) if den else None
    if kind == "decimal":
        whole, frac = groups
        return Fraction(f"{whole or '0'}.{frac}")
    if kind == "integer":
        return Fraction(int(groups[0]))
    return VULGAR_FRACTIONS[groups[0]]


def parse_quantity(text: str) -> Fraction | None:
    """Parse a whole string as one quantity, or None."""
    q = leading_quantity(text)
    return q.value if q and not q.rest else None


def strip_markers(line: str) -> str:
    """Drop leading bullets and "1." / "2)" list numbering."""
    return _ENUMERATION.sub("", _BULLET.sub("", line))


def leading_quantity(line: str) -> Quantity | None:
    """Match a quantity at the start of `line` (after any bullet)."""
    body = repair_ocr_digits(strip_markers(line))
    for kind, pattern in _PATTERNS:
        m = pattern.match(body)
        if not m:
            continue
        value = _value(kind, m.groups())
        if value is None:
            continue
        return Quantity(value=value, text=m.group(0), rest=body[m.end():].lstrip())
    return None
