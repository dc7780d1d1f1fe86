"""
Measurement parsing: raw OCR text -> ParsedIngredientList.

Each non-blank line is offered to MATCHERS in order; the first one that
returns a LineMatch wins and later matchers are not consulted:

  1. quantity + unit + name   "2 cups flour", "250g farine", "2 c. à soupe de sucre"
  2. quantity + name          "6 eggs", "3 oignons"
  3. name only                "salt and pepper"   (no leading quantity)

Lines with no letters, or whose name carries more than two digits, are
dropped. Nothing here raises: unmatched lines are simply omitted.

With join_wrapped_lines on, a quantity line whose name is left open is
continued by the lines below it; the token keeps the first line's index.
"""

import logging
import re
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, NamedTuple, Optional

from .. import config
from ..config import ParserTables, fold, load_tables
from ..models import MeasurementToken, ParsedIngredientList
from .matching import best_match
from .normalize import normalize_name
from .quantities import leading_quantity, strip_markers

log = logging.getLogger(__name__)

_WS = re.compile(r"\s+")
_MAX_NAME_DIGITS = 2
_COUNTABLE_FUZZ = 85
_COMPLETE_ENDINGS = ".)]},"


class LineMatch(NamedTuple):
    kind: str
    quantity: Optional[Fraction]
    unit: Optional[str]
    name: str


@dataclass(frozen=True)
class ParseContext:
    tables: ParserTables
    name_only_fallback: bool = config.PARSER_NAME_ONLY_FALLBACK
    accept_unitless_by_default: bool = config.PARSER_UNITLESS_DEFAULT
    join_wrapped_lines: bool = config.PARSER_JOIN_WRAPPED_LINES
    max_joined_lines: int = config.PARSER_MAX_JOINED_LINES


Matcher = Callable[[ParseContext, str], Optional[LineMatch]]


# ───────────────────────────── helpers ───────────────────────────── #

def _fold_with_offsets(text: str) -> tuple[str, dict[int, int]]:
    """
    Fold `text` char by char. The map sends each folded length that falls
    on a character boundary to the matching index in the original text.
    """
    parts: list[str] = []
    ends = {0: 0}
    size = 0
    for i, ch in enumerate(text):
        f = fold(ch)
        parts.append(f)
        size += len(f)
        ends[size] = i + 1
    return "".join(parts), ends


def match_unit(text: str, tables: ParserTables) -> Optional[tuple[str, str]]:
    """
    Match a unit synonym at the start of `text`, longest synonym first.
    Returns (canonical unit, remaining text) or None.
    """
    folded, ends = _fold_with_offsets(text)
    for synonym in tables.synonyms_longest_first:
        if not folded.startswith(synonym):
            continue
        n = len(synonym)
        # "l" must not match the start of "lemon" or "l'huile"
        if n < len(folded) and synonym[-1].isalnum() and (folded[n].isalnum() or folded[n] == "'"):
            continue
        cut = ends.get(n)
        if cut is None:
            continue
        return tables.unit_synonyms[synonym], text[cut:].lstrip()
    return None


def has_countable_noun(name: str, tables: ParserTables) -> bool:
    """True if some word (or word pair) of `name` is a countable noun, allowing typos."""
    words = fold(name).split()
    candidates = words + [" ".join(pair) for pair in zip(words, words[1:])]
    for c in candidates:
        if c in tables.countable_nouns:
            return True
    for c in candidates:
        if len(c) >= 4 and best_match(c, tables.countable_nouns, threshold=_COUNTABLE_FUZZ)[0]:
            return True
    return False


def _too_many_digits(name: str) -> bool:
    return sum(ch.isdigit() for ch in name) > _MAX_NAME_DIGITS


def is_incomplete(name: str) -> bool:
    """A name with no closing punctuation may carry on to the next line."""
    name = name.strip()
    return bool(name) and name[-1] not in _COMPLETE_ENDINGS


# ───────────────────────────── matchers ───────────────────────────── #

def match_quantity_unit_name(ctx: ParseContext, line: str) -> Optional[LineMatch]:
    q = leading_quantity(line)
    if q is None:
        return None
    unit = match_unit(q.rest, ctx.tables)
    if unit is None:
        return None
    canonical, name = unit
    if _too_many_digits(name):
        return None
    return LineMatch("quantity_unit_name", q.value, canonical, name)


def match_quantity_name(ctx: ParseContext, line: str) -> Optional[LineMatch]:
    q = leading_quantity(line)
    if q is None or not q.rest or _too_many_digits(q.rest):
        return None
    if not ctx.accept_unitless_by_default and not has_countable_noun(q.rest, ctx.tables):
        return None
    return LineMatch("quantity_name", q.value, None, q.rest)


def match_name_only(ctx: ParseContext, line: str) -> Optional[LineMatch]:
    if not ctx.name_only_fallback or leading_quantity(line) is not None:
        return None
    name = strip_markers(line)
    if not name or _too_many_digits(name):
        return None
    return LineMatch("name_only", None, None, name)


MATCHERS: tuple[Matcher, ...] = (
    match_quantity_unit_name,
    match_quantity_name,
    match_name_only,
)


# ───────────────────────────── parser ───────────────────────────── #

class MeasurementParser:
    """
    Pure line-by-line parser. Holds only immutable tables and flags, so one
    instance can be shared freely.
    """

    def __init__(
        self,
        tables: ParserTables | None = None,
        name_only_fallback: bool = config.PARSER_NAME_ONLY_FALLBACK,
        accept_unitless_by_default: bool = config.PARSER_UNITLESS_DEFAULT,
        matchers: tuple[Matcher, ...] = MATCHERS,
        join_wrapped_lines: bool = config.PARSER_JOIN_WRAPPED_LINES,
        max_joined_lines: int = config.PARSER_MAX_JOINED_LINES,
    ):
        if max_joined_lines < 1:
            raise ValueError("max_joined_lines must be at least 1")
        self.ctx = ParseContext(
            tables=tables or load_tables(),
            name_only_fallback=name_only_fallback,
            accept_unitless_by_default=accept_unitless_by_default,
            join_wrapped_lines=join_wrapped_lines,
            max_joined_lines=max_joined_lines,
        )
        self.matchers = matchers

    def match_line(self, line: str) -> Optional[LineMatch]:
        line = _WS.sub(" ", line).strip()
        if not any(ch.isalpha() for ch in line):
            return None
        for matcher in self.matchers:
            m = matcher(self.ctx, line)
            if m is not None:
                return m
        return None

    def parse_line(self, line: str, line_index: int = 0) -> MeasurementToken | None:
        m = self.match_line(line)
        if m is None:
            log.debug("No pattern matched line %d: %r", line_index, line, extra={"line_index": line_index})
            return None
        return self._token(m, line.strip(), line_index)

    def _token(self, m: LineMatch, raw: str, line_index: int) -> MeasurementToken:
        name = normalize_name(m.name, self.ctx.tables.ingredient_words) if m.name else ""
        return MeasurementToken(
            quantity=m.quantity,
            unit=m.unit,
            name=name,
            raw=raw,
            line_index=line_index,
        )

    def join_wrapped(self, m: LineMatch, lines: list[str], start: int) -> tuple[LineMatch, int]:
        """
        Extend a quantity line's name with the lines that follow it.

        Stops at a blank or punctuation-only line, at the next line that starts
        with a quantity, once the name ends in closing punctuation, or after
        `max_joined_lines` lines in total. Returns the match and the number of
        lines it now covers.
        """
        if m.quantity is None or not is_incomplete(m.name):
            return m, 1
        name, used = m.name, 1
        while used < self.ctx.max_joined_lines and start + used < len(lines):
            nxt = _WS.sub(" ", lines[start + used]).strip()
            if not any(ch.isalnum() for ch in nxt) or leading_quantity(nxt) is not None:
                break
            joined = f"{name} {nxt}"
            if _too_many_digits(joined):
                break
            name, used = joined, used + 1
            if not is_incomplete(name):
                break
        if used > 1:
            log.debug("Joined lines %d-%d: %r", start, start + used - 1, name, extra={"line_index": start})
        return m._replace(name=name), used

    def parse(self, raw_text: str) -> ParsedIngredientList:
        lines = (raw_text or "").splitlines()
        tokens = []
        i = 0
        while i < len(lines):
            line = lines[i]
            used = 1
            m = self.match_line(line) if line.strip() else None
            if m is not None and self.ctx.join_wrapped_lines:
                m, used = self.join_wrapped(m, lines, i)
            if m is not None:
                raw = " ".join(part.strip() for part in lines[i:i + used])
                tokens.append(self._token(m, raw, i))
            elif line.strip():
                log.debug("No pattern matched line %d: %r", i, line, extra={"line_index": i})
            i += used
        log.debug("Parsed %d ingredient tokens", len(tokens))
        return ParsedIngredientList(tokens=tuple(tokens))

    def has_measurements(self, raw_text: str) -> bool:
        """True if any line carries a quantity (with or without a unit)."""
        return any(t.quantity is not None for t in self.parse(raw_text))


_default: MeasurementParser | None = None


def default_parser() -> MeasurementParser:
    global _default
    if _default is None:
        _default = MeasurementParser()
    return _default


def parse(raw_text: str) -> ParsedIngredientList:
    return default_parser().parse(raw_text)
