
"""
Deterministic cleanup of parsed ingredient names.

Every step only ever removes noise or swaps an OCR-confused character for
the obvious one, and the whole pipeline is run to a fixpoint, so
normalize_name(normalize_name(x)) == normalize_name(x). If cleanup would
leave nothing, the trimmed original is returned.
"""

import re
from typing import Optional

from ..config import fold, load_tables
from .matching import confusable_fix

_WS = re.compile(r"\s+")
_APOSTROPHES = re.compile(r"[’‘`´]")

# Leading articles/prepositions, English then French. Elided forms ("d'",
# "l'") need no space. The lookahead keeps at least one word behind.
_ARTICLE = re.compile(
    r"^(?:(?:the|an|a|of|de|du|des|la|le|les|au|aux|un|une)\s+|[dl]')(?=\w)",
    re.IGNORECASE,
)

# 0/1/5 sandwiched between letters: "fl0ur" -> "flour", "mi1k" -> "milk"
_DIGIT_IN_WORD = re.compile(r"(?<=[^\W\d_])[015](?=[^\W\d_])")
_DIGIT_AS_LETTER = {"0": "o", "1": "l", "5": "s"}

_WORD = re.compile(r"[^\W\d_]+")

_KEEP_TRAILING = "%"
_MAX_PASSES = 5


def collapse_whitespace(name: str) -> str:
    return _WS.sub(" ", name).strip()


def _balanced(name: str) -> bool:
    return name.count("(") == name.count(")") and name.count("[") == name.count("]")


def trim_punctuation(name: str) -> str:
    """
    Strip stray punctuation from both ends. Brackets stay when they pair up:
    "butter (softened)." -> "butter (softened)".
    """
    while name:
        ch = name[0]
        if ch.isalnum() or (ch in "([" and _balanced(name)):
            break
        name = name[1:].lstrip()
    while name:
        ch = name[-1]
        if ch.isalnum() or ch in _KEEP_TRAILING or (ch in ")]" and _balanced(name)):
            break
        name = name[:-1].rstrip()
    return name


def strip_articles(name: str) -> str:
    """Drop leading articles until none is left: "de la farine" -> "farine"."""
    while True:
        stripped = _ARTICLE.sub("", name, count=1)
        if stripped == name:
            return name
        name = stripped


def fix_digit_confusions(name: str) -> str:
    return _DIGIT_IN_WORD.sub(lambda m: _DIGIT_AS_LETTER[m.group(0)], name)


def _match_case(original: str, fixed: str) -> str:
    if original.isupper():
        return fixed.upper()
    if original[:1].isupper():
        return fixed[:1].upper() + fixed[1:]
    return fixed


def fix_known_words(name: str, vocabulary: frozenset[str]) -> str:
    """Replace words that are one OCR confusion away from a known ingredient."""
    def _fix(m: re.Match) -> str:
        word = m.group(0)
        fixed = confusable_fix(fold(word), vocabulary)
        return _match_case(word, fixed) if fixed else word
    return _WORD.sub(_fix, name)


def _one_pass(name: str, vocabulary: frozenset[str]) -> str:
    name = collapse_whitespace(_APOSTROPHES.sub("'", name))
    name = trim_punctuation(name)
    name = strip_articles(name)
    name = fix_digit_confusions(name)
    name = fix_known_words(name, vocabulary)
    return name


def normalize_name(raw: str, vocabulary: Optional[frozenset[str]] = None) -> str:
    """
    Clean an ingredient name:
      - collapse whitespace, unify apostrophes
      - trim edge punctuation (balanced brackets kept)
      - remove leading articles ("the", "de la", "l'")
      - fix 0/1/5 inside words and OCR-confused known words
    """
    if not raw or not raw.strip():
        return ""
    vocab = load_tables().ingredient_words if vocabulary is None else vocabulary

    name = raw
    for _ in range(_MAX_PASSES):
        cleaned = _one_pass(name, vocab)
        if cleaned == name:
            break
        name = cleaned
    return name or raw.strip()
