
"""
Fuzzy matching of OCR'd words against the known vocabularies.
"""

from typing import Iterable, Optional, Tuple

from rapidfuzz import fuzz, process

# Character pairs Tesseract commonly swaps. A correction is only trusted
# when every differing position is one of these.
OCR_CONFUSABLE = frozenset({
    ("i", "l"), ("l", "i"),
    ("1", "l"), ("l", "1"),
    ("0", "o"), ("o", "0"),
    ("5", "s"), ("s", "5"),
    ("c", "e"), ("e", "c"),
    ("u", "v"), ("v", "u"),
    ("n", "h"), ("h", "n"),
})


def fuzz_ratio(a: str, b: str) -> int:
    return int(fuzz.ratio(a, b))


def best_match(candidate: str, vocabulary: Iterable[str], threshold: int = 80) -> Tuple[Optional[str], int]:
    """
    Return the best match (word, score) for candidate in vocabulary.
    - word is None if the best score is below threshold.
    - score is the fuzz ratio for visibility/debugging.
    """
    choices = list(vocabulary)
    if not candidate or not choices:
        return None, 0

    found = process.extractOne(candidate, choices, scorer=fuzz.ratio)
    if found is None:
        return None, 0
    word, score = found[0], int(found[1])
    if score >= threshold:
        return word, score
    return None, score


def confusable_fix(word: str, vocabulary: frozenset[str], threshold: int = 75) -> Optional[str]:
    """
    Correct `word` to a vocabulary word of the same length that differs only
    by OCR-confusable characters ("fiour" -> "flour"). Returns None when the
    word is already known or no unambiguous correction exists.
    """
    lowered = word.lower()
    if lowered in vocabulary or len(lowered) < 4:
        return None

    same_length = [v for v in vocabulary if len(v) == len(lowered)]
    hits = process.extract(lowered, same_length, scorer=fuzz.ratio, score_cutoff=threshold, limit=None)

    fixes = {
        v for v, _, _ in hits
        if all(a == b or (a, b) in OCR_CONFUSABLE for a, b in zip(lowered, v))
    }
    if len(fixes) != 1:
        return None
    return fixes.pop()
