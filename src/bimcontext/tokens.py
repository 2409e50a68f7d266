"""Token estimation and size-bounded text splitting.

No tokenizer dependency: counts are a structural heuristic over characters,
digit runs, punctuation and collapsed whitespace. Every chunk's
``token_count`` is produced by ``estimate_tokens`` at creation time.
"""

from __future__ import annotations

import math
import re

_DIGIT_RUN_RE = re.compile(r"\d+")
_SPECIAL_CHAR_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RUN_RE = re.compile(r"\s{2,}")

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
_CLAUSE_BOUNDARY_RE = re.compile(r"(?<=[,;])\s+")

# Units longer than this (in characters) are further split on , and ;
_LONG_UNIT_CHARS = 1000

_CHARS_PER_TOKEN = 4
_DIGIT_RUN_BONUS = 0.5
_SPECIAL_CHAR_BONUS = 0.3
_WHITESPACE_RUN_CREDIT = 0.5


def estimate_tokens(text: str) -> int:
    """Approximate the token count of *text*.

    base = chars / 4, +0.5 per contiguous digit run, +0.3 per character that
    is neither word nor whitespace, -0.5 per run of 2+ whitespace characters,
    rounded up. Empty text is 0; the result is never negative.
    """
    if not text:
        return 0

    estimate = len(text) / _CHARS_PER_TOKEN
    estimate += _DIGIT_RUN_BONUS * len(_DIGIT_RUN_RE.findall(text))
    estimate += _SPECIAL_CHAR_BONUS * len(_SPECIAL_CHAR_RE.findall(text))
    estimate -= _WHITESPACE_RUN_CREDIT * len(_WHITESPACE_RUN_RE.findall(text))

    return max(0, math.ceil(estimate))


def split_by_token_limit(
    text: str, max_tokens: int, overlap_tokens: int = 0
) -> list[str]:
    """Split *text* into pieces whose estimate does not exceed *max_tokens*.

    Sentence-like units (split after ``.``, ``!`` or ``?`` followed by
    whitespace; units over 1000 characters split again after ``,``/``;``)
    are joined with single spaces and flushed to a new piece when the next
    unit would overflow. A unit that alone exceeds the limit is broken on
    line, word and finally character boundaries.

    With *overlap_tokens* > 0 each new piece starts with the trailing units
    of the previous piece, up to *overlap_tokens* estimated tokens, as long
    as the next unit still fits.

    Args:
        text: Source text.
        max_tokens: Per-piece estimate ceiling (>= 1).
        overlap_tokens: Trailing-context window carried between pieces (>= 0).

    Returns:
        Ordered list of non-empty pieces; empty for blank input.

    Raises:
        ValueError: If *max_tokens* < 1 or *overlap_tokens* < 0.
    """
    if max_tokens < 1:
        raise ValueError("max_tokens must be >= 1")
    if overlap_tokens < 0:
        raise ValueError("overlap_tokens must be >= 0")

    units: list[str] = []
    for unit in _sentence_units(text):
        if estimate_tokens(unit) > max_tokens:
            units.extend(_hard_split(unit, max_tokens))
        else:
            units.append(unit)

    pieces: list[str] = []
    current: list[str] = []

    for unit in units:
        if current and estimate_tokens(" ".join([*current, unit])) > max_tokens:
            pieces.append(" ".join(current))
            current = _overlap_tail(current, overlap_tokens)
            while current and estimate_tokens(" ".join([*current, unit])) > max_tokens:
                current.pop(0)
        current.append(unit)

    if current:
        pieces.append(" ".join(current))

    return pieces


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _sentence_units(text: str) -> list[str]:
    units: list[str] = []
    for sentence in _SENTENCE_BOUNDARY_RE.split(text):
        if len(sentence) > _LONG_UNIT_CHARS:
            units.extend(_CLAUSE_BOUNDARY_RE.split(sentence))
        else:
            units.append(sentence)
    return [u.strip() for u in units if u.strip()]


def _overlap_tail(units: list[str], overlap_tokens: int) -> list[str]:
    """Return the longest suffix of *units* within *overlap_tokens*."""
    if overlap_tokens <= 0:
        return []
    tail: list[str] = []
    for unit in reversed(units):
        candidate = [unit, *tail]
        if estimate_tokens(" ".join(candidate)) > overlap_tokens:
            break
        tail = candidate
    return tail


def _hard_split(unit: str, max_tokens: int) -> list[str]:
    """Break an oversize unit on lines, then words, then characters."""
    pieces: list[str] = []
    for line in unit.splitlines():
        if not line.strip():
            continue
        if estimate_tokens(line) <= max_tokens:
            pieces.append(line.strip())
            continue
        pieces.extend(_pack(_split_words(line, max_tokens), max_tokens))
    return _pack(pieces, max_tokens, sep="\n")


def _split_words(line: str, max_tokens: int) -> list[str]:
    words: list[str] = []
    for word in line.split():
        if estimate_tokens(word) <= max_tokens:
            words.append(word)
        else:
            words.extend(_split_chars(word, max_tokens))
    return words


def _split_chars(word: str, max_tokens: int) -> list[str]:
    if len(word) <= 1 or estimate_tokens(word) <= max_tokens:
        return [word]
    mid = len(word) // 2
    return _split_chars(word[:mid], max_tokens) + _split_chars(word[mid:], max_tokens)


def _pack(parts: list[str], max_tokens: int, sep: str = " ") -> list[str]:
    packed: list[str] = []
    current = ""
    for part in parts:
        candidate = f"{current}{sep}{part}" if current else part
        if current and estimate_tokens(candidate) > max_tokens:
            packed.append(current)
            current = part
        else:
            current = candidate
    if current:
        packed.append(current)
    return packed


_WORD_STRIP_RE = re.compile(r"[^\wäöüß-]")


def tokenize_words(text: str) -> list[str]:
    """Lower-case whitespace tokens stripped of punctuation, longer than 2 chars."""
    words = (_WORD_STRIP_RE.sub("", w) for w in text.lower().split())
    return [w for w in words if len(w) > 2]
