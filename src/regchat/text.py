"""Text normalization, tokenization and sentence splitting helpers."""

from __future__ import annotations

import math
import re
import unicodedata

_WORD_PATTERN = re.compile(r"[가-힣]+|[A-Za-z]+|\d+", flags=re.UNICODE)
_SENTENCE_PATTERN = re.compile(r"[^.!?。！？]+(?:[.!?。！？]+|$)", flags=re.DOTALL)
_SENTENCE_END = re.compile(r"[.!?。！？][\"')\]]?\s*$")
_WHITESPACE = re.compile(r"\s+")
_HANGUL = re.compile(r"[가-힣]")

# Longest first so "에서" wins over "에".
_PARTICLES = (
    "에서는", "으로는", "에게서", "까지는", "부터는",
    "에서", "으로", "에게", "까지", "부터", "에는", "과는", "와는", "이다",
    "은", "는", "이", "가", "을", "를", "의", "에", "로", "와", "과", "도", "만",
)


def normalize_keyword(keyword: str) -> str:
    """Canonical form used for dictionary keys and matching."""

    text = unicodedata.normalize("NFC", keyword)
    return _WHITESPACE.sub(" ", text).strip().lower()


def normalize_for_hash(text: str) -> str:
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFC", text)).strip().lower()


def tokenize(text: str) -> list[str]:
    return [token.lower() for token in _WORD_PATTERN.findall(text)]


def strip_particle(token: str) -> str:
    for particle in _PARTICLES:
        if token.endswith(particle) and len(token) - len(particle) >= 2:
            return token[: -len(particle)]
    return token


def split_sentences(text: str) -> list[tuple[int, int, str]]:
    """Split `text` into `(start, end, sentence)` triples with stripped bodies.

    Offsets are relative to `text` and cover the stripped sentence only.
    """

    sentences: list[tuple[int, int, str]] = []
    for match in _SENTENCE_PATTERN.finditer(text):
        raw = match.group(0)
        stripped = raw.strip()
        if not stripped:
            continue
        start = match.start() + (len(raw) - len(raw.lstrip()))
        sentences.append((start, start + len(stripped), stripped))
    return sentences


def ends_with_sentence(text: str) -> bool:
    return bool(_SENTENCE_END.search(text))


def count_sentence_endings(text: str) -> int:
    return len(re.findall(r"[.!?。！？](?=\s|$)", text))


def has_hangul(text: str) -> bool:
    return bool(_HANGUL.search(text))


def count_occurrences(term: str, lowered_text: str) -> int:
    """Count non-overlapping occurrences of an already-normalized term."""

    if not term:
        return 0
    return lowered_text.count(term)


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    return math.ceil(len(text) / chars_per_token)


def truncate_at_boundary(text: str, max_chars: int) -> str:
    """Cut `text` to at most `max_chars` at a sentence, else word, boundary.

    Never splits a word or a number. Returns "" when no boundary fits.
    """

    if len(text) <= max_chars:
        return text
    window = text[:max_chars]
    last_sentence_end = -1
    for match in re.finditer(r"[.!?。！？](?=\s|$)", window):
        last_sentence_end = match.end()
    if last_sentence_end > 0:
        return window[:last_sentence_end].rstrip()
    if text[max_chars].isspace():
        return window.rstrip()
    last_space = max(window.rfind(" "), window.rfind("\n"), window.rfind("\t"))
    if last_space > 0:
        return window[:last_space].rstrip()
    return ""
