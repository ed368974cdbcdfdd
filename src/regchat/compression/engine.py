"""Token-budgeted chunk compression with quality validation."""

from __future__ import annotations

import hashlib
import logging
import re
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass

from regchat.config import CompressionConfig
from regchat.errors import CompressionDegraded
from regchat.ingest.chunker import SECTION_PATTERN
from regchat.keywords import extract_keywords
from regchat.keywords import keyword_weights as default_keyword_weights
from regchat.text import (
    count_occurrences,
    count_sentence_endings,
    ends_with_sentence,
    estimate_tokens,
    has_hangul,
    normalize_for_hash,
    split_sentences,
    tokenize,
    truncate_at_boundary,
)
from regchat.types import Chunk, ChunkMetadata, CompressionResult

logger = logging.getLogger(__name__)

SEPARATOR = "\n\n"

_PAGE_NUMBER_LINE = re.compile(r"^\s*[-–]?\s*\d{1,4}\s*[-–]?\s*$")
_PAGE_LABEL_LINE = re.compile(r"^\s*(?:page|p\.|페이지)\s*\d+(?:\s*(?:/|of)\s*\d+)?\s*$", re.IGNORECASE)
_PAGE_OF_LINE = re.compile(r"^\s*\d+\s*/\s*\d+\s*$")
_INLINE_SPACES = re.compile(r"[ \t]+")
_BLANK_RUNS = re.compile(r"\n\s*\n+")

_ARTICLE = re.compile(r"제\s*\d+\s*조")
_REGULATION_TERMS = ("규정", "지침", "업무")
_DECREE_TERMS = ("시행령", "시행규칙")
_ENUMERATION = re.compile(r"[|•·]|^\s*(?:\d+[.)]|[가-하][.)]|[①-⑳]|-)\s", re.MULTILINE)
_NUMBER = re.compile(r"\d+")
_LEGAL_REFERENCE = re.compile(r"제\s*\d+\s*(?:조|항|호|목)|별표\s*\d*|법\s*제|시행령|시행규칙")
_STRUCTURAL_MARKER = re.compile(r"제\s*\d+\s*(?:장|절|관|조|항|호|목)|규정|지침|업무")


@dataclass(slots=True)
class _Candidate:
    index: int
    chunk: Chunk
    text: str
    priority: bool
    score: float = 0.0


@dataclass(slots=True)
class _Piece:
    candidate: _Candidate
    text: str
    truncated: bool = False


class CompressionEngine:
    """Selects a budgeted, quality-scored subset of chunks.

    Pipeline:
    1. Cleanup removes page-number lines, boilerplate lines repeated across
       chunks, and exact duplicates by normalized content hash.
    2. Chunks carrying an article or chapter header are marked priority.
    3. Every candidate is scored with the constants in `ScoringWeights`;
       ties keep document order.
    4. Priority chunks are accepted first, then the rest in score order.
       A single priority chunk larger than the budget is truncated at a
       sentence boundary, or hard-cut when it has none. Left-over budget
       is filled with a truncated fragment of the best rejected
       non-priority chunk.
    5. While weighted keyword coverage is below `keyword_target`, sentences
       carrying the missing keywords are pulled from unselected chunks.
    6. Output is assembled in document order and validated. Coverage at or
       above `keyword_target` is "standard" mode; between
       `fallback_threshold` and the target it is "partial". Below the
       threshold, or when nothing could be selected, the result is rebuilt
       in "fallback" mode (top chunks by score, no structural gating).

    `compress` never raises. Any unexpected error yields a plain truncation
    of the input with the error recorded in `warnings`.
    """

    def __init__(self, config: CompressionConfig | None = None) -> None:
        self.config = config or CompressionConfig()

    def compress(
        self,
        chunks: list[Chunk],
        token_budget: int | None = None,
        keyword_weights: Mapping[str, float] | None = None,
    ) -> CompressionResult:
        budget = token_budget or self.config.token_budget
        weights = {
            term.lower(): weight
            for term, weight in (keyword_weights or default_keyword_weights()).items()
            if term
        }
        if not chunks:
            return CompressionResult(
                compressed_text="",
                original_length=0,
                compressed_length=0,
                compression_ratio=0.0,
                preserved_keywords=frozenset(),
                quality_score=0.0,
                warnings=("no input chunks",),
                estimated_tokens=0,
                mode="empty",
            )

        original = SEPARATOR.join(chunk.content for chunk in chunks)
        max_chars = budget * self.config.chars_per_token
        try:
            candidates = self._prepare(chunks, weights)
            try:
                return self._standard(candidates, original, max_chars, weights)
            except CompressionDegraded as exc:
                logger.warning("Compression degraded, using fallback selection: %s", exc)
                return self._fallback(candidates, original, max_chars, weights, str(exc))
        except Exception as exc:
            logger.exception("Compression failed; returning truncated input")
            text = truncate_at_boundary(original, max_chars) or original[:max_chars].rstrip()
            return self._result(
                text,
                original,
                weights,
                warnings=[f"compression error, input truncated: {exc}"],
                mode="fallback",
                selected_ids=(),
            )

    def compress_text(self, text: str, token_budget: int | None = None) -> str:
        """Compress a plain text by treating its paragraphs as chunks."""

        chunks: list[Chunk] = []
        start = 0
        for separator in [*_BLANK_RUNS.finditer(text), None]:
            end = separator.start() if separator else len(text)
            if text[start:end].strip():
                chunks.append(_text_chunk(len(chunks), text[start:end], start, len(text)))
            if separator:
                start = separator.end()
        return self.compress(chunks, token_budget=token_budget).compressed_text

    def validate(self, result: CompressionResult, token_budget: int | None = None) -> tuple[bool, list[str], list[str]]:
        """Return `(is_valid, warnings, recommendations)` for a result."""

        budget = token_budget or self.config.token_budget
        warnings: list[str] = []
        recommendations: list[str] = []
        retained = 1.0 - result.compression_ratio if result.original_length else 0.0
        low, high = self.config.acceptable_retention_band

        if result.estimated_tokens > budget:
            warnings.append(f"estimated tokens {result.estimated_tokens} exceed budget {budget}")
            recommendations.append("Drop more chunks or lower the chunk size.")
        if result.original_length and retained < low:
            warnings.append(f"only {retained:.1%} of the input retained")
            recommendations.append("Important content may be lost; raise the token budget.")
        if retained > high:
            warnings.append(f"{retained:.1%} of the input retained")
            recommendations.append("More compression is possible.")
        if result.quality_score < self.config.min_quality_score:
            warnings.append(f"quality score {result.quality_score:.1f} is low")
            recommendations.append("Boost query keywords or adjust scoring weights.")
        return not warnings, warnings, recommendations

    def _prepare(self, chunks: list[Chunk], weights: dict[str, float]) -> list[_Candidate]:
        boilerplate = self._boilerplate_lines(chunks)
        seen: set[str] = set()
        candidates: list[_Candidate] = []
        for chunk in chunks:
            text = self._clean(chunk.content, boilerplate)
            if not text:
                continue
            digest = hashlib.sha1(normalize_for_hash(text).encode("utf-8")).hexdigest()
            if digest in seen:
                continue
            seen.add(digest)
            candidates.append(
                _Candidate(
                    index=len(candidates),
                    chunk=chunk,
                    text=text,
                    priority=bool(SECTION_PATTERN.search(text)),
                )
            )

        token_sets: list[set[str]] = []
        for candidate in candidates:
            tokens = set(tokenize(candidate.text))
            candidate.score = self.score(candidate.text, weights, token_sets, tokens)
            token_sets.append(tokens)
        return candidates

    def _boilerplate_lines(self, chunks: list[Chunk]) -> set[str]:
        counts: Counter[str] = Counter()
        for chunk in chunks:
            lines = {
                line.strip()
                for line in chunk.content.splitlines()
                if 0 < len(line.strip()) <= self.config.boilerplate_max_line_chars
            }
            counts.update(lines)
        return {
            line
            for line, count in counts.items()
            if count >= self.config.boilerplate_min_repeats and not SECTION_PATTERN.search(line)
        }

    @staticmethod
    def _clean(content: str, boilerplate: set[str]) -> str:
        kept: list[str] = []
        for line in content.splitlines():
            stripped = line.strip()
            if stripped in boilerplate:
                continue
            if _PAGE_NUMBER_LINE.match(line) or _PAGE_LABEL_LINE.match(line) or _PAGE_OF_LINE.match(line):
                continue
            kept.append(_INLINE_SPACES.sub(" ", line).strip())
        return _BLANK_RUNS.sub("\n\n", "\n".join(kept)).strip()

    def score(
        self,
        text: str,
        weights: Mapping[str, float],
        earlier_token_sets: list[set[str]] | None = None,
        tokens: set[str] | None = None,
    ) -> float:
        """Score one cleaned chunk. Never negative."""

        w = self.config.weights
        lowered = text.lower()
        length = len(text)
        score = 0.0

        for term, weight in weights.items():
            score += count_occurrences(term, lowered) * weight * w.keyword_multiplier

        if w.ideal_length[0] < length < w.ideal_length[1]:
            score += w.ideal_length_score
        elif w.good_length[0] < length < w.good_length[1]:
            score += w.good_length_score
        elif w.acceptable_length[0] < length < w.acceptable_length[1]:
            score += w.acceptable_length_score

        if _ARTICLE.search(text):
            score += w.article_score
        if any(term in text for term in _REGULATION_TERMS):
            score += w.regulation_term_score
        if any(term in text for term in _DECREE_TERMS):
            score += w.decree_score
        if _ENUMERATION.search(text):
            score += w.enumeration_score

        score += min(w.sentence_ending_cap, count_sentence_endings(text))
        if ends_with_sentence(text):
            score += w.complete_ending_score

        score += min(w.number_cap, len(_NUMBER.findall(text)) * w.number_unit_score)
        score += min(w.legal_reference_cap, len(_LEGAL_REFERENCE.findall(text)) * w.legal_reference_score)

        if length < w.short_chunk_chars:
            score -= w.short_chunk_penalty
        if not has_hangul(text):
            score -= w.no_text_penalty

        token_list = tokenize(text)
        token_set = tokens if tokens is not None else set(token_list)
        if token_list and len(token_set) / len(token_list) < w.low_information_ratio:
            score -= w.low_information_penalty
        for earlier in earlier_token_sets or []:
            if _jaccard(token_set, earlier) >= w.near_duplicate_threshold:
                score -= w.near_duplicate_penalty
                break

        return max(0.0, score)

    def _standard(
        self,
        candidates: list[_Candidate],
        original: str,
        max_chars: int,
        weights: dict[str, float],
    ) -> CompressionResult:
        ordered = sorted(candidates, key=lambda c: (-c.score, c.index))
        priority = [c for c in ordered if c.priority]
        rest = [c for c in ordered if not c.priority]
        warnings: list[str] = []
        pieces: list[_Piece] = []
        used = 0

        def cost(text: str) -> int:
            return len(text) + (len(SEPARATOR) if pieces else 0)

        if priority and len(priority[0].text) > max_chars:
            head = priority.pop(0)
            truncated = _truncate(head, max_chars, warnings)
            pieces.append(_Piece(head, truncated, truncated=True))
            used += len(truncated)
            warnings.append(f"structural chunk {head.chunk.id} truncated to fit budget")

        dropped: list[_Candidate] = []
        for candidate in priority:
            if used + cost(candidate.text) <= max_chars:
                used += cost(candidate.text)
                pieces.append(_Piece(candidate, candidate.text))
            else:
                dropped.append(candidate)
                warnings.append(f"structural chunk {candidate.chunk.id} dropped: over budget")

        rejected: list[_Candidate] = []
        for candidate in rest:
            if used + cost(candidate.text) <= max_chars:
                used += cost(candidate.text)
                pieces.append(_Piece(candidate, candidate.text))
            else:
                rejected.append(candidate)

        if not pieces and ordered:
            head = ordered[0]
            truncated = _truncate(head, max_chars, warnings)
            pieces.append(_Piece(head, truncated, truncated=True))
            used += len(truncated)
            if head in rejected:
                rejected.remove(head)
        if not pieces:
            raise CompressionDegraded("no chunk survived cleanup and selection")

        room = max_chars - used - len(SEPARATOR)
        if rejected and room >= self.config.min_fragment_chars:
            filler = rejected[0]
            fragment = truncate_at_boundary(filler.text, room)
            if len(fragment) >= self.config.min_fragment_chars:
                pieces.append(_Piece(filler, fragment, truncated=True))
                rejected.remove(filler)
                used += len(fragment) + len(SEPARATOR)

        coverage = self._keyword_coverage(original, _assemble(pieces), weights)
        if coverage is not None and coverage < self.config.keyword_target:
            spare = sorted([*dropped, *rejected], key=lambda c: (-c.score, c.index))
            self._repair_coverage(pieces, spare, original, max_chars - used, weights)
            coverage = self._keyword_coverage(original, _assemble(pieces), weights)

        if coverage is not None and coverage < self.config.fallback_threshold:
            raise CompressionDegraded(
                f"weighted keyword coverage {coverage:.0%} below {self.config.fallback_threshold:.0%}"
            )
        partial = coverage is not None and coverage < self.config.keyword_target
        return self._result(
            _assemble(pieces),
            original,
            weights,
            warnings=warnings,
            mode="partial" if partial else "standard",
            selected_ids=tuple(piece.candidate.chunk.id for piece in sorted(pieces, key=lambda p: p.candidate.index)),
        )

    def _repair_coverage(
        self,
        pieces: list[_Piece],
        spare: list[_Candidate],
        original: str,
        room: int,
        weights: dict[str, float],
    ) -> None:
        """Add sentences carrying missing weighted keywords from unselected chunks.

        Candidates are visited in score order; each contributes at most one
        piece built from those of its sentences that still fit.
        """

        lowered_original = original.lower()
        for candidate in spare:
            text = _assemble(pieces).lower()
            missing = {term for term in weights if term in lowered_original and term not in text}
            if not missing:
                return
            budget = room - len(SEPARATOR)
            picked: list[str] = []
            for _, _, sentence in split_sentences(candidate.text):
                lowered = sentence.lower()
                hits = {term for term in missing if term in lowered}
                size = len(sentence) + (1 if picked else 0)
                if hits and size <= budget:
                    picked.append(sentence)
                    budget -= size
                    missing -= hits
            if not picked:
                continue
            fragment = " ".join(picked)
            pieces.append(_Piece(candidate, fragment, truncated=True))
            room -= len(fragment) + len(SEPARATOR)
            coverage = self._keyword_coverage(original, _assemble(pieces), weights)
            if coverage is not None and coverage >= self.config.keyword_target:
                return

    def _fallback(
        self,
        candidates: list[_Candidate],
        original: str,
        max_chars: int,
        weights: dict[str, float],
        reason: str,
    ) -> CompressionResult:
        warnings = [f"fallback mode: {reason}"]
        pieces: list[_Piece] = []
        used = 0
        for candidate in sorted(candidates, key=lambda c: (-c.score, c.index)):
            cost = len(candidate.text) + (len(SEPARATOR) if pieces else 0)
            if used + cost <= max_chars:
                pieces.append(_Piece(candidate, candidate.text))
                used += cost
            elif not pieces:
                truncated = _truncate(candidate, max_chars, warnings)
                pieces.append(_Piece(candidate, truncated, truncated=True))
                used += len(truncated)

        return self._result(
            _assemble(pieces),
            original,
            weights,
            warnings=warnings,
            mode="fallback",
            selected_ids=tuple(piece.candidate.chunk.id for piece in sorted(pieces, key=lambda p: p.candidate.index)),
        )

    def _result(
        self,
        text: str,
        original: str,
        weights: dict[str, float],
        *,
        warnings: list[str],
        mode: str,
        selected_ids: tuple[str, ...],
    ) -> CompressionResult:
        original_length = len(original)
        compressed_length = len(text)
        ratio = 1.0 - compressed_length / original_length if original_length else 0.0
        retained = 1.0 - ratio if original_length else 0.0

        lowered_original = original.lower()
        lowered_text = text.lower()
        present = {term for term in weights if term in lowered_original}
        preserved = frozenset(term for term in present if term in lowered_text)
        coverage = self._keyword_coverage(original, text, weights)

        quality = 0.0
        ideal_low, ideal_high = self.config.ideal_retention_band
        ok_low, ok_high = self.config.acceptable_retention_band
        if ideal_low <= retained <= ideal_high:
            quality += 30.0
        elif ok_low <= retained <= ok_high:
            quality += 20.0
        else:
            quality += 10.0
        quality += 40.0 * (coverage if coverage is not None else 1.0)

        markers_in = len(_STRUCTURAL_MARKER.findall(original))
        markers_out = len(_STRUCTURAL_MARKER.findall(text))
        quality += 30.0 * (min(1.0, markers_out / markers_in) if markers_in else 1.0)

        notes = list(warnings)
        if coverage is not None and coverage < self.config.keyword_target:
            notes.append(f"weighted keyword coverage {coverage:.0%} below target {self.config.keyword_target:.0%}")
        if original_length and not ideal_low <= retained <= ideal_high:
            notes.append(f"retained share {retained:.0%} outside ideal band")

        return CompressionResult(
            compressed_text=text,
            original_length=original_length,
            compressed_length=compressed_length,
            compression_ratio=ratio,
            preserved_keywords=preserved,
            quality_score=min(100.0, quality) if text else 0.0,
            warnings=tuple(notes),
            estimated_tokens=estimate_tokens(text, self.config.chars_per_token),
            mode=mode,
            selected_chunk_ids=selected_ids,
        )

    @staticmethod
    def _keyword_coverage(original: str, text: str, weights: Mapping[str, float]) -> float | None:
        """Weighted share of input keywords that survive; None when the input has none."""

        lowered_original = original.lower()
        lowered_text = text.lower()
        total = 0.0
        kept = 0.0
        for term, weight in weights.items():
            if term in lowered_original:
                total += weight
                if term in lowered_text:
                    kept += weight
        if total == 0:
            return None
        return kept / total


def _assemble(pieces: list[_Piece]) -> str:
    parts: list[str] = []
    previous: _Piece | None = None
    for piece in sorted(pieces, key=lambda p: p.candidate.index):
        text = piece.text
        joiner = SEPARATOR
        if previous is not None and _consecutive(previous.candidate.chunk, piece.candidate.chunk):
            overlap = _overlap_length(previous.text, text, _raw_overlap(previous.candidate.chunk, piece.candidate.chunk))
            if overlap:
                text = text[overlap:].lstrip()
                joiner = "\n" if ends_with_sentence(previous.text) else " "
        if not text:
            continue
        if parts:
            parts.append(joiner)
        parts.append(text)
        previous = piece
    return "".join(parts)


def _consecutive(previous: Chunk, current: Chunk) -> bool:
    return (
        previous.document_id == current.document_id
        and current.metadata.position == previous.metadata.position + 1
    )


def _raw_overlap(previous: Chunk, current: Chunk) -> int:
    return max(0, previous.metadata.end_offset - current.metadata.start_offset)


def _overlap_length(previous: str, current: str, limit: int) -> int:
    """Length of the longest suffix of `previous` that prefixes `current`."""

    upper = min(len(previous), len(current), limit)
    for size in range(upper, 9, -1):
        if current.startswith(previous[-size:]):
            return size
    return 0


def _jaccard(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _text_chunk(index: int, paragraph: str, start: int, size: int) -> Chunk:
    return Chunk(
        id=f"text-chunk-{index:04d}",
        document_id="text",
        content=paragraph,
        keywords=extract_keywords(paragraph),
        metadata=ChunkMetadata(
            source="text",
            title="text",
            page_index=1,
            logical_page_number=None,
            section="",
            position=index,
            start_offset=start,
            end_offset=start + len(paragraph),
            original_size=size,
            document_type="guideline",
        ),
    )


def _truncate(candidate: _Candidate, max_chars: int, warnings: list[str]) -> str:
    """Boundary truncation, hard-cut at `max_chars` when no boundary fits."""

    truncated = truncate_at_boundary(candidate.text, max_chars)
    if truncated:
        return truncated
    warnings.append(f"chunk {candidate.chunk.id} hard cut at {max_chars} chars: no sentence or word boundary")
    return candidate.text[:max_chars].rstrip()
