"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


@dataclass(slots=True)
class ParsedDocument:
    """Extracted document text before segmentation.

    `page_boundaries[i]` is the character offset where page `i + 1` starts.
    `logical_page_numbers[i]` is the number printed on that page, when known.
    """

    doc_id: str
    text: str
    metadata: dict[str, Any]
    page_boundaries: list[int] = field(default_factory=lambda: [0])
    logical_page_numbers: list[int | None] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    source: str
    title: str
    page_index: int
    logical_page_number: int | None
    section: str
    position: int
    start_offset: int
    end_offset: int
    original_size: int
    document_type: str
    sentence_page_map: dict[int, int] = field(default_factory=dict)
    sentences: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Chunk:
    """A bounded, overlap-aware segment of document text."""

    id: str
    document_id: str
    content: str
    keywords: frozenset[str]
    metadata: ChunkMetadata
    relevance_score: float | None = None


@dataclass(slots=True)
class ScoredChunk:
    """A retrieval result with score and route metadata."""

    chunk: Chunk
    score: float
    route: str
    rank: int = 0


@dataclass(frozen=True, slots=True)
class CompressionResult:
    compressed_text: str
    original_length: int
    compressed_length: int
    compression_ratio: float
    preserved_keywords: frozenset[str]
    quality_score: float
    warnings: tuple[str, ...]
    estimated_tokens: int
    mode: str = "standard"  # standard, partial, fallback or empty
    selected_chunk_ids: tuple[str, ...] = ()


class Provenance(str, Enum):
    STATIC = "static"
    GENERATED = "generated"


@dataclass(slots=True)
class SynonymDictionary:
    """Keyword to synonym mapping with provenance and build progress.

    `processed` records keywords the generation collaborator has already
    answered for, so an interrupted build can resume without repeating them.
    """

    entries: dict[str, list[str]] = field(default_factory=dict)
    provenance: dict[str, Provenance] = field(default_factory=dict)
    processed: set[str] = field(default_factory=set)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 1

    def get(self, keyword: str) -> list[str]:
        return self.entries.get(keyword, [])

    def merge(self, keyword: str, synonyms: list[str], provenance: Provenance) -> None:
        """Union `synonyms` into the entry for `keyword`, keeping first-seen order."""

        current = self.entries.setdefault(keyword, [])
        for synonym in synonyms:
            if synonym and synonym != keyword and synonym not in current:
                current.append(synonym)
        if keyword not in self.provenance or provenance is Provenance.GENERATED:
            self.provenance[keyword] = provenance
        self.updated_at = datetime.now(timezone.utc)

    def __len__(self) -> int:
        return len(self.entries)


class QuestionCategory(str, Enum):
    DEFINITION = "definition"
    PROCEDURE = "procedure"
    REGULATION = "regulation"
    COMPARISON = "comparison"
    ANALYSIS = "analysis"
    GENERAL = "general"


class QuestionComplexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


@dataclass(slots=True)
class QuestionAnalysis:
    intent: str
    keywords: list[str]
    category: QuestionCategory
    complexity: QuestionComplexity
    entities: list[str] = field(default_factory=list)
    context: str = ""
    expanded_keywords: list[str] | None = None


@dataclass(frozen=True, slots=True)
class HighlightSpan:
    """Character span in a text that a rendering layer may highlight."""

    start: int
    end: int
    kind: str
    terms: tuple[str, ...]
