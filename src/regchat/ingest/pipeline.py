"""Corpus build pipeline: parse -> segment -> persist."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from regchat.errors import ExtractionFailure
from regchat.ingest.chunker import ChunkSegmenter
from regchat.ingest.parser import ParserRegistry
from regchat.store.document_store import DocumentStore
from regchat.types import Chunk

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestReport:
    documents: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def chunk_count(self) -> int:
        return sum(self.documents.values())


class IngestPipeline:
    """Coordinates parser, segmenter and document store stages.

    Ingestion is separate from query-time retrieval so the corpus can be
    built offline, and also re-used as the live-extraction fallback when the
    store cannot serve chunks.
    """

    def __init__(
        self,
        parser_registry: ParserRegistry,
        segmenter: ChunkSegmenter,
        store: DocumentStore | None = None,
    ) -> None:
        self._parser_registry = parser_registry
        self._segmenter = segmenter
        self._store = store

    def ingest_path(
        self,
        path: str | Path,
        *,
        doc_id: str | None = None,
        extra_metadata: dict[str, Any] | None = None,
        persist: bool = True,
    ) -> list[Chunk]:
        """Ingest a single source file and return created chunks.

        Raises:
            ExtractionFailure: the file is missing, unsupported or unreadable.
        """

        parsed = self._parser_registry.parse_path(path, doc_id=doc_id)
        if extra_metadata:
            parsed.metadata.update(extra_metadata)

        chunks = self._segmenter.segment(parsed)
        if persist and self._store is not None:
            self._store.put_chunks(parsed.doc_id, chunks)
        logger.info("Ingested %s as %s: %d chunks", path, parsed.doc_id, len(chunks))
        return chunks

    def ingest_many(self, paths: list[str | Path], *, persist: bool = True) -> IngestReport:
        """Ingest many paths; a failing file is logged and skipped."""

        report = IngestReport()
        for path in paths:
            try:
                chunks = self.ingest_path(path, persist=persist)
            except ExtractionFailure as exc:
                logger.error("Skipping %s: %s", path, exc.reason)
                report.failures[str(path)] = exc.reason
                continue
            if chunks:
                report.documents[chunks[0].document_id] = len(chunks)
        return report

    def ingest_directory(self, directory: str | Path, *, persist: bool = True) -> IngestReport:
        return self.ingest_many(self._discover(directory), persist=persist)

    def live_loader(self, directory: str | Path):
        """Build a `CorpusCache` fallback that extracts from `directory` on demand."""

        def _load(document_id: str | None) -> dict[str, list[Chunk]]:
            corpus: dict[str, list[Chunk]] = {}
            for path in self._discover(directory):
                if document_id is not None and path.stem != document_id:
                    continue
                try:
                    chunks = self.ingest_path(path, persist=False)
                except ExtractionFailure as exc:
                    logger.error("Live extraction skipped %s: %s", path, exc.reason)
                    continue
                if chunks:
                    corpus[chunks[0].document_id] = chunks
            return corpus

        return _load

    def _discover(self, directory: str | Path) -> list[Path]:
        root = Path(directory)
        if not root.is_dir():
            raise ExtractionFailure(str(root), "source directory not found")
        return sorted(path for path in root.iterdir() if path.is_file() and self._parser_registry.supports(path))
