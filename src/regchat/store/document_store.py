"""Document store contract, adapters, and the process-wide corpus cache."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from regchat.errors import ExtractionFailure, IndexUnavailable
from regchat.store.schema import (
    ChunkArtifact,
    ChunkRecord,
    DocumentRecord,
    SynonymArtifact,
    document_record,
)
from regchat.types import Chunk, SynonymDictionary

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """Minimal persistence contract for chunks and synonym dictionaries."""

    def list_documents(self) -> list[DocumentRecord]:
        """Return metadata for every stored document."""

    def get_chunks(self, document_id: str) -> list[Chunk]:
        """Return chunks of one document in position order."""

    def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        """Insert or replace all chunks of one document."""

    def get_synonym_dictionary(self) -> SynonymDictionary | None:
        """Return the persisted dictionary, or None when never built."""

    def put_synonym_dictionary(self, dictionary: SynonymDictionary) -> None:
        """Persist the dictionary, replacing any previous version."""


class InMemoryDocumentStore:
    """Deterministic store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._chunks: dict[str, list[Chunk]] = {}
        self._synonyms: SynonymDictionary | None = None
        self._lock = threading.Lock()

    def list_documents(self) -> list[DocumentRecord]:
        return [document_record(doc_id, chunks) for doc_id, chunks in self._chunks.items()]

    def get_chunks(self, document_id: str) -> list[Chunk]:
        chunks = self._chunks.get(document_id)
        if chunks is None:
            raise IndexUnavailable(f"No chunks indexed for document: {document_id}")
        return list(chunks)

    def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        self._chunks[document_id] = sorted(chunks, key=lambda c: c.metadata.position)

    def get_synonym_dictionary(self) -> SynonymDictionary | None:
        if self._synonyms is None:
            return None
        # Round-trip so callers never share mutable state with the store.
        return SynonymArtifact.from_dictionary(self._synonyms).to_dictionary()

    def put_synonym_dictionary(self, dictionary: SynonymDictionary) -> None:
        with self._lock:
            self._synonyms = SynonymArtifact.from_dictionary(dictionary).to_dictionary()


class JsonDocumentStore:
    """Stores versioned JSON artifacts under a directory.

    Layout:
        <root>/chunks/<document_id>.json   one `ChunkArtifact` per document
        <root>/synonyms.json               the `SynonymArtifact`
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._chunk_dir = self.root / "chunks"
        self._synonym_path = self.root / "synonyms.json"
        self._lock = threading.Lock()

    def list_documents(self) -> list[DocumentRecord]:
        if not self._chunk_dir.is_dir():
            raise IndexUnavailable(f"Chunk index not built: {self._chunk_dir}")
        records: list[DocumentRecord] = []
        for path in sorted(self._chunk_dir.glob("*.json")):
            try:
                artifact = ChunkArtifact.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                logger.warning("Skipping unreadable chunk artifact %s: %s", path, exc)
                continue
            records.append(artifact.document)
        return records

    def get_chunks(self, document_id: str) -> list[Chunk]:
        path = self._chunk_dir / f"{document_id}.json"
        if not path.exists():
            raise IndexUnavailable(f"No chunk artifact for document: {document_id}")
        try:
            artifact = ChunkArtifact.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise IndexUnavailable(f"Chunk artifact unreadable for {document_id}: {exc}") from exc
        return [record.to_chunk() for record in artifact.chunks]

    def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        artifact = ChunkArtifact(
            document=document_record(document_id, chunks),
            chunks=[ChunkRecord.from_chunk(chunk) for chunk in chunks],
        )
        self._chunk_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(self._chunk_dir / f"{document_id}.json", artifact.model_dump_json(by_alias=True, indent=2))

    def get_synonym_dictionary(self) -> SynonymDictionary | None:
        if not self._synonym_path.exists():
            return None
        try:
            artifact = SynonymArtifact.model_validate_json(self._synonym_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Synonym dictionary unreadable, ignoring: %s", exc)
            return None
        return artifact.to_dictionary()

    def put_synonym_dictionary(self, dictionary: SynonymDictionary) -> None:
        payload = SynonymArtifact.from_dictionary(dictionary).model_dump_json(by_alias=True, indent=2)
        with self._lock:
            self.root.mkdir(parents=True, exist_ok=True)
            _atomic_write(self._synonym_path, payload)


class CorpusCache:
    """Process-wide chunk corpus, loaded once and read-only afterwards.

    Documents are read from the store; when the store cannot serve a
    document (or cannot list documents at all) the optional `live_loader`
    is used to extract chunks on the fly. Failures are isolated per
    document so one bad file never empties the corpus.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        live_loader: Callable[[str | None], dict[str, list[Chunk]]] | None = None,
    ) -> None:
        self._store = store
        self._live_loader = live_loader
        self._chunks: dict[str, list[Chunk]] | None = None
        self._lock = threading.Lock()

    def load(self) -> dict[str, list[Chunk]]:
        if self._chunks is not None:
            return self._chunks
        with self._lock:
            if self._chunks is None:
                self._chunks = self._load_all()
        return self._chunks

    def all_chunks(self) -> list[Chunk]:
        return [chunk for chunks in self.load().values() for chunk in chunks]

    def get(self, document_id: str) -> list[Chunk]:
        return self.load().get(document_id, [])

    def invalidate(self) -> None:
        """Drop the cached corpus so the next read reloads it (rebuilds only)."""

        with self._lock:
            self._chunks = None

    def _load_all(self) -> dict[str, list[Chunk]]:
        try:
            documents = self._store.list_documents()
        except (IndexUnavailable, OSError) as exc:
            logger.warning("Document index unavailable, extracting live: %s", exc)
            return self._live(None)

        corpus: dict[str, list[Chunk]] = {}
        for record in documents:
            try:
                corpus[record.document_id] = self._store.get_chunks(record.document_id)
            except (IndexUnavailable, OSError) as exc:
                logger.warning("Chunks unavailable for %s, extracting live: %s", record.document_id, exc)
                corpus.update(self._live(record.document_id))
        logger.info(
            "Corpus loaded: %d documents, %d chunks",
            len(corpus),
            sum(len(chunks) for chunks in corpus.values()),
        )
        return corpus

    def _live(self, document_id: str | None) -> dict[str, list[Chunk]]:
        if self._live_loader is None:
            return {}
        try:
            return self._live_loader(document_id)
        except ExtractionFailure as exc:
            logger.error("Live extraction failed: %s", exc)
            return {}


def _atomic_write(path: Path, payload: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(payload, encoding="utf-8")
    tmp.replace(path)
