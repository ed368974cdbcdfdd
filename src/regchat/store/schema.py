"""JSON artifact schemas for processed chunks and synonym dictionaries."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from regchat.types import Chunk, ChunkMetadata, Provenance, SynonymDictionary

ARTIFACT_VERSION = 1


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChunkMetadataRecord(_CamelModel):
    source: str
    title: str
    page_index: int
    logical_page_number: int | None = None
    section: str = ""
    position: int
    start_offset: int
    end_offset: int
    original_size: int
    document_type: str = "guideline"
    sentence_page_map: dict[int, int] = Field(default_factory=dict)
    sentences: list[str] = Field(default_factory=list)


class ChunkRecord(_CamelModel):
    id: str
    document_id: str
    content: str
    keywords: list[str]
    metadata: ChunkMetadataRecord

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ChunkRecord":
        meta = chunk.metadata
        return cls(
            id=chunk.id,
            document_id=chunk.document_id,
            content=chunk.content,
            keywords=sorted(chunk.keywords),
            metadata=ChunkMetadataRecord(
                source=meta.source,
                title=meta.title,
                page_index=meta.page_index,
                logical_page_number=meta.logical_page_number,
                section=meta.section,
                position=meta.position,
                start_offset=meta.start_offset,
                end_offset=meta.end_offset,
                original_size=meta.original_size,
                document_type=meta.document_type,
                sentence_page_map=dict(meta.sentence_page_map),
                sentences=list(meta.sentences),
            ),
        )

    def to_chunk(self) -> Chunk:
        meta = self.metadata
        return Chunk(
            id=self.id,
            document_id=self.document_id,
            content=self.content,
            keywords=frozenset(self.keywords),
            metadata=ChunkMetadata(
                source=meta.source,
                title=meta.title,
                page_index=meta.page_index,
                logical_page_number=meta.logical_page_number,
                section=meta.section,
                position=meta.position,
                start_offset=meta.start_offset,
                end_offset=meta.end_offset,
                original_size=meta.original_size,
                document_type=meta.document_type,
                sentence_page_map=dict(meta.sentence_page_map),
                sentences=tuple(meta.sentences),
            ),
        )


class DocumentRecord(_CamelModel):
    document_id: str
    title: str
    source: str
    chunk_count: int
    total_chars: int
    document_type: str = "guideline"


class ChunkArtifact(_CamelModel):
    version: int = ARTIFACT_VERSION
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    document: DocumentRecord
    chunks: list[ChunkRecord]


class SynonymArtifact(_CamelModel):
    version: int = ARTIFACT_VERSION
    updated_at: datetime
    entries: dict[str, list[str]]
    provenance: dict[str, Provenance] = Field(default_factory=dict)
    processed: list[str] = Field(default_factory=list)

    @classmethod
    def from_dictionary(cls, dictionary: SynonymDictionary) -> "SynonymArtifact":
        return cls(
            version=dictionary.version,
            updated_at=dictionary.updated_at,
            entries={key: list(values) for key, values in dictionary.entries.items()},
            provenance=dict(dictionary.provenance),
            processed=sorted(dictionary.processed),
        )

    def to_dictionary(self) -> SynonymDictionary:
        return SynonymDictionary(
            entries={key: list(values) for key, values in self.entries.items()},
            provenance=dict(self.provenance),
            processed=set(self.processed),
            updated_at=self.updated_at,
            version=self.version,
        )


def document_record(document_id: str, chunks: list[Chunk]) -> DocumentRecord:
    first = chunks[0].metadata if chunks else None
    return DocumentRecord(
        document_id=document_id,
        title=first.title if first else document_id,
        source=first.source if first else document_id,
        chunk_count=len(chunks),
        total_chars=first.original_size if first else 0,
        document_type=first.document_type if first else "guideline",
    )
