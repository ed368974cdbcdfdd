"""Overlapping character-window segmentation with page metadata."""

from __future__ import annotations

import re
from bisect import bisect_right

from regchat.config import ChunkingConfig
from regchat.keywords import extract_keywords
from regchat.text import split_sentences
from regchat.types import Chunk, ChunkMetadata, ParsedDocument

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_BREAK = re.compile(r"[.!?。！？][\"')\]]?\s+")
_WORD_BREAK = re.compile(r"\s+")
SECTION_PATTERN = re.compile(
    r"제\s*\d+\s*(?:장|절|관|조(?:의\s*\d+)?)(?:\s*\([^)\n]{1,60}\))?"
)
_LEGAL_TITLE = re.compile(r"(시행령|시행규칙|법률|법)(\s|$|\()")


class ChunkSegmenter:
    """Splits extracted document text into overlapping chunks.

    Design notes:
    1. Windows are measured in characters. Each window is at most
       `chunk_size` long; inside its last `1 - boundary_min_ratio` share the
       cut moves back to a paragraph break, else a sentence end, else a word
       break. A hard cut is used only when none of those exist.

    2. Every chunk after the first starts exactly `overlap_size` characters
       before the end of its predecessor, so both share that text verbatim.
       Since a cut never lands before `chunk_size * boundary_min_ratio`, and
       the config rejects overlaps at least that large, every window advances.

    3. Sentence offsets inside a chunk are mapped to pages with the page
       boundary index produced by the parser, giving `sentence_page_map`.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def segment(self, document: ParsedDocument) -> list[Chunk]:
        """Segment a parsed document into ordered chunks.

        Returns an empty list for empty or whitespace-only text.
        """

        text = document.text
        if not text.strip():
            return []

        size = self.config.chunk_size
        overlap = self.config.overlap_size
        min_cut = int(size * self.config.boundary_min_ratio)

        chunks: list[Chunk] = []
        section = ""
        start = 0
        while start < len(text):
            end = min(start + size, len(text))
            if end < len(text):
                end = self._find_cut(text, start + min_cut, end)

            content = text[start:end]
            if content.strip():
                chunk = self._build_chunk(document, content, start, end, len(chunks), section)
                section = chunk.metadata.section
                chunks.append(chunk)

            if end >= len(text):
                break
            start = end - overlap

        return chunks

    def _build_chunk(
        self,
        document: ParsedDocument,
        content: str,
        start: int,
        end: int,
        position: int,
        previous_section: str,
    ) -> Chunk:
        sentences = split_sentences(content)
        sentence_page_map = {
            index: self._page_for_offset(document, start + offset)
            for index, (offset, _, _) in enumerate(sentences)
        }
        leading = len(content) - len(content.lstrip())
        page_index = self._page_for_offset(document, start + leading)

        header = SECTION_PATTERN.search(content)
        title = str(document.metadata.get("title", document.doc_id))
        metadata = ChunkMetadata(
            source=str(document.metadata.get("source", document.doc_id)),
            title=title,
            page_index=page_index,
            logical_page_number=self._logical_page(document, page_index),
            section=_squash(header.group(0)) if header else previous_section,
            position=position,
            start_offset=start,
            end_offset=end,
            original_size=len(document.text),
            document_type="legal" if _LEGAL_TITLE.search(title) else "guideline",
            sentence_page_map=sentence_page_map,
            sentences=tuple(sentence for _, _, sentence in sentences),
        )
        return Chunk(
            id=f"{document.doc_id}-chunk-{position:04d}",
            document_id=document.doc_id,
            content=content,
            keywords=extract_keywords(content),
            metadata=metadata,
        )

    @staticmethod
    def _find_cut(text: str, earliest: int, end: int) -> int:
        for pattern in (_PARAGRAPH_BREAK, _SENTENCE_BREAK, _WORD_BREAK):
            last = None
            for match in pattern.finditer(text, earliest, end):
                last = match
            if last is not None:
                return last.end()
        return end

    @staticmethod
    def _page_for_offset(document: ParsedDocument, offset: int) -> int:
        """1-based page index containing `offset`."""

        return max(1, bisect_right(document.page_boundaries, offset))

    @staticmethod
    def _logical_page(document: ParsedDocument, page_index: int) -> int | None:
        if 0 < page_index <= len(document.logical_page_numbers):
            return document.logical_page_numbers[page_index - 1]
        return None


def _squash(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()
