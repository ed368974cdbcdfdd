"""Parsing interfaces and concrete parsers for regulatory source files."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from pypdf import PdfReader

from regchat.errors import ExtractionFailure
from regchat.types import ParsedDocument

logger = logging.getLogger(__name__)

_PAGE_BREAK = "\f"


class Parser(ABC):
    """Base parser interface used by the corpus builder."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        """Parse a file into text, page boundaries and metadata."""


class TextParser(Parser):
    """Parser for plain text exports; form feeds separate pages."""

    extensions = (".txt", ".md")

    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ExtractionFailure(str(path), str(exc)) from exc
        return _assemble_pages(path, raw.split(_PAGE_BREAK), [], doc_id=doc_id, fmt="text")


class PdfParser(Parser):
    """Extracts per-page text and printed page labels with pypdf."""

    extensions = (".pdf",)

    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        try:
            reader = PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages]
            labels = list(reader.page_labels)
        except Exception as exc:  # pypdf raises a wide range of errors on damaged files
            raise ExtractionFailure(str(path), str(exc)) from exc

        logical = [_parse_label(label) for label in labels]
        return _assemble_pages(path, pages, logical, doc_id=doc_id, fmt="pdf")


class ParserRegistry:
    """Maps file extension to parser implementation."""

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._parsers: dict[str, Parser] = {}
        for parser in parsers or [TextParser(), PdfParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._parsers[extension.lower()] = parser

    def supports(self, path: str | Path) -> bool:
        return Path(path).suffix.lower() in self._parsers

    def parse_path(self, path: str | Path, *, doc_id: str | None = None) -> ParsedDocument:
        file_path = Path(path)
        parser = self._parsers.get(file_path.suffix.lower())
        if parser is None:
            raise ExtractionFailure(str(file_path), f"no parser for extension {file_path.suffix!r}")
        if not file_path.exists():
            raise ExtractionFailure(str(file_path), "file not found")
        return parser.parse(file_path, doc_id=doc_id)


def _assemble_pages(
    path: Path,
    pages: list[str],
    logical: list[int | None],
    *,
    doc_id: str | None,
    fmt: str,
) -> ParsedDocument:
    boundaries: list[int] = []
    parts: list[str] = []
    offset = 0
    for page_text in pages:
        boundaries.append(offset)
        normalized = page_text.strip("\n")
        parts.append(normalized)
        offset += len(normalized) + 2  # "\n\n" joiner

    text = "\n\n".join(parts)
    if not text.strip():
        raise ExtractionFailure(str(path), "no extractable text")

    logger.info("Extracted %s: %d pages, %d chars", path.name, len(pages), len(text))
    return ParsedDocument(
        doc_id=doc_id or path.stem,
        text=text,
        metadata={"source": path.name, "title": path.stem, "format": fmt},
        page_boundaries=boundaries or [0],
        logical_page_numbers=logical,
    )


def _parse_label(label: str) -> int | None:
    match = re.fullmatch(r"\s*-?\s*(\d+)\s*-?\s*", label or "")
    return int(match.group(1)) if match else None
