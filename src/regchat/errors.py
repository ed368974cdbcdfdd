"""Error taxonomy shared across ingest, compression, retrieval and generation."""

from __future__ import annotations


class RegchatError(Exception):
    """Base class for pipeline errors."""


class ExtractionFailure(RegchatError):
    """A source document could not be read or yielded no text."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Failed to extract {source}: {reason}")
        self.source = source
        self.reason = reason


class IndexUnavailable(RegchatError):
    """The document store cannot answer a query without an index it lacks."""


class CompressionDegraded(RegchatError):
    """Compression output fell below the quality floor."""


class GenerationFailure(RegchatError):
    """An external model call failed."""


class GenerationTimeout(GenerationFailure):
    """An external model call did not finish before its deadline."""


class GenerationCancelled(GenerationFailure):
    """An external model call was superseded by a newer request."""


class RateLimited(GenerationFailure):
    """The generation collaborator throttled the request."""
