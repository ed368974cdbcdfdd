"""Token-budgeted retrieval and chat over regulatory documents."""

from .config import ChunkingConfig, CompressionConfig, ConversationConfig, RetrievalConfig

__all__ = ["ChunkingConfig", "CompressionConfig", "ConversationConfig", "RetrievalConfig"]
