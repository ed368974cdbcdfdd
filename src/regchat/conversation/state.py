"""Session-scoped conversation state."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class ConversationPhase(str, Enum):
    AWAITING_FIRST_CONTEXT = "awaiting_first_context"
    CONTEXT_ESTABLISHED = "context_established"


@dataclass(slots=True)
class ConversationState:
    """Whether the compressed corpus has reached the model in this session.

    The only transition is AWAITING_FIRST_CONTEXT -> CONTEXT_ESTABLISHED,
    made by `mark_context_sent` after a successful context-bearing send.
    There is no way back; a new session starts a new state.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    phase: ConversationPhase = ConversationPhase.AWAITING_FIRST_CONTEXT
    sent_document_ids: set[str] = field(default_factory=set)
    turns: int = 0

    @property
    def full_context_sent(self) -> bool:
        return self.phase is ConversationPhase.CONTEXT_ESTABLISHED

    def mark_context_sent(self, document_ids: Iterable[str]) -> None:
        self.sent_document_ids.update(document_ids)
        if self.phase is ConversationPhase.AWAITING_FIRST_CONTEXT:
            self.phase = ConversationPhase.CONTEXT_ESTABLISHED
            logger.info("Session %s: compressed context established", self.session_id)

    def record_documents(self, document_ids: Iterable[str]) -> None:
        self.sent_document_ids.update(document_ids)
