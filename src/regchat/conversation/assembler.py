"""Outbound prompt construction for each conversation phase."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from regchat.conversation.state import ConversationPhase, ConversationState
from regchat.types import ScoredChunk

_SYSTEM_PROMPT = """
You answer questions about Korean tobacco-control statutes, enforcement decrees
and administrative guidelines.

Rules:
1) Answer only from the supplied source material; do not use outside knowledge.
2) Quote the relevant article or section in full before interpreting it.
3) Cite excerpts with their ids like [doc-chunk-0003] when ids are given.
4) Before saying the information is missing, check every excerpt for synonyms
   and related facility or legal terms.
5) Answer in formal Korean, using the exact terminology of the source.
""".strip()

_FULL_CONTEXT_TEMPLATE = """
Source material (compressed):
{context}

Question: {question}
""".strip()

_RETRIEVAL_TEMPLATE = """
Source excerpts selected for this question:
{context}

Answer from these excerpts and the conversation so far.
Question: {question}
""".strip()


class PromptAssembler:
    """Builds LangChain messages from the session state and selected context.

    While the session awaits its first context, the prompt carries the full
    compressed corpus. Afterwards it carries only the top retrieved chunks.
    """

    def __init__(self, *, history_turns: int = 4) -> None:
        self.history_turns = history_turns
        self._full_context = ChatPromptTemplate.from_messages(
            [
                ("system", _SYSTEM_PROMPT),
                MessagesPlaceholder(variable_name="chat_history", optional=True),
                ("human", _FULL_CONTEXT_TEMPLATE),
            ]
        )
        self._retrieval = ChatPromptTemplate.from_messages(
            [
                ("system", _SYSTEM_PROMPT),
                MessagesPlaceholder(variable_name="chat_history", optional=True),
                ("human", _RETRIEVAL_TEMPLATE),
            ]
        )

    def build(
        self,
        state: ConversationState,
        question: str,
        *,
        compressed_context: str | None = None,
        retrieved: list[ScoredChunk] | None = None,
        history: Iterable[tuple[str, str]] | None = None,
    ) -> list[BaseMessage]:
        chat_history = _history_messages(history or [], self.history_turns)
        if state.phase is ConversationPhase.AWAITING_FIRST_CONTEXT:
            if compressed_context is None:
                raise ValueError("compressed context is required before it has been sent once")
            return self._full_context.format_messages(
                context=compressed_context,
                question=question,
                chat_history=chat_history,
            )

        if compressed_context is not None:
            context = compressed_context
        else:
            context = format_excerpts(retrieved or [])
        return self._retrieval.format_messages(
            context=context or "(no matching excerpts)",
            question=question,
            chat_history=chat_history,
        )


def format_excerpts(results: list[ScoredChunk]) -> str:
    blocks: list[str] = []
    for result in results:
        meta = result.chunk.metadata
        page = meta.logical_page_number or meta.page_index
        heading = f"[{result.chunk.id}] {meta.title} p.{page}"
        if meta.section:
            heading += f" {meta.section}"
        blocks.append(f"{heading}\n{result.chunk.content.strip()}")
    return "\n\n".join(blocks)


def _history_messages(history: Iterable[tuple[str, str]], limit: int) -> list[Any]:
    messages: list[Any] = []
    for question, answer in list(history)[-limit:] if limit else []:
        messages.append(HumanMessage(content=question))
        messages.append(AIMessage(content=answer))
    return messages
