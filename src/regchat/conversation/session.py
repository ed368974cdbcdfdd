"""One chat turn end to end: analyze, retrieve, compress, assemble, generate."""

from __future__ import annotations

import logging
import math
import re
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from langchain_core.messages import BaseMessage

from regchat.compression.engine import CompressionEngine
from regchat.config import ConversationConfig
from regchat.conversation.analyzer import KeywordQuestionAnalyzer, QuestionAnalyzer
from regchat.conversation.assembler import PromptAssembler
from regchat.conversation.state import ConversationPhase, ConversationState
from regchat.errors import GenerationCancelled, GenerationFailure
from regchat.generation.client import CancellationToken, LanguageModelClient, message_text
from regchat.generation.fallback import AnswerCache, ExtractiveAnswerer
from regchat.keywords import query_keyword_weights
from regchat.obs.tracing import Timer, TraceStore
from regchat.retrieval.retriever import TieredRetriever
from regchat.store.document_store import CorpusCache
from regchat.text import estimate_tokens
from regchat.types import Chunk, CompressionResult, ScoredChunk

logger = logging.getLogger(__name__)


class CorpusContext:
    """Process-wide corpus plus its cached full compression.

    The full-corpus compression is query independent, so it is computed once
    and reused by every session's first turn until `invalidate` is called.
    """

    def __init__(self, cache: CorpusCache, engine: CompressionEngine, *, token_budget: int) -> None:
        self.cache = cache
        self.engine = engine
        self.token_budget = token_budget
        self._compressed: CompressionResult | None = None
        self._lock = threading.Lock()

    def chunks(self) -> list[Chunk]:
        return self.cache.all_chunks()

    def compressed(self) -> CompressionResult:
        if self._compressed is not None:
            return self._compressed
        with self._lock:
            if self._compressed is None:
                self._compressed = self.engine.compress(self.chunks(), token_budget=self.token_budget)
                logger.info(
                    "Full corpus compressed: %d -> %d chars, quality %.1f, mode %s",
                    self._compressed.original_length,
                    self._compressed.compressed_length,
                    self._compressed.quality_score,
                    self._compressed.mode,
                )
        return self._compressed

    def invalidate(self) -> None:
        with self._lock:
            self._compressed = None
        self.cache.invalidate()


@dataclass(slots=True)
class TurnResult:
    answer: str
    phase: ConversationPhase
    context_mode: str
    tier: str
    citations: list[str] = field(default_factory=list)
    chunk_ids: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    degraded: bool = False
    retryable: bool = False
    cached: bool = False
    warnings: list[str] = field(default_factory=list)
    trace_id: str | None = None


class ChatSession:
    """Runs user turns against the corpus for one conversation.

    Starting a turn cancels the previous in-flight model call of the same
    session. When the model is missing, times out or fails, the turn degrades
    to a cached answer for the same question or to an extractive answer, and
    the conversation state is left untouched so the next turn retries.
    """

    def __init__(
        self,
        corpus: CorpusContext,
        retriever: TieredRetriever,
        llm_client: LanguageModelClient | None = None,
        *,
        config: ConversationConfig | None = None,
        analyzer: QuestionAnalyzer | None = None,
        assembler: PromptAssembler | None = None,
        answerer: ExtractiveAnswerer | None = None,
        answer_cache: AnswerCache | None = None,
        trace_store: TraceStore | None = None,
        state: ConversationState | None = None,
    ) -> None:
        self.corpus = corpus
        self.retriever = retriever
        self.llm_client = llm_client
        self.config = config or ConversationConfig()
        self.analyzer = analyzer or KeywordQuestionAnalyzer()
        self.assembler = assembler or PromptAssembler()
        self.answerer = answerer or ExtractiveAnswerer()
        self.answer_cache = answer_cache if answer_cache is not None else AnswerCache(self.config.answer_cache_size)
        self.trace_store = trace_store or TraceStore()
        self.state = state or ConversationState()
        self.history: deque[tuple[str, str]] = deque(maxlen=self.assembler.history_turns)
        self._active_token: CancellationToken | None = None
        self._lock = threading.Lock()

    @property
    def session_id(self) -> str:
        return self.state.session_id

    def cancel(self) -> None:
        """Cancel the in-flight model call, if any."""

        with self._lock:
            if self._active_token is not None:
                self._active_token.cancel()
                self._active_token = None

    def ask(self, question: str, *, on_token: Callable[[str], None] | None = None) -> TurnResult:
        token = CancellationToken()
        with self._lock:
            if self._active_token is not None:
                self._active_token.cancel()
            self._active_token = token

        try:
            with Timer() as timer:
                result, messages, snippets = self._run_turn(question, token, on_token)
        finally:
            with self._lock:
                if self._active_token is token:
                    self._active_token = None

        record = self.trace_store.create_record(
            session_id=self.session_id,
            question=question,
            answer=result.answer,
            phase=result.phase.value,
            context_mode=result.context_mode,
            tier=result.tier,
            chunk_ids=result.chunk_ids,
            citations=result.citations,
            source_snippets=snippets,
            input_tokens=sum(estimate_tokens(message_text(m)) for m in messages),
            output_tokens=estimate_tokens(result.answer),
            latency_ms=timer.elapsed_ms,
            degraded=result.degraded,
            warnings=result.warnings,
        )
        result.trace_id = record.trace_id
        return result

    def _run_turn(
        self,
        question: str,
        token: CancellationToken,
        on_token: Callable[[str], None] | None,
    ) -> tuple[TurnResult, list[BaseMessage], list[str]]:
        analysis = self.analyzer.analyze(question)
        tiered = self.retriever.retrieve(
            analysis.keywords,
            self.corpus.chunks(),
            top_k=self.config.top_k,
            cancel_token=token,
            timeout=self.config.generation_timeout_seconds,
        )
        analysis.expanded_keywords = tiered.keywords
        retrieved = tiered.results
        warnings: list[str] = list(tiered.warnings)

        awaiting = self.state.phase is ConversationPhase.AWAITING_FIRST_CONTEXT
        compression: CompressionResult | None = None
        if awaiting:
            compression = self.corpus.compressed()
            context_mode = "full_context"
            context_text: str | None = compression.compressed_text
            snippets = [compression.compressed_text]
        else:
            volume = sum(len(result.chunk.content) for result in retrieved)
            if math.ceil(volume / self.corpus.engine.config.chars_per_token) > self.config.turn_token_budget:
                compression = self.corpus.engine.compress(
                    [result.chunk for result in retrieved],
                    token_budget=self.config.turn_token_budget,
                    keyword_weights=query_keyword_weights(tiered.keywords),
                )
                context_mode = "compressed_retrieval"
                context_text = compression.compressed_text
                snippets = [compression.compressed_text]
            else:
                context_mode = "retrieval"
                context_text = None
                snippets = [result.chunk.content for result in retrieved]
        if compression is not None:
            warnings.extend(compression.warnings)

        messages = self.assembler.build(
            self.state,
            question,
            compressed_context=context_text,
            retrieved=retrieved,
            history=self.history,
        )
        base = TurnResult(
            answer="",
            phase=self.state.phase,
            context_mode=context_mode,
            tier=tiered.tier,
            chunk_ids=[result.chunk.id for result in retrieved],
            keywords=tiered.keywords,
            warnings=warnings,
        )

        if self.llm_client is None:
            return self._degraded(base, question, tiered.keywords, retrieved, "language model not configured"), messages, snippets

        try:
            if token.cancelled:
                raise GenerationCancelled("superseded before the model call")
            answer = self.llm_client.generate(
                messages,
                stream=on_token is not None,
                cancel_token=token,
                timeout=self.config.generation_timeout_seconds,
                on_token=on_token,
            )
        except GenerationCancelled:
            logger.info("Session %s: turn cancelled by a newer request", self.session_id)
            base.answer = ""
            base.degraded = True
            base.warnings.append("cancelled: superseded by a newer question")
            return base, messages, snippets
        except GenerationFailure as exc:
            logger.warning("Session %s: generation failed: %s", self.session_id, exc)
            return self._degraded(base, question, tiered.keywords, retrieved, str(exc), retryable=True), messages, snippets

        with self._lock:
            if awaiting and compression is not None and compression.compressed_text:
                self.state.mark_context_sent(_document_ids(compression.selected_chunk_ids, self.corpus.chunks()))
            else:
                self.state.record_documents(result.chunk.document_id for result in retrieved)
            self.state.turns += 1
            self.history.append((question, answer))

        self.answer_cache.put(question, answer)
        base.answer = answer
        base.phase = self.state.phase
        base.citations = _citations(answer)
        return base, messages, snippets

    def _degraded(
        self,
        base: TurnResult,
        question: str,
        keywords: list[str],
        retrieved: list[ScoredChunk],
        reason: str,
        *,
        retryable: bool = False,
    ) -> TurnResult:
        base.degraded = True
        base.retryable = retryable
        base.warnings.append(f"degraded answer: {reason}")
        cached = self.answer_cache.get(question)
        if cached is not None:
            base.answer = cached
            base.cached = True
            base.citations = _citations(cached)
            return base
        base.answer, base.citations = self.answerer.answer(keywords, retrieved)
        return base


def _document_ids(chunk_ids: tuple[str, ...], chunks: list[Chunk]) -> set[str]:
    wanted = set(chunk_ids)
    return {chunk.document_id for chunk in chunks if chunk.id in wanted}


def _citations(answer: str) -> list[str]:
    found: list[str] = []
    for citation in re.findall(r"\[([^\]]+)\]", answer):
        if citation not in found:
            found.append(citation)
    return found

