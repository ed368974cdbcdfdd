"""FastAPI entrypoint for ingest, chat sessions, search, compression and metrics."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from regchat.compression.engine import CompressionEngine
from regchat.config import (
    AppSettings,
    ChunkingConfig,
    CompressionConfig,
    ConversationConfig,
    RetrievalConfig,
    SynonymBuildConfig,
)
from regchat.conversation.analyzer import KeywordQuestionAnalyzer
from regchat.conversation.session import ChatSession, CorpusContext
from regchat.errors import ExtractionFailure
from regchat.generation.client import LanguageModelClient
from regchat.generation.fallback import AnswerCache
from regchat.ingest.chunker import ChunkSegmenter
from regchat.ingest.parser import ParserRegistry
from regchat.ingest.pipeline import IngestPipeline
from regchat.keywords import query_keyword_weights
from regchat.obs.tracing import TraceStore
from regchat.retrieval.highlight import find_highlight_spans
from regchat.retrieval.retriever import TieredRetriever
from regchat.store.document_store import CorpusCache, JsonDocumentStore
from regchat.synonyms.builder import RateLimiter, SynonymDictionaryBuilder
from regchat.synonyms.generator import LlmSynonymGenerator, SynonymGenerator
from regchat.synonyms.static import basic_dictionary, comprehensive_dictionary

logger = logging.getLogger(__name__)


def _create_llm(settings: AppSettings) -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=settings.openai_model, temperature=0)


class IngestRequest(BaseModel):
    path: str
    doc_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AskRequest(BaseModel):
    question: str = Field(min_length=1)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=20)
    max_highlight_lines: int = Field(default=5, ge=1)


class CompressRequest(BaseModel):
    document_ids: list[str] = Field(default_factory=list)
    token_budget: int | None = Field(default=None, ge=1)
    query: str | None = None


def create_app(
    settings: AppSettings | None = None,
    *,
    llm: Any | None = None,
    synonym_generator: SynonymGenerator | None = None,
    conversation_config: ConversationConfig | None = None,
    synonym_build_config: SynonymBuildConfig | None = None,
) -> FastAPI:
    """Wire the pipeline once per process and expose it over HTTP."""

    settings = settings or AppSettings.from_env()
    llm = llm if llm is not None else _create_llm(settings)
    conversation_config = conversation_config or ConversationConfig()
    synonym_build_config = synonym_build_config or SynonymBuildConfig()
    rate_limiter = RateLimiter(synonym_build_config.requests_per_minute)
    if synonym_generator is None and llm is not None:
        synonym_generator = LlmSynonymGenerator(llm)

    store = JsonDocumentStore(settings.data_dir)
    pipeline = IngestPipeline(ParserRegistry(), ChunkSegmenter(ChunkingConfig()), store)
    live_loader = pipeline.live_loader(settings.source_dir) if settings.source_dir else None
    corpus = CorpusContext(
        CorpusCache(store, live_loader=live_loader),
        CompressionEngine(CompressionConfig()),
        token_budget=conversation_config.context_token_budget,
    )
    retriever = TieredRetriever(
        corpus_synonyms=store.get_synonym_dictionary() or basic_dictionary(),
        comprehensive_synonyms=comprehensive_dictionary(),
        generator=synonym_generator,
        config=RetrievalConfig(),
        rate_limiter=rate_limiter,
    )
    llm_client = (
        LanguageModelClient(llm, timeout_seconds=conversation_config.generation_timeout_seconds)
        if llm is not None
        else None
    )
    trace_store = TraceStore()
    answer_cache = AnswerCache(conversation_config.answer_cache_size)
    analyzer = KeywordQuestionAnalyzer()
    sessions: dict[str, ChatSession] = {}
    sessions_lock = threading.Lock()

    app = FastAPI(title="regchat", version="0.1.0")

    def _session(session_id: str) -> ChatSession:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return session

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": llm is not None,
            "documents": len(corpus.cache.load()),
            "chunks": len(corpus.chunks()),
            "synonym_entries": len(retriever.corpus_synonyms),
            "sessions": len(sessions),
        }

    @app.post("/ingest")
    def ingest(request: IngestRequest) -> dict[str, Any]:
        try:
            chunks = pipeline.ingest_path(
                request.path,
                doc_id=request.doc_id,
                extra_metadata=request.metadata,
            )
        except ExtractionFailure as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        corpus.invalidate()
        return {
            "document_id": chunks[0].document_id if chunks else request.doc_id,
            "chunks_created": len(chunks),
            "chunk_ids": [chunk.id for chunk in chunks],
        }

    @app.post("/sessions")
    def create_session() -> dict[str, Any]:
        session = ChatSession(
            corpus,
            retriever,
            llm_client,
            config=conversation_config,
            analyzer=analyzer,
            answer_cache=answer_cache,
            trace_store=trace_store,
        )
        with sessions_lock:
            sessions[session.session_id] = session
        return {"session_id": session.session_id, "phase": session.state.phase.value}

    @app.post("/sessions/{session_id}/ask")
    def ask(session_id: str, request: AskRequest) -> dict[str, Any]:
        session = _session(session_id)
        result = session.ask(request.question)
        payload = asdict(result)
        payload["phase"] = result.phase.value
        return payload

    @app.delete("/sessions/{session_id}")
    def end_session(session_id: str) -> dict[str, Any]:
        with sessions_lock:
            session = sessions.pop(session_id, None)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        session.cancel()
        return {"session_id": session_id, "deleted": True}

    @app.post("/search")
    def search(request: SearchRequest) -> dict[str, Any]:
        analysis = analyzer.analyze(request.query)
        tiered = retriever.retrieve(
            analysis.keywords,
            corpus.chunks(),
            top_k=request.top_k,
            timeout=conversation_config.generation_timeout_seconds,
        )
        return {
            "keywords": analysis.keywords,
            "expanded_keywords": tiered.keywords,
            "tier": tiered.tier,
            "tier_counts": tiered.counts,
            "items": [
                {
                    "chunk_id": hit.chunk.id,
                    "document_id": hit.chunk.document_id,
                    "score": hit.score,
                    "rank": hit.rank,
                    "section": hit.chunk.metadata.section,
                    "page": hit.chunk.metadata.logical_page_number or hit.chunk.metadata.page_index,
                    "text": hit.chunk.content,
                    "highlights": [
                        asdict(span)
                        for span in find_highlight_spans(
                            hit.chunk.content,
                            tiered.keywords,
                            max_lines=request.max_highlight_lines,
                        )
                    ],
                }
                for hit in tiered.results
            ],
        }

    @app.post("/compress")
    def compress(request: CompressRequest) -> dict[str, Any]:
        if request.document_ids:
            chunks = [chunk for doc_id in request.document_ids for chunk in corpus.cache.get(doc_id)]
        else:
            chunks = corpus.chunks()
        weights = None
        if request.query:
            weights = query_keyword_weights(analyzer.analyze(request.query).keywords)
        result = corpus.engine.compress(chunks, token_budget=request.token_budget, keyword_weights=weights)
        is_valid, problems, recommendations = corpus.engine.validate(result, request.token_budget)
        payload = asdict(result)
        payload["preserved_keywords"] = sorted(result.preserved_keywords)
        payload["validation"] = {
            "is_valid": is_valid,
            "warnings": problems,
            "recommendations": recommendations,
        }
        return payload

    @app.post("/synonyms/rebuild")
    def rebuild_synonyms() -> dict[str, Any]:
        if synonym_generator is None:
            raise HTTPException(status_code=503, detail="No synonym generator configured")
        builder = SynonymDictionaryBuilder(synonym_generator, store, synonym_build_config, rate_limiter=rate_limiter)
        dictionary, report = builder.build(corpus.chunks())
        retriever.corpus_synonyms = dictionary
        return asdict(report)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


_settings = AppSettings.from_env()
_configure_logging(_settings.log_level)
app = create_app(_settings)
