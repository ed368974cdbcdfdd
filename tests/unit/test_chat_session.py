import threading
import time

from langchain_core.messages import AIMessage

from regchat.compression.engine import CompressionEngine
from regchat.config import ConversationConfig, RetrievalConfig
from regchat.conversation.session import ChatSession, CorpusContext
from regchat.conversation.state import ConversationPhase, ConversationState
from regchat.generation.client import LanguageModelClient
from regchat.generation.fallback import DEGRADED_NOTICE, AnswerCache
from regchat.retrieval.retriever import TieredRetriever
from regchat.store.document_store import CorpusCache, InMemoryDocumentStore
from regchat.synonyms.generator import SynonymGenerator
from regchat.synonyms.static import basic_dictionary, comprehensive_dictionary

CORPUS = [
    "제6조(금연구역의 지정) 시·도지사는 다수인이 모이는 장소를 금연구역으로 지정하여야 한다.",
    "금연구역 관리자는 금연구역 표지를 설치하여야 한다. 표지에는 과태료 부과 안내를 포함한다.",
    "금연구역에서 흡연한 자에게는 10만원 이하의 과태료를 부과한다.",
]
FIRST_QUESTION = "금연구역 지정 기준은 무엇인가요?"


class _FailingLLM:
    def invoke(self, _messages):
        raise RuntimeError("upstream returned 500")


class _FirstCallBlocksLLM:
    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self._calls = 0
        self._lock = threading.Lock()

    def invoke(self, _messages):
        with self._lock:
            self._calls += 1
            first = self._calls == 1
        if first:
            self.started.set()
            self.release.wait(timeout=2.0)
            return AIMessage(content="stale answer")
        return AIMessage(content="fresh answer")


class _StalledSynonymGenerator(SynonymGenerator):
    def __init__(self) -> None:
        self.release = threading.Event()

    def generate_synonyms(self, keyword: str) -> list[str]:
        self.release.wait(timeout=3.0)
        return ["흡연행위"]


def _session(make_chunk, llm=None, *, config=None, answer_cache=None, generator=None) -> ChatSession:
    store = InMemoryDocumentStore()
    store.put_chunks("doc", [make_chunk(text, position=i) for i, text in enumerate(CORPUS)])
    config = config or ConversationConfig()
    corpus = CorpusContext(CorpusCache(store), CompressionEngine(), token_budget=config.context_token_budget)
    retriever = TieredRetriever(
        corpus_synonyms=basic_dictionary(),
        comprehensive_synonyms=comprehensive_dictionary(),
        generator=generator,
        config=RetrievalConfig(min_results=10) if generator else None,
    )
    client = LanguageModelClient(llm, timeout_seconds=config.generation_timeout_seconds) if llm else None
    return ChatSession(corpus, retriever, client, config=config, answer_cache=answer_cache)


def test_state_only_moves_forward() -> None:
    state = ConversationState()

    assert state.phase is ConversationPhase.AWAITING_FIRST_CONTEXT
    assert not state.full_context_sent

    state.mark_context_sent(["doc-a"])
    state.mark_context_sent(["doc-b"])
    state.record_documents(["doc-c"])

    assert state.full_context_sent
    assert state.sent_document_ids == {"doc-a", "doc-b", "doc-c"}
    assert ConversationState().session_id != state.session_id


def test_first_turn_sends_compressed_corpus_then_only_excerpts(make_chunk, recording_llm) -> None:
    session = _session(make_chunk, recording_llm)

    first = session.ask(FIRST_QUESTION)
    second = session.ask("과태료는 얼마인가요?")

    assert first.context_mode == "full_context"
    assert first.phase is ConversationPhase.CONTEXT_ESTABLISHED
    assert not first.degraded
    assert session.state.sent_document_ids == {"doc"}

    first_prompt = recording_llm.calls[0][-1].content
    assert "Source material (compressed)" in first_prompt
    assert "제6조(금연구역의 지정)" in first_prompt

    assert second.context_mode == "retrieval"
    assert second.phase is ConversationPhase.CONTEXT_ESTABLISHED
    second_messages = recording_llm.calls[1]
    assert "Source excerpts selected for this question" in second_messages[-1].content
    assert "Source material (compressed)" not in second_messages[-1].content
    assert any(message.content == FIRST_QUESTION for message in second_messages[:-1])
    assert session.state.turns == 2


def test_large_retrieval_is_compressed_to_turn_budget(make_chunk, recording_llm) -> None:
    session = _session(make_chunk, recording_llm, config=ConversationConfig(turn_token_budget=10))

    session.ask(FIRST_QUESTION)
    result = session.ask("금연구역 과태료 부과 기준")

    assert result.context_mode == "compressed_retrieval"
    assert "Source excerpts selected for this question" in recording_llm.calls[1][-1].content


def test_missing_model_degrades_without_transition(make_chunk) -> None:
    session = _session(make_chunk)

    result = session.ask(FIRST_QUESTION)

    assert result.degraded
    assert not result.retryable
    assert result.phase is ConversationPhase.AWAITING_FIRST_CONTEXT
    assert result.answer.startswith(DEGRADED_NOTICE)
    assert result.citations
    assert any("language model not configured" in warning for warning in result.warnings)
    assert session.state.turns == 0


def test_failed_generation_is_retryable_and_keeps_awaiting(make_chunk) -> None:
    session = _session(make_chunk, _FailingLLM())

    first = session.ask(FIRST_QUESTION)
    again = session.ask(FIRST_QUESTION)

    assert first.degraded and first.retryable
    assert session.state.phase is ConversationPhase.AWAITING_FIRST_CONTEXT
    assert again.context_mode == "full_context"


def test_timeout_degrades_to_extractive_answer(make_chunk) -> None:
    llm = _FirstCallBlocksLLM()
    session = _session(make_chunk, llm, config=ConversationConfig(generation_timeout_seconds=0.1))
    try:
        result = session.ask(FIRST_QUESTION)
    finally:
        llm.release.set()

    assert result.degraded
    assert result.retryable
    assert any("no response within" in warning for warning in result.warnings)
    assert session.state.phase is ConversationPhase.AWAITING_FIRST_CONTEXT


def test_cached_answer_serves_failed_generation(make_chunk, recording_llm) -> None:
    cache = AnswerCache()
    _session(make_chunk, recording_llm, answer_cache=cache).ask(FIRST_QUESTION)

    result = _session(make_chunk, _FailingLLM(), answer_cache=cache).ask(FIRST_QUESTION)

    assert result.degraded
    assert result.cached
    assert result.answer == recording_llm.answers[0]


def test_newer_question_cancels_in_flight_turn(make_chunk) -> None:
    llm = _FirstCallBlocksLLM()
    session = _session(make_chunk, llm)
    outcome = {}

    worker = threading.Thread(target=lambda: outcome.setdefault("first", session.ask(FIRST_QUESTION)))
    try:
        worker.start()
        assert llm.started.wait(timeout=2.0)
        second = session.ask("과태료는 얼마인가요?")
        worker.join(timeout=2.0)
    finally:
        llm.release.set()

    first = outcome["first"]
    assert first.answer == ""
    assert first.degraded
    assert any(warning.startswith("cancelled") for warning in first.warnings)
    assert second.answer == "fresh answer"
    assert session.state.phase is ConversationPhase.CONTEXT_ESTABLISHED


def test_streaming_turn_and_trace_record(make_chunk, recording_llm) -> None:
    session = _session(make_chunk, recording_llm)
    pieces: list[str] = []

    result = session.ask(FIRST_QUESTION, on_token=pieces.append)

    assert "".join(pieces) == result.answer
    record = session.trace_store.get(result.trace_id)
    assert record.context_mode == "full_context"
    assert record.input_tokens > 0
    assert record.session_id == session.session_id


def test_stalled_synonym_generation_is_bounded_by_turn_deadline(make_chunk, recording_llm) -> None:
    generator = _StalledSynonymGenerator()
    session = _session(
        make_chunk,
        recording_llm,
        config=ConversationConfig(generation_timeout_seconds=0.3),
        generator=generator,
    )
    try:
        started = time.monotonic()
        result = session.ask("흡연 과태료")
        elapsed = time.monotonic() - started
    finally:
        generator.release.set()

    assert elapsed < 2.0
    assert not result.degraded
    assert result.tier == "comprehensive_synonyms"
    assert any("generated_synonyms tier skipped" in warning for warning in result.warnings)
    assert result.phase is ConversationPhase.CONTEXT_ESTABLISHED


def test_history_keeps_only_recent_turns(make_chunk, recording_llm) -> None:
    session = _session(make_chunk, recording_llm)

    for index in range(7):
        session.ask(f"과태료 질문 {index}")

    assert len(session.history) == session.assembler.history_turns
    assert session.history[-1][0] == "과태료 질문 6"
    assert session.history[0][0] == "과태료 질문 3"
