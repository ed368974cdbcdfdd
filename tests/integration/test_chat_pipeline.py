from pathlib import Path

from regchat.compression.engine import CompressionEngine
from regchat.config import ChunkingConfig, ConversationConfig
from regchat.conversation.session import ChatSession, CorpusContext
from regchat.conversation.state import ConversationPhase
from regchat.generation.client import LanguageModelClient
from regchat.ingest.chunker import ChunkSegmenter
from regchat.ingest.parser import ParserRegistry
from regchat.ingest.pipeline import IngestPipeline
from regchat.retrieval.retriever import TieredRetriever
from regchat.store.document_store import CorpusCache, JsonDocumentStore
from regchat.synonyms.static import basic_dictionary, comprehensive_dictionary

DECREE = (
    "제2조(금연구역) 법 제9조제4항에 따른 금연구역은 다음 각 호와 같다.\n"
    "1. 공동주택의 복도, 계단, 엘리베이터 및 지하주차장\n"
    "2. 어린이집과 유치원 시설 경계선으로부터 10미터 이내의 구역\n\n"
    "제3조(과태료) 금연구역에서 흡연한 자에게는 10만원 이하의 과태료를 부과한다.\n\f"
    "제4조(신고) 누구든지 금연구역에서 흡연하는 사람을 발견하면 보건소에 신고할 수 있다.\n"
)
GUIDE = (
    "금연구역 지정 관리 업무지침\n\n"
    + "시·군·구는 매년 금연구역 지정 현황을 점검하고 결과를 보건소 누리집에 게시한다. " * 40
    + "\n\n체육시설의 관리자는 금연구역 안내 표지를 출입구에 설치하여야 한다.\n"
)


def _source_dir(tmp_path: Path) -> Path:
    source = tmp_path / "source"
    source.mkdir()
    (source / "decree.txt").write_text(DECREE, encoding="utf-8")
    (source / "guide.txt").write_text(GUIDE, encoding="utf-8")
    (source / "empty.txt").write_text("   \n", encoding="utf-8")
    (source / "notes.docx").write_bytes(b"ignored")
    return source


def _pipeline(store=None) -> IngestPipeline:
    return IngestPipeline(ParserRegistry(), ChunkSegmenter(ChunkingConfig(chunk_size=500, overlap_size=50)), store)


def _session(cache: CorpusCache, llm) -> ChatSession:
    config = ConversationConfig()
    return ChatSession(
        CorpusContext(cache, CompressionEngine(), token_budget=config.context_token_budget),
        TieredRetriever(corpus_synonyms=basic_dictionary(), comprehensive_synonyms=comprehensive_dictionary()),
        LanguageModelClient(llm, timeout_seconds=5.0),
        config=config,
    )


def test_directory_ingest_feeds_a_two_phase_conversation(tmp_path: Path, recording_llm) -> None:
    store = JsonDocumentStore(tmp_path / "data")
    report = _pipeline(store).ingest_directory(_source_dir(tmp_path))

    assert set(report.documents) == {"decree", "guide"}
    assert list(report.failures) == [str(tmp_path / "source" / "empty.txt")]
    assert report.chunk_count == sum(report.documents.values())

    session = _session(CorpusCache(store), recording_llm)
    first = session.ask("공동주택 금연구역은 어디인가요?")
    second = session.ask("금연구역 흡연 과태료는 얼마인가요?")
    third = session.ask("체육시설 표지는 어디에 설치하나요?")

    assert first.context_mode == "full_context"
    assert session.state.sent_document_ids == {"decree", "guide"}
    assert second.context_mode in {"retrieval", "compressed_retrieval"}
    assert third.phase is ConversationPhase.CONTEXT_ESTABLISHED
    assert "체육시설의 관리자는" in recording_llm.calls[2][-1].content
    assert all("Source material (compressed)" not in call[-1].content for call in recording_llm.calls[1:])

    records = session.trace_store.list_recent()
    assert [record.context_mode for record in records][0] == "full_context"
    assert not any(record.degraded for record in records)


def test_corpus_falls_back_to_live_extraction(tmp_path: Path, recording_llm) -> None:
    source = _source_dir(tmp_path)
    pipeline = _pipeline()
    cache = CorpusCache(JsonDocumentStore(tmp_path / "never-built"), live_loader=pipeline.live_loader(source))

    corpus = cache.load()

    assert set(corpus) == {"decree", "guide"}
    decree_pages = {chunk.metadata.page_index for chunk in corpus["decree"]}
    assert decree_pages <= {1, 2}
    result = _session(cache, recording_llm).ask("과태료 기준은?")
    assert result.context_mode == "full_context"
    assert not result.degraded
