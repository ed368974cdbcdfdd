from regchat.config import ChunkingConfig
from regchat.ingest.chunker import ChunkSegmenter
from regchat.retrieval.highlight import find_highlight_spans
from regchat.retrieval.retriever import LexicalRetriever
from regchat.types import ParsedDocument

MULTI_LINE_BLOCK = "\n".join(
    ["금연구역 표지 설치 기준은 다음과 같으며"]
    + [f"세부 안내 문구 {i}번 항목의 내용이 이어지며 관련 서식과 첨부 자료를 함께 확인하고" for i in range(1, 7)]
    + ["이를 위반하면 과태료 부과 대상이 된다."]
)


def test_longer_terms_win_and_sentences_with_two_terms_are_marked() -> None:
    text = "금연구역에서는 흡연을 금지한다."

    spans = find_highlight_spans(text, ["금연", "금연구역", "흡연"])

    assert [span.kind for span in spans] == ["sentence", "term", "term"]
    sentence, first, second = spans
    assert (sentence.start, sentence.end) == (0, len(text))
    assert set(sentence.terms) == {"금연구역", "금연", "흡연"}
    assert text[first.start : first.end] == "금연구역"
    assert text[second.start : second.end] == "흡연"


def test_single_term_sentence_gets_no_sentence_span() -> None:
    spans = find_highlight_spans("금연 안내문을 게시한다. 과태료는 별도로 정한다.", ["금연"])

    assert [span.kind for span in spans] == ["term"]


def test_block_spanning_many_lines_is_ranked_but_not_sentence_highlighted() -> None:
    document = ParsedDocument(doc_id="guide", text=MULTI_LINE_BLOCK, metadata={"title": "업무지침"})
    chunks = ChunkSegmenter(ChunkingConfig(chunk_size=150, overlap_size=20)).segment(document)
    terms = ["금연구역", "과태료"]

    spans = find_highlight_spans(MULTI_LINE_BLOCK, terms)
    ranked = LexicalRetriever().rank(terms, chunks)

    assert len(chunks) >= 3
    assert MULTI_LINE_BLOCK.count("\n") + 1 > 5
    assert {span.kind for span in spans} == {"term"}
    assert len(spans) == 2
    ranked_ids = {result.chunk.id for result in ranked}
    assert chunks[0].id in ranked_ids
    assert chunks[-1].id in ranked_ids
    assert "과태료" in chunks[-1].content


def test_same_block_within_line_limit_is_highlighted() -> None:
    text = "금연구역에서 흡연하면\n과태료를 부과한다."

    spans = find_highlight_spans(text, ["금연구역", "과태료"], max_lines=5)
    narrow = find_highlight_spans(text, ["금연구역", "과태료"], max_lines=1)

    assert spans[0].kind == "sentence"
    assert spans[0].terms == ("금연구역", "과태료")
    assert all(span.kind == "term" for span in narrow)
