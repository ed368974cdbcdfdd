import pytest

from regchat.conversation.assembler import _SYSTEM_PROMPT, PromptAssembler
from regchat.conversation.state import ConversationState
from regchat.generation.fallback import DEGRADED_NOTICE, NO_EVIDENCE_MESSAGE, ExtractiveAnswerer
from regchat.obs.tracing import GroundednessEvaluator
from regchat.types import ScoredChunk


def test_prompt_contains_groundedness_constraints() -> None:
    assert "Answer only from the supplied source material" in _SYSTEM_PROMPT
    assert "Cite excerpts with their ids" in _SYSTEM_PROMPT
    assert "synonyms" in _SYSTEM_PROMPT


def test_groundedness_evaluator_high_for_cited_supported_answer() -> None:
    evaluator = GroundednessEvaluator(min_overlap=0.3)
    answer = "금연구역에서 흡연한 자에게는 과태료를 부과한다 [doc-chunk-0002]."
    sources = ["금연구역에서 흡연한 자에게는 10만원 이하의 과태료를 부과한다."]

    assert evaluator.score(answer, sources) >= 0.95
    assert evaluator.score("담배 광고는 허용된다.", sources) == 0.0


def test_extractive_answer_lines_are_grounded_in_their_chunks(make_chunk) -> None:
    chunks = [
        make_chunk("금연구역 관리자는 금연구역 표지를 설치하여야 한다. 표지 규격은 별표와 같다.", position=0),
        make_chunk("금연구역에서 흡연한 자에게는 10만원 이하의 과태료를 부과한다.", position=1),
    ]
    results = [ScoredChunk(chunk=chunk, score=1.0, route="exact") for chunk in chunks]

    answer, citations = ExtractiveAnswerer().answer(["금연구역", "과태료"], results)

    lines = answer.splitlines()
    assert lines[0] == DEGRADED_NOTICE
    assert citations == [chunk.id for chunk in chunks]
    bodies = [line.split(". ", 1)[1] for line in lines[1:]]
    assert GroundednessEvaluator().score("\n".join(bodies), [c.content for c in chunks]) >= 0.95


def test_extractive_answer_admits_missing_evidence() -> None:
    assert ExtractiveAnswerer().answer(["금연"], []) == (NO_EVIDENCE_MESSAGE, [])


def test_first_prompt_requires_compressed_context() -> None:
    with pytest.raises(ValueError):
        PromptAssembler().build(ConversationState(), "금연구역이란?", compressed_context=None)


def test_established_prompt_carries_only_excerpts(make_chunk) -> None:
    state = ConversationState()
    state.mark_context_sent(["doc"])
    chunk = make_chunk("금연구역에서 흡연한 자에게는 과태료를 부과한다.", position=4, section="제34조(과태료)")

    messages = PromptAssembler().build(
        state,
        "과태료는?",
        retrieved=[ScoredChunk(chunk=chunk, score=1.0, route="exact")],
        history=[("금연구역이란?", "금연구역은 흡연이 금지된 장소이다.")],
    )

    human = messages[-1].content
    assert "[doc-chunk-0004]" in human
    assert "제34조(과태료)" in human
    assert "Source material (compressed)" not in human
    assert "provided earlier" not in human
    assert human.index("[doc-chunk-0004]") < human.index("Question: 과태료는?")
    assert [m.content for m in messages[1:3]] == ["금연구역이란?", "금연구역은 흡연이 금지된 장소이다."]
