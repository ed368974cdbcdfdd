from collections.abc import Callable

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk

from regchat.keywords import extract_keywords
from regchat.types import Chunk, ChunkMetadata


def build_chunk(
    content: str,
    *,
    doc: str = "doc",
    position: int = 0,
    start: int | None = None,
    section: str = "",
    title: str = "금연구역 지정 관리 업무지침",
) -> Chunk:
    offset = position * 10_000 if start is None else start
    return Chunk(
        id=f"{doc}-chunk-{position:04d}",
        document_id=doc,
        content=content,
        keywords=extract_keywords(content),
        metadata=ChunkMetadata(
            source=f"{doc}.pdf",
            title=title,
            page_index=1,
            logical_page_number=None,
            section=section,
            position=position,
            start_offset=offset,
            end_offset=offset + len(content),
            original_size=100_000,
            document_type="guideline",
        ),
    )


@pytest.fixture
def make_chunk() -> Callable[..., Chunk]:
    return build_chunk


class RecordingLLM:
    """Chat-model stand-in that records prompts and replays canned answers."""

    def __init__(self, answers: list[str] | None = None) -> None:
        self.answers = answers or ["금연구역 지정은 시·도지사가 한다."]
        self.calls: list[list] = []

    def invoke(self, messages: list) -> AIMessage:
        self.calls.append(list(messages))
        return AIMessage(content=self.answers[(len(self.calls) - 1) % len(self.answers)])

    def stream(self, messages: list):
        answer = self.invoke(messages).content
        for word in answer.split(" "):
            yield AIMessageChunk(content=word + " ")


@pytest.fixture
def recording_llm() -> RecordingLLM:
    return RecordingLLM()
