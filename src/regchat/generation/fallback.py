"""Degraded answer path used when the language model is unavailable."""

from __future__ import annotations

import threading
from collections import OrderedDict

from regchat.text import normalize_for_hash, split_sentences
from regchat.types import ScoredChunk

NO_EVIDENCE_MESSAGE = "제공된 문서에서 확인할 수 있는 근거를 찾지 못했습니다."
DEGRADED_NOTICE = "언어 모델 응답을 받지 못해 관련 문서 발췌로 대신 답변합니다."


class ExtractiveAnswerer:
    """Answers from retrieval evidence without any model call.

    Each of the top results contributes its best sentence, the one sharing
    the most query terms, followed by a chunk citation.
    """

    def __init__(self, max_items: int = 3) -> None:
        self.max_items = max_items

    def answer(self, keywords: list[str], results: list[ScoredChunk]) -> tuple[str, list[str]]:
        citations: list[str] = []
        lines: list[str] = []
        for result in results[: self.max_items]:
            snippet = _best_sentence(result.chunk.content, keywords)
            if not snippet:
                continue
            citations.append(result.chunk.id)
            lines.append(f"{len(lines) + 1}. {snippet} [{result.chunk.id}]")

        if not lines:
            return NO_EVIDENCE_MESSAGE, []
        return "\n".join([DEGRADED_NOTICE, *lines]), citations


class AnswerCache:
    """Process-wide LRU of successful answers keyed by normalized question."""

    def __init__(self, max_size: int = 64) -> None:
        self.max_size = max_size
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, question: str) -> str | None:
        key = normalize_for_hash(question)
        with self._lock:
            answer = self._entries.get(key)
            if answer is not None:
                self._entries.move_to_end(key)
            return answer

    def put(self, question: str, answer: str) -> None:
        if self.max_size <= 0:
            return
        key = normalize_for_hash(question)
        with self._lock:
            self._entries[key] = answer
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


def _best_sentence(content: str, keywords: list[str], max_chars: int = 300) -> str:
    terms = [keyword.lower() for keyword in keywords if keyword]
    best = ""
    best_hits = 0
    for _, _, sentence in split_sentences(content):
        lowered = sentence.lower()
        hits = sum(1 for term in terms if term in lowered)
        if hits > best_hits:
            best, best_hits = sentence, hits
    if not best:
        return ""
    compact = " ".join(best.split())
    return compact if len(compact) <= max_chars else compact[: max_chars - 3].rstrip() + "..."
