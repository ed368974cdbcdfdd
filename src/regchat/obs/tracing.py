"""Per-turn tracing, token accounting and groundedness evaluation."""

from __future__ import annotations

import re
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from regchat.text import tokenize


@dataclass(slots=True)
class TurnRecord:
    trace_id: str
    timestamp_utc: str
    session_id: str
    question: str
    answer: str
    phase: str
    context_mode: str
    tier: str
    chunk_ids: list[str]
    citations: list[str]
    input_tokens: int
    output_tokens: int
    latency_ms: float
    groundedness: float
    degraded: bool = False
    warnings: list[str] = field(default_factory=list)


class GroundednessEvaluator:
    """Share of answer sentences whose tokens overlap the context sent.

    A sentence is grounded when at least `min_overlap` of its tokens occur
    in some context snippet. Citation tags like `[doc-chunk-0001]` are
    ignored. Deterministic, so usable in contract tests.
    """

    def __init__(self, min_overlap: float = 0.35) -> None:
        self.min_overlap = min_overlap

    def score(self, answer: str, source_snippets: list[str]) -> float:
        sentences = [
            sentence.strip()
            for sentence in re.split(r"(?<=[.!?。！？])\s+|\n+", answer)
            if sentence.strip()
        ]
        if not sentences:
            return 1.0
        if not source_snippets:
            return 0.0

        source_tokens = [set(tokenize(snippet)) for snippet in source_snippets]
        grounded = 0
        for sentence in sentences:
            tokens = set(tokenize(re.sub(r"\[[^\]]+\]", "", sentence)))
            if not tokens:
                grounded += 1
                continue
            if any(len(tokens & source) / len(tokens) >= self.min_overlap for source in source_tokens):
                grounded += 1
        return grounded / len(sentences)


class TraceStore:
    """In-memory turn records for API-level observability."""

    def __init__(
        self,
        *,
        groundedness_evaluator: GroundednessEvaluator | None = None,
        max_records: int = 1000,
    ) -> None:
        self._records: dict[str, TurnRecord] = {}
        self._groundedness = groundedness_evaluator or GroundednessEvaluator()
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        session_id: str,
        question: str,
        answer: str,
        phase: str,
        context_mode: str,
        tier: str,
        chunk_ids: list[str],
        citations: list[str],
        source_snippets: list[str],
        input_tokens: int,
        output_tokens: int,
        latency_ms: float,
        degraded: bool = False,
        warnings: list[str] | None = None,
    ) -> TurnRecord:
        record = TurnRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            question=question,
            answer=answer,
            phase=phase,
            context_mode=context_mode,
            tier=tier,
            chunk_ids=chunk_ids,
            citations=citations,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
            groundedness=self._groundedness.score(answer, source_snippets),
            degraded=degraded,
            warnings=list(warnings or []),
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> TurnRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnRecord]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int | dict[str, int]]:
        """Aggregate turn metrics; input tokens show how much context was resent."""

        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_turns": 0,
                "degraded_turns": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_groundedness": 0.0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "context_modes": {},
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_turns": total,
            "degraded_turns": sum(1 for record in records if record.degraded),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_groundedness": sum(record.groundedness for record in records) / total,
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "context_modes": dict(Counter(record.context_mode for record in records)),
        }


class Timer:
    """Simple context timer used by the chat session."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
