"""Offline synonym dictionary build with bounded concurrency and resumable progress."""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from regchat.config import SynonymBuildConfig
from regchat.errors import GenerationFailure, RateLimited
from regchat.keywords import candidate_terms, keyword_weights
from regchat.store.document_store import DocumentStore
from regchat.synonyms.generator import SynonymGenerator
from regchat.synonyms.static import basic_dictionary
from regchat.text import normalize_keyword
from regchat.types import Chunk, Provenance, SynonymDictionary

logger = logging.getLogger(__name__)


class RateLimiter:
    """Spaces calls at least `60 / requests_per_minute` seconds apart across threads."""

    def __init__(
        self,
        requests_per_minute: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.interval = 60.0 / requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._next_slot = 0.0
        self._lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            now = self._clock()
            wait = self._next_slot - now
            if wait > 0:
                self._sleep(wait)
                now += wait
            self._next_slot = now + self.interval


@dataclass(slots=True)
class BuildReport:
    candidates: int = 0
    generated: list[str] = field(default_factory=list)
    skipped: int = 0
    failed: dict[str, str] = field(default_factory=dict)
    interrupted: bool = False
    entries: int = 0


class SynonymDictionaryBuilder:
    """Extracts candidate keywords from the corpus and fills the dictionary.

    Progress is persisted after every batch. Keywords already marked as
    processed in the stored dictionary are skipped, so re-running a build
    after a failure or a quota stop resumes where it left off.
    """

    def __init__(
        self,
        generator: SynonymGenerator,
        store: DocumentStore,
        config: SynonymBuildConfig | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.generator = generator
        self.store = store
        self.config = config or SynonymBuildConfig()
        self.rate_limiter = rate_limiter or RateLimiter(self.config.requests_per_minute)
        self._sleep = sleep

    def extract_candidates(self, chunks: list[Chunk]) -> list[str]:
        """Weight-table hits first (heaviest first), then frequent corpus terms."""

        corpus = "\n".join(chunk.content for chunk in chunks).lower()
        table = keyword_weights()
        hits = sorted((term for term in table if term in corpus), key=lambda t: -table[t])

        counts: Counter[str] = Counter()
        for chunk in chunks:
            counts.update(normalize_keyword(term) for term in candidate_terms(chunk.content))
        frequent = [term for term, count in counts.most_common() if count >= self.config.min_frequency]

        ordered: list[str] = []
        for term in [*hits, *frequent]:
            if term not in ordered:
                ordered.append(term)
            if len(ordered) >= self.config.max_candidates:
                break
        return ordered

    def build(self, chunks: list[Chunk]) -> tuple[SynonymDictionary, BuildReport]:
        dictionary = self.store.get_synonym_dictionary() or basic_dictionary()
        candidates = self.extract_candidates(chunks)
        pending = [term for term in candidates if term not in dictionary.processed]
        report = BuildReport(candidates=len(candidates), skipped=len(candidates) - len(pending))
        logger.info("Synonym build: %d candidates, %d already processed", len(candidates), report.skipped)

        size = self.config.batch_size
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            for offset in range(0, len(pending), size):
                batch = pending[offset : offset + size]
                throttled = self._run_batch(pool, batch, dictionary, report)
                dictionary.version += 1
                self.store.put_synonym_dictionary(dictionary)
                if throttled:
                    report.interrupted = True
                    logger.warning(
                        "Synonym build stopped by rate limiting after %d/%d keywords; rerun to resume",
                        offset + len(batch),
                        len(pending),
                    )
                    break

        if not pending:
            self.store.put_synonym_dictionary(dictionary)
        report.entries = len(dictionary)
        return dictionary, report

    def _run_batch(
        self,
        pool: ThreadPoolExecutor,
        batch: list[str],
        dictionary: SynonymDictionary,
        report: BuildReport,
    ) -> bool:
        throttled = False
        futures = {pool.submit(self._generate_with_retry, keyword): keyword for keyword in batch}
        for future in as_completed(futures):
            keyword = futures[future]
            try:
                synonyms = future.result()
            except RateLimited as exc:
                report.failed[keyword] = f"rate limited: {exc}"
                throttled = True
                continue
            except GenerationFailure as exc:
                logger.error("Synonym generation failed for %r: %s", keyword, exc)
                report.failed[keyword] = str(exc)
                continue

            if synonyms:
                dictionary.merge(keyword, synonyms[: self.config.max_synonyms_per_keyword], Provenance.GENERATED)
            dictionary.processed.add(keyword)
            report.generated.append(keyword)
        return throttled

    def _generate_with_retry(self, keyword: str) -> list[str]:
        attempts = self.config.max_retries
        for attempt in range(attempts):
            self.rate_limiter.acquire()
            try:
                return [normalize_keyword(s) for s in self.generator.generate_synonyms(keyword)]
            except RateLimited:
                if attempt == attempts - 1:
                    raise
                delay = min(
                    self.config.base_delay * (self.config.exponential_base**attempt),
                    self.config.max_delay,
                )
                logger.warning(
                    "Rate limited on %r (attempt %d/%d), retrying in %.1fs",
                    keyword,
                    attempt + 1,
                    attempts,
                    delay,
                )
                self._sleep(delay)
        raise RateLimited(f"retries exhausted for {keyword!r}")
