"""Lexical TF-IDF retrieval with tiered synonym expansion."""

from __future__ import annotations

import logging
import math
import threading
from collections import OrderedDict
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace

from regchat.config import RetrievalConfig
from regchat.errors import GenerationFailure
from regchat.generation.client import CancellationToken, wait_for
from regchat.synonyms.builder import RateLimiter
from regchat.synonyms.expander import SynonymExpander
from regchat.synonyms.generator import SynonymGenerator
from regchat.text import count_occurrences, normalize_keyword
from regchat.types import Chunk, Provenance, ScoredChunk, SynonymDictionary

logger = logging.getLogger(__name__)

TIERS = ("exact", "corpus_synonyms", "comprehensive_synonyms", "generated_synonyms")


class LexicalRetriever:
    """Ranks chunks by cosine similarity of TF-IDF keyword vectors.

    Vectors live in the space of the query terms. A chunk term weight is
    `(1 + log tf) * idf` with `idf = log((N + 1) / (df + 1)) + 1`, where tf
    counts substring occurrences so inflected Korean forms still match.
    Only chunks sharing at least one term with the query are returned.
    """

    def rank(
        self,
        keywords: list[str],
        chunks: list[Chunk],
        weights: Mapping[str, float] | None = None,
        *,
        route: str = "lexical",
    ) -> list[ScoredChunk]:
        terms = [term for term in dict.fromkeys(k.lower() for k in keywords) if term]
        if not terms or not chunks:
            return []

        lowered = [chunk.content.lower() for chunk in chunks]
        tf_rows = [[count_occurrences(term, text) for term in terms] for text in lowered]
        total = len(chunks)
        idf = []
        for column in range(len(terms)):
            df = sum(1 for row in tf_rows if row[column] > 0)
            idf.append(math.log((total + 1) / (df + 1)) + 1.0)

        query = [(weights or {}).get(term, 1.0) * idf[i] for i, term in enumerate(terms)]
        query_norm = math.sqrt(sum(value * value for value in query))

        ranked: list[tuple[float, float, int]] = []
        for index, row in enumerate(tf_rows):
            vector = [(1.0 + math.log(tf)) * idf[i] if tf else 0.0 for i, tf in enumerate(row)]
            dot = sum(q * v for q, v in zip(query, vector))
            if dot <= 0:
                continue
            norm = math.sqrt(sum(value * value for value in vector))
            ranked.append((dot / (query_norm * norm), dot, index))

        ranked.sort(key=lambda item: (-round(item[0], 9), -item[1], item[2]))
        return [
            ScoredChunk(
                chunk=replace(chunks[index], relevance_score=cosine),
                score=cosine,
                route=route,
                rank=rank,
            )
            for rank, (cosine, _, index) in enumerate(ranked, start=1)
        ]


@dataclass(slots=True)
class TierResult:
    tier: str
    keywords: list[str]
    results: list[ScoredChunk]
    counts: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class TieredRetriever:
    """Widens the keyword set tier by tier until enough chunks match.

    Tier keyword sets are nested: each is the previous set plus more
    synonyms, so the number of matching chunks never shrinks from one tier
    to the next. Added synonyms are weighted by `synonym_weight`.

    The generated tier asks the synonym generator on a worker thread, bounded
    by the caller's deadline and cancellation token. Answers are kept in a
    bounded, lock-guarded cache; a batch that finishes after its deadline
    still lands there for later queries. A timed-out or cancelled tier is
    skipped and the previous tier's result stands.
    """

    def __init__(
        self,
        retriever: LexicalRetriever | None = None,
        *,
        corpus_synonyms: SynonymDictionary | None = None,
        comprehensive_synonyms: SynonymDictionary | None = None,
        generator: SynonymGenerator | None = None,
        config: RetrievalConfig | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.retriever = retriever or LexicalRetriever()
        self.corpus_synonyms = corpus_synonyms or SynonymDictionary()
        self.comprehensive_synonyms = comprehensive_synonyms or SynonymDictionary()
        self.generator = generator
        self.config = config or RetrievalConfig()
        self.rate_limiter = rate_limiter
        self._generated: OrderedDict[str, list[str]] = OrderedDict()
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()
        self._pool = (
            ThreadPoolExecutor(max_workers=self.config.synonym_workers, thread_name_prefix="regchat-synonyms")
            if generator is not None
            else None
        )

    def tier_keywords(
        self,
        keywords: list[str],
        tier: str,
        *,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> list[str]:
        exact = SynonymExpander().expand(keywords)
        if tier == "exact":
            return exact
        if tier == "corpus_synonyms":
            return SynonymExpander(self.corpus_synonyms).expand(exact)
        if tier == "comprehensive_synonyms":
            return SynonymExpander(self.corpus_synonyms, self.comprehensive_synonyms).expand(exact)
        if tier == "generated_synonyms":
            generated = self._generated_synonyms(exact, cancel_token or CancellationToken(), timeout)
            return SynonymExpander(self.corpus_synonyms, self.comprehensive_synonyms, generated).expand(exact)
        raise ValueError(f"Unknown tier: {tier}")

    def retrieve(
        self,
        keywords: list[str],
        chunks: list[Chunk],
        *,
        top_k: int | None = None,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> TierResult:
        originals = set(SynonymExpander().expand(keywords))
        tiers = TIERS if self.generator is not None else TIERS[:-1]
        counts: dict[str, int] = {}
        warnings: list[str] = []
        result = TierResult(tier=tiers[0], keywords=[], results=[])

        for tier in tiers:
            try:
                expanded = self.tier_keywords(keywords, tier, cancel_token=cancel_token, timeout=timeout)
            except GenerationFailure as exc:
                logger.warning("Skipping %s tier: %s", tier, exc)
                warnings.append(f"{tier} tier skipped: {exc}")
                break
            weights = {term: 1.0 if term in originals else self.config.synonym_weight for term in expanded}
            ranked = self.retriever.rank(expanded, chunks, weights, route=tier)
            counts[tier] = len(ranked)
            result = TierResult(tier=tier, keywords=expanded, results=ranked)
            if len(ranked) >= self.config.min_results:
                break

        logger.debug("Tiered retrieval counts: %s", counts)
        result.counts = counts
        result.warnings = warnings
        result.results = result.results[: top_k or self.config.top_k]
        return result

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)

    def _generated_synonyms(
        self,
        keywords: list[str],
        token: CancellationToken,
        timeout: float | None,
    ) -> SynonymDictionary:
        """Synonyms for `keywords` from the cache, generating missing ones first."""

        if self._pool is None:
            return SynonymDictionary()
        with self._lock:
            missing = [k for k in keywords if k not in self._generated and k not in self._in_flight]
            self._in_flight.update(missing)
        fresh: dict[str, list[str]] = {}
        if missing:
            future = self._pool.submit(self._generate_batch, missing)
            limit = self.config.synonym_timeout_seconds
            try:
                fresh = wait_for(future, token, min(timeout, limit) if timeout else limit, cancel_on_timeout=False)
            except GenerationFailure:
                if future.cancelled():
                    with self._lock:
                        self._in_flight.difference_update(missing)
                raise

        generated = SynonymDictionary()
        with self._lock:
            for keyword in keywords:
                synonyms = fresh.get(keyword) or self._generated.get(keyword)
                if synonyms:
                    generated.merge(keyword, synonyms, Provenance.GENERATED)
        return generated

    def _generate_batch(self, keywords: list[str]) -> dict[str, list[str]]:
        try:
            if self.rate_limiter is not None:
                self.rate_limiter.acquire()
            replies = self.generator.generate_batch(keywords)
            fresh = {keyword: [normalize_keyword(s) for s in replies.get(keyword, [])] for keyword in keywords}
            with self._lock:
                for keyword, synonyms in fresh.items():
                    self._generated[keyword] = synonyms
                    self._generated.move_to_end(keyword)
                while len(self._generated) > self.config.generated_cache_size:
                    self._generated.popitem(last=False)
            return fresh
        finally:
            with self._lock:
                self._in_flight.difference_update(keywords)
