"""Synonym generation collaborators."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from langchain_core.prompts import ChatPromptTemplate

from regchat.errors import GenerationFailure, RateLimited
from regchat.generation.client import is_rate_limit_error, message_text
from regchat.text import normalize_keyword

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """
You expand search keywords for a corpus of Korean tobacco-control statutes,
enforcement decrees and administrative guidelines.

Rules:
1) Return synonyms, near-synonyms and domain terms a document might use instead.
2) Prefer terms that appear in Korean legal and administrative writing.
3) Reply with a JSON array of strings only, at most {limit} items.
""".strip()

_BATCH_RULE = "3) Reply with one JSON object mapping each keyword to an array of at most {limit} strings."


class SynonymGenerator(ABC):
    """Produces synonyms for one keyword; implementations may call remote models."""

    @abstractmethod
    def generate_synonyms(self, keyword: str) -> list[str]:
        """Return synonyms for `keyword`.

        Raises:
            RateLimited: the backing service throttled the request.
            GenerationFailure: any other failure of the backing service.
        """

    def generate_batch(self, keywords: list[str]) -> dict[str, list[str]]:
        """Synonyms for several keywords; one request per keyword unless overridden."""

        return {keyword: self.generate_synonyms(keyword) for keyword in keywords}


class StaticSynonymGenerator(SynonymGenerator):
    """Deterministic generator backed by a mapping, for tests and offline builds."""

    def __init__(self, mapping: dict[str, list[str]] | None = None) -> None:
        self._mapping = {normalize_keyword(k): list(v) for k, v in (mapping or {}).items()}

    def generate_synonyms(self, keyword: str) -> list[str]:
        return list(self._mapping.get(normalize_keyword(keyword), []))


class LlmSynonymGenerator(SynonymGenerator):
    """Asks a LangChain chat model for synonyms and parses a JSON array reply."""

    def __init__(self, llm: Any, *, max_synonyms: int = 10) -> None:
        self.llm = llm
        self.max_synonyms = max_synonyms
        self._prompt = ChatPromptTemplate.from_messages(
            [
                ("system", _SYSTEM_PROMPT),
                ("human", "Keyword: {keyword}"),
            ]
        )
        self._batch_prompt = ChatPromptTemplate.from_messages(
            [
                ("system", _SYSTEM_PROMPT.rsplit("\n", 1)[0] + "\n" + _BATCH_RULE),
                ("human", "Keywords: {keywords}"),
            ]
        )

    def generate_synonyms(self, keyword: str) -> list[str]:
        reply = self._invoke(self._prompt.format_messages(keyword=keyword, limit=self.max_synonyms))
        return parse_synonym_reply(reply, keyword)[: self.max_synonyms]

    def generate_batch(self, keywords: list[str]) -> dict[str, list[str]]:
        """All keywords in a single model request."""

        if not keywords:
            return {}
        messages = self._batch_prompt.format_messages(
            keywords=json.dumps(keywords, ensure_ascii=False),
            limit=self.max_synonyms,
        )
        replies = parse_batch_reply(self._invoke(messages), keywords)
        return {keyword: synonyms[: self.max_synonyms] for keyword, synonyms in replies.items()}

    def _invoke(self, messages: list[Any]) -> str:
        try:
            reply = self.llm.invoke(messages)
        except Exception as exc:  # provider SDKs raise their own error types
            if is_rate_limit_error(exc):
                raise RateLimited(str(exc)) from exc
            raise GenerationFailure(str(exc)) from exc
        return message_text(reply)


def parse_synonym_reply(text: str, keyword: str) -> list[str]:
    """Extract synonyms from a model reply.

    Accepts a bare JSON array, or an object carrying `synonyms` or
    `expandedKeywords`. Unparseable replies yield an empty list.
    """

    cleaned = re.sub(r"```(?:json)?", "", text).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Unparseable synonym reply for %r: %.80s", keyword, cleaned)
        return []

    if isinstance(parsed, dict):
        parsed = parsed.get("synonyms") or parsed.get("expandedKeywords") or []
    return _clean_terms(parsed, keyword)


def _clean_terms(items: Any, keyword: str) -> list[str]:
    if not isinstance(items, list):
        return []
    own = normalize_keyword(keyword)
    synonyms: list[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        term = normalize_keyword(item)
        if term and term != own and term not in synonyms:
            synonyms.append(term)
    return synonyms


def parse_batch_reply(text: str, keywords: list[str]) -> dict[str, list[str]]:
    """Extract per-keyword synonyms from a JSON object reply.

    Keywords missing from the reply map to an empty list.
    """

    cleaned = re.sub(r"```(?:json)?", "", text).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Unparseable batch synonym reply: %.80s", cleaned)
        parsed = {}
    if not isinstance(parsed, dict):
        parsed = {}

    by_key = {normalize_keyword(str(key)): value for key, value in parsed.items()}
    return {
        keyword: _clean_terms(by_key.get(normalize_keyword(keyword)), keyword)
        for keyword in keywords
    }
