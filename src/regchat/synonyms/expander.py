"""Runtime keyword expansion over a synonym dictionary."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from regchat.text import normalize_keyword
from regchat.types import SynonymDictionary


class SynonymExpander:
    """Expands query keywords with dictionary synonyms.

    The expansion is the closure of the keywords under the dictionary, so a
    synonym's own synonyms are pulled in as well. That makes expansion
    idempotent: `expand(expand(k)) == expand(k)`. Original keywords keep their
    input order at the front; synonyms follow in discovery order.
    """

    def __init__(self, *dictionaries: SynonymDictionary) -> None:
        self._dictionaries = [d for d in dictionaries if d is not None]

    def synonyms_of(self, keyword: str) -> list[str]:
        found: list[str] = []
        for dictionary in self._dictionaries:
            for synonym in dictionary.get(keyword):
                if synonym not in found:
                    found.append(synonym)
        return found

    def expand(self, keywords: Iterable[str]) -> list[str]:
        expanded: list[str] = []
        seen: set[str] = set()
        for keyword in keywords:
            key = normalize_keyword(keyword)
            if key and key not in seen:
                seen.add(key)
                expanded.append(key)

        queue = deque(expanded)
        while queue:
            for synonym in self.synonyms_of(queue.popleft()):
                key = normalize_keyword(synonym)
                if key and key not in seen:
                    seen.add(key)
                    expanded.append(key)
                    queue.append(key)
        return expanded
