"""Domain keyword weight table and deterministic keyword extraction."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping

from regchat.text import normalize_keyword, strip_particle, tokenize

CORE_TERMS = ("금연", "금연구역", "건강증진", "시행령", "시행규칙")
IMPORTANT_TERMS = ("지정", "관리", "업무", "지침", "서비스", "통합", "사업", "지원")
GENERAL_TERMS = (
    "법령", "법률", "규정", "조항", "항목", "고시", "공고",
    "의무", "권한", "책임", "적용", "범위", "대상",
    "신고", "신청", "처리", "심사", "승인", "허가", "등록",
    "변경", "취소", "정지", "폐지", "위반", "과태료",
    "절차", "방법", "기준", "요건", "조건", "제한", "해제", "벌금", "처벌",
    "제재", "조치", "시설", "장소", "구역", "지역", "기관", "단체",
    "담당", "기능", "역할",
)

STOPWORDS = frozenset(
    {
        "것", "이", "그", "저", "의", "을", "를", "에", "에서", "로", "으로",
        "와", "과", "는", "은", "가", "다", "하다", "있다", "없다", "되다",
        "보다", "같다", "여기", "저기", "어디", "언제", "어떻게", "왜", "무엇",
        "누구", "모든", "전체", "일부", "대부분", "각", "및", "등", "또는",
        "그리고", "하지만", "그러나", "따라서", "경우", "해당", "다음", "있는",
        "하는", "한다", "된다", "the", "and", "for", "with", "of", "to", "in",
    }
)


def keyword_weights(extra: Mapping[str, float] | None = None) -> dict[str, float]:
    """Return the static weight table, optionally overlaid with `extra` terms."""

    weights: dict[str, float] = {}
    for term in GENERAL_TERMS:
        weights[term] = 1.0
    for term in IMPORTANT_TERMS:
        weights[term] = 2.0
    for term in CORE_TERMS:
        weights[term] = 3.0
    for term, weight in (extra or {}).items():
        key = normalize_keyword(term)
        if key:
            weights[key] = max(weight, weights.get(key, 0.0))
    return weights


def candidate_terms(text: str) -> list[str]:
    """Tokens of `text` that can act as keywords, in order of appearance."""

    terms: list[str] = []
    for token in tokenize(text):
        term = strip_particle(token)
        if 2 <= len(term) <= 10 and term not in STOPWORDS and not term.isdigit():
            terms.append(term)
    return terms


def extract_keywords(content: str, table: Iterable[str] | None = None) -> frozenset[str]:
    """Deterministic keyword set for a chunk: table hits plus content terms."""

    lowered = content.lower()
    hits = {term for term in (table or keyword_weights()) if term in lowered}
    return frozenset(hits | set(candidate_terms(content)))


def extract_dynamic_keywords(text: str, limit: int = 100) -> list[str]:
    """Most frequent content terms, ties broken by first appearance."""

    counts = Counter(candidate_terms(text))
    return [term for term, _ in counts.most_common(limit)]


def query_keyword_weights(query_keywords: Iterable[str], weight: float = 3.0) -> dict[str, float]:
    """Weight table boosted with the keywords of the current question."""

    return keyword_weights({keyword: weight for keyword in query_keywords})
