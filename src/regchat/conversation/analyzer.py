"""Question analysis: keywords, category and complexity for one user turn."""

from __future__ import annotations

from typing import Protocol

from regchat.ingest.chunker import SECTION_PATTERN
from regchat.keywords import candidate_terms, keyword_weights
from regchat.synonyms.static import BASIC_SYNONYMS, COMPREHENSIVE_SYNONYMS
from regchat.types import QuestionAnalysis, QuestionCategory, QuestionComplexity

_CATEGORY_CUES: tuple[tuple[QuestionCategory, tuple[str, ...]], ...] = (
    (QuestionCategory.COMPARISON, ("비교", "차이", "구분", "다른", "다른가", "versus", "difference")),
    (QuestionCategory.PROCEDURE, ("절차", "방법", "어떻게", "순서", "단계", "신청", "신고", "how")),
    (QuestionCategory.DEFINITION, ("정의", "의미", "개념", "무엇", "뜻", "what")),
    (QuestionCategory.ANALYSIS, ("분석", "검토", "왜", "이유", "평가", "why")),
    (QuestionCategory.REGULATION, ("규정", "법령", "법률", "시행령", "시행규칙", "조항", "과태료", "위반", "지정")),
)

_INTENTS = {
    QuestionCategory.DEFINITION: "용어 정의 문의",
    QuestionCategory.PROCEDURE: "절차 문의",
    QuestionCategory.REGULATION: "규정 문의",
    QuestionCategory.COMPARISON: "비교 문의",
    QuestionCategory.ANALYSIS: "분석 요청",
    QuestionCategory.GENERAL: "일반 문의",
}

_ENTITY_TERMS = frozenset(BASIC_SYNONYMS) | frozenset(COMPREHENSIVE_SYNONYMS)


class QuestionAnalyzer(Protocol):
    def analyze(self, question: str) -> QuestionAnalysis:
        """Produce the analysis consumed by retrieval and expansion."""


class KeywordQuestionAnalyzer:
    """Rule-based analyzer; no model call."""

    def analyze(self, question: str) -> QuestionAnalysis:
        lowered = question.lower()
        keywords: list[str] = []
        for term in [*(t for t in keyword_weights() if t in lowered), *candidate_terms(question)]:
            if term not in keywords:
                keywords.append(term)
        # Drop terms that are only a fragment of a longer keyword already present.
        keywords = [k for k in keywords if not any(k != other and k in other for other in keywords)] or keywords

        category = QuestionCategory.GENERAL
        for candidate, cues in _CATEGORY_CUES:
            if any(cue in lowered for cue in cues):
                category = candidate
                break

        if len(keywords) <= 3:
            complexity = QuestionComplexity.SIMPLE
        elif len(keywords) <= 6:
            complexity = QuestionComplexity.MEDIUM
        else:
            complexity = QuestionComplexity.COMPLEX
        if complexity is QuestionComplexity.SIMPLE and category in (
            QuestionCategory.COMPARISON,
            QuestionCategory.ANALYSIS,
        ):
            complexity = QuestionComplexity.MEDIUM

        entities = [" ".join(match.group(0).split()) for match in SECTION_PATTERN.finditer(question)]
        entities.extend(term for term in keywords if term in _ENTITY_TERMS and term not in entities)

        return QuestionAnalysis(
            intent=_INTENTS[category],
            keywords=keywords,
            category=category,
            complexity=complexity,
            entities=entities,
            context=question.strip(),
        )
