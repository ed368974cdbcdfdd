"""Seed synonym tables curated for the tobacco-control regulation corpus."""

from __future__ import annotations

from regchat.text import normalize_keyword
from regchat.types import Provenance, SynonymDictionary

BASIC_SYNONYMS: dict[str, tuple[str, ...]] = {
    "금연": ("흡연금지", "담배금지", "흡연제한", "금연구역", "금연장소", "금연지역", "금연시설"),
    "공동주택": ("아파트", "연립주택", "다세대주택", "아파트단지", "집합주택", "오피스텔", "빌라"),
    "어린이집": ("보육시설", "유치원", "보육원", "아동시설", "보육기관"),
    "학교": ("교육시설", "학원", "교육기관", "교육원", "연수원"),
    "병원": ("의료시설", "클리닉", "의원", "보건소", "의료기관", "한의원", "약국"),
    "법령": ("법규", "규정", "조항", "법률", "시행령", "시행규칙", "규칙", "지침", "조례"),
    "위반": ("위배", "위법", "불법", "금지행위", "규정위반", "법령위반"),
    "벌금": ("과태료", "처벌", "제재", "벌칙", "과징금"),
    "신고": ("제보", "고발", "신청", "접수", "제출"),
    "관리": ("운영", "관할", "담당", "처리", "시행"),
}

# Wider legal and facility vocabulary, used only when narrower tiers miss.
COMPREHENSIVE_SYNONYMS: dict[str, tuple[str, ...]] = {
    "법률": ("법령", "법규", "규정", "조항", "국민건강증진법", "건강증진법", "질서위반행위규제법"),
    "시행령": ("시행규칙", "국민건강증진법시행령", "건강증진법시행령"),
    "시행규칙": ("시행령", "국민건강증진법시행규칙", "건강증진법시행규칙"),
    "조항": ("제1조", "제2조", "제3조", "제4조", "제5조", "제6조", "제7조", "제8조", "제9조", "제10조"),
    "규정": ("법규", "규칙", "지침", "안내", "금연구역지정관리업무지침"),
    "지침": ("가이드라인", "안내", "매뉴얼", "금연구역지정관리업무지침", "유치원어린이집가이드라인"),
    "안내": ("지침", "매뉴얼", "금연지원서비스통합시스템사용자매뉴얼"),
    "체육시설": (
        "운동시설", "스포츠시설", "체육관", "운동장", "경기장", "헬스장", "수영장", "골프장",
        "테니스장", "실내체육관", "체육센터", "스포츠센터", "피트니스센터", "볼링장", "당구장",
        "스크린골프장", "탁구장", "태권도장", "승마장", "낚시터",
    ),
    "어린이집": ("아동보육시설", "어린이보육원", "어린이보호시설", "아동보호원"),
    "학교": ("초등학교", "중학교", "고등학교", "대학교", "대학원", "전문대학", "평생교육원", "직업훈련원"),
    "병원": ("종합병원", "대학병원", "의료원", "보건지소", "보건진료소", "정신건강복지센터", "치과"),
    "금연구역": ("흡연금지구역", "금연지역", "금연장소", "금연시설", "흡연제한구역"),
    "흡연": ("담배", "끽연", "흡연행위", "전자담배", "궐련"),
    "과태료": ("벌금", "과징금", "제재금", "행정처분"),
}


def _build(table: dict[str, tuple[str, ...]]) -> SynonymDictionary:
    dictionary = SynonymDictionary()
    for keyword, synonyms in table.items():
        dictionary.merge(
            normalize_keyword(keyword),
            [normalize_keyword(synonym) for synonym in synonyms],
            Provenance.STATIC,
        )
    return dictionary


def basic_dictionary() -> SynonymDictionary:
    """Fresh dictionary seeded with `BASIC_SYNONYMS`."""

    return _build(BASIC_SYNONYMS)


def comprehensive_dictionary() -> SynonymDictionary:
    return _build(COMPREHENSIVE_SYNONYMS)
