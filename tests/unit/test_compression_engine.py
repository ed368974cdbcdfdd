from regchat.compression.engine import CompressionEngine
from regchat.config import CompressionConfig, ScoringWeights
from regchat.types import CompressionResult

STRUCTURAL = "제6조(금연구역의 지정) " + "시·도지사는 다수인이 모이는 장소를 금연구역으로 지정하여야 한다. " * 20
FILLER_SENTENCE = "금연구역 지정 현황은 보건소 누리집에 게시하고 주민에게 알린다. "
HEADER = "보건복지부 금연구역 지정 관리 업무지침"


def _fillers(make_chunk, count: int, start_position: int = 1) -> list:
    return [
        make_chunk(f"부록 {i}. " + FILLER_SENTENCE * 40, position=start_position + i)
        for i in range(count)
    ]


def test_structural_chunk_survives_against_higher_scoring_chunks(make_chunk) -> None:
    engine = CompressionEngine()
    weights = {"금연구역": 3.0, "지정": 2.0}
    structural = make_chunk(STRUCTURAL, position=0)
    fillers = _fillers(make_chunk, 4)

    assert engine.score(STRUCTURAL.strip(), weights) < engine.score(fillers[0].content.strip(), weights)

    result = engine.compress([structural, *fillers], token_budget=1000, keyword_weights=weights)

    assert result.mode == "standard"
    assert STRUCTURAL.strip() in result.compressed_text
    assert structural.id in result.selected_chunk_ids
    assert result.estimated_tokens <= 1000
    assert result.compressed_length <= 4000
    assert len(result.selected_chunk_ids) < 5


def test_oversized_structural_chunk_is_truncated_at_sentence_boundary(make_chunk) -> None:
    text = "제6조(금연구역의 지정) " + "시·도지사는 다수인이 모이는 장소를 금연구역으로 지정하여야 한다. " * 200
    engine = CompressionEngine()

    result = engine.compress([make_chunk(text)], token_budget=500, keyword_weights={"금연구역": 3.0})

    assert result.estimated_tokens <= 500
    assert result.compressed_text
    assert text.startswith(result.compressed_text)
    assert result.compressed_text.endswith(".")
    assert any("truncated" in warning for warning in result.warnings)


def test_cleanup_removes_page_numbers_boilerplate_and_duplicates(make_chunk) -> None:
    chunks = [
        make_chunk(f"{HEADER}\n제1조(목적) 이 지침은 금연구역 지정 및 관리에 필요한 사항을 정한다.\n- 3 -", position=0),
        make_chunk(f"{HEADER}\n금연구역 관리자는 금연구역 표지를 설치하여야 한다.\nPage 4", position=1),
        make_chunk(f"{HEADER}\n금연구역에서 흡연한 자에게는 과태료를 부과한다.\n5 / 20", position=2),
        make_chunk(f"{HEADER}\n금연구역에서  흡연한 자에게는   과태료를 부과한다.\n5 / 20", position=3),
    ]

    result = CompressionEngine().compress(chunks, token_budget=2500)

    assert HEADER not in result.compressed_text
    for page_line in ("- 3 -", "Page 4", "5 / 20"):
        assert page_line not in result.compressed_text
    assert result.compressed_text.count("과태료를 부과한다") == 1
    assert "doc-chunk-0003" not in result.selected_chunk_ids
    assert result.compressed_text.startswith("제1조(목적)")


def test_low_keyword_coverage_switches_to_fallback_mode(make_chunk) -> None:
    structural = make_chunk("제1조(목적) 이 규칙은 시설 운영에 필요한 사항을 정함을 목적으로 한다.", position=0)
    rich = make_chunk("금연구역에서 흡연하면 과태료를 부과하고 " * 20, position=1)
    engine = CompressionEngine(CompressionConfig(min_fragment_chars=1000))

    result = engine.compress(
        [structural, rich],
        token_budget=50,
        keyword_weights={"금연구역": 3.0, "과태료": 3.0},
    )

    assert result.mode == "fallback"
    assert result.warnings[0].startswith("fallback mode")
    assert result.estimated_tokens <= 50
    assert "금연구역" in result.preserved_keywords
    assert result.selected_chunk_ids == (rich.id,)


def test_missing_keywords_are_pulled_from_unselected_chunks(make_chunk) -> None:
    structural = make_chunk("제1조(목적) 이 지침은 금연구역 지정에 필요한 사항을 정한다.", position=0)
    notices = make_chunk("금연구역 지정 현황은 보건소 누리집에 게시하고 주민에게 알린다. " * 10, position=1)
    reports = make_chunk(
        "보건소는 금연구역 점검 결과를 매월 정리하여 보고한다. " * 8 + "금연구역에서 흡연한 자에게는 과태료를 부과한다.",
        position=2,
    )
    engine = CompressionEngine(CompressionConfig(min_fragment_chars=1000))

    result = engine.compress(
        [structural, notices, reports],
        token_budget=50,
        keyword_weights={"금연구역": 3.0, "지정": 1.0, "과태료": 3.0},
    )

    assert result.mode == "standard"
    assert "과태료" in result.preserved_keywords
    assert result.selected_chunk_ids == (structural.id, reports.id)
    assert result.compressed_text.endswith("금연구역에서 흡연한 자에게는 과태료를 부과한다.")
    assert "점검 결과" not in result.compressed_text
    assert result.estimated_tokens <= 50


def test_coverage_between_threshold_and_target_is_partial_mode(make_chunk) -> None:
    structural = make_chunk("제1조(목적) 이 지침은 금연구역 지정에 필요한 사항을 정한다.", position=0)
    unbroken = make_chunk(
        "금연구역에서 흡연한 사람을 발견하면 누구든지 보건소에 신고할 수 있으며 위반자에게는 과태료를 부과하고 " * 4,
        position=1,
    )

    result = CompressionEngine().compress(
        [structural, unbroken],
        token_budget=25,
        keyword_weights={"금연구역": 3.0, "과태료": 2.0, "신고": 2.0},
    )

    assert result.mode == "partial"
    assert result.selected_chunk_ids == (structural.id,)
    assert result.preserved_keywords == frozenset({"금연구역"})
    assert any("below target" in warning for warning in result.warnings)
    assert result.quality_score < 80.0


def test_chunk_without_boundaries_is_hard_cut(make_chunk) -> None:
    result = CompressionEngine().compress([make_chunk("가" * 5000)], token_budget=100)

    assert result.compressed_text == "가" * 400
    assert result.estimated_tokens == 100
    assert result.quality_score > 0.0
    assert any("hard cut" in warning for warning in result.warnings)


def test_input_emptied_by_cleanup_is_fallback_with_zero_quality(make_chunk) -> None:
    result = CompressionEngine().compress([make_chunk("12\n- 3 -\nPage 4")], token_budget=100)

    assert result.mode == "fallback"
    assert result.compressed_text == ""
    assert result.quality_score == 0.0
    assert result.warnings[0].startswith("fallback mode")


def test_unexpected_error_returns_truncated_input(make_chunk, monkeypatch) -> None:
    engine = CompressionEngine()

    def _boom(*_args, **_kwargs):
        raise RuntimeError("scoring exploded")

    monkeypatch.setattr(engine, "_prepare", _boom)
    result = engine.compress([make_chunk("금연구역 안내 문구입니다. " * 100)], token_budget=20)

    assert result.mode == "fallback"
    assert result.estimated_tokens <= 20
    assert result.compressed_text
    assert "scoring exploded" in result.warnings[0]


def test_empty_input_yields_empty_result() -> None:
    result = CompressionEngine().compress([])

    assert result.mode == "empty"
    assert result.compressed_text == ""
    assert result.compression_ratio == 0.0
    assert result.estimated_tokens == 0


def test_generous_budget_keeps_everything_and_scores_quality(make_chunk) -> None:
    chunks = [
        make_chunk(STRUCTURAL, position=0),
        make_chunk("금연구역 관리자는 금연구역 표지를 설치하여야 한다. 위반 시 과태료를 부과한다.", position=1),
    ]
    weights = {"금연구역": 3.0, "과태료": 1.0, "지정": 2.0}

    result = CompressionEngine().compress(chunks, token_budget=10_000, keyword_weights=weights)

    assert result.mode == "standard"
    assert result.preserved_keywords == frozenset(weights)
    assert result.compressed_length <= result.original_length
    # Full retention falls outside the acceptable band, so only 10 of 30 band points.
    assert result.quality_score == 80.0


def test_compress_text_treats_paragraphs_as_chunks() -> None:
    text = "제1조(목적) 이 지침은 금연구역 지정에 관한 사항을 정한다.\n\n" + "금연구역 안내 문구를 게시한다. " * 500

    compressed = CompressionEngine().compress_text(text, token_budget=100)

    assert compressed.startswith("제1조(목적)")
    assert len(compressed) <= 400


def test_keyword_multiplier_is_configurable() -> None:
    text = "금연 구역에서는 금연 표지를 설치한다. 금연 안내를 강화한다."
    default = CompressionEngine()
    muted = CompressionEngine(CompressionConfig(weights=ScoringWeights(keyword_multiplier=0.0)))

    assert muted.score(text, {"금연": 1.0}) < default.score(text, {"금연": 1.0})
    assert default.score("", {"금연": 1.0}) == 0.0


def test_validate_reports_budget_retention_and_quality_problems() -> None:
    engine = CompressionEngine()
    poor = CompressionResult(
        compressed_text="x",
        original_length=10_000,
        compressed_length=100,
        compression_ratio=0.99,
        preserved_keywords=frozenset(),
        quality_score=30.0,
        warnings=(),
        estimated_tokens=3000,
    )
    good = CompressionResult(
        compressed_text="x",
        original_length=10_000,
        compressed_length=3000,
        compression_ratio=0.7,
        preserved_keywords=frozenset({"금연"}),
        quality_score=90.0,
        warnings=(),
        estimated_tokens=750,
    )

    is_valid, warnings, recommendations = engine.validate(poor, token_budget=2500)
    assert not is_valid
    assert len(warnings) == 3
    assert len(recommendations) == 3

    assert engine.validate(good, token_budget=2500) == (True, [], [])
