"""Configuration models for the regchat pipeline."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class ChunkingConfig(BaseModel):
    """Configures character-window segmentation with overlap."""

    chunk_size: int = Field(default=2000, ge=100)
    overlap_size: int = Field(default=200, ge=0)
    boundary_min_ratio: float = Field(default=0.7, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        # Guarantees forward progress: a window never shrinks below the overlap.
        if self.overlap_size >= self.chunk_size * self.boundary_min_ratio:
            raise ValueError("overlap_size must be smaller than chunk_size * boundary_min_ratio")
        return self


class ScoringWeights(BaseModel):
    """Tunable constants of the chunk scoring formula."""

    keyword_multiplier: float = Field(default=3.0, ge=0.0)

    ideal_length: tuple[int, int] = (500, 3000)
    good_length: tuple[int, int] = (200, 5000)
    acceptable_length: tuple[int, int] = (100, 8000)
    ideal_length_score: float = 3.0
    good_length_score: float = 2.0
    acceptable_length_score: float = 1.0

    article_score: float = 4.0
    regulation_term_score: float = 2.0
    decree_score: float = 3.0
    enumeration_score: float = 2.0

    sentence_ending_cap: float = 2.0
    complete_ending_score: float = 1.0

    number_unit_score: float = 0.5
    number_cap: float = 2.0
    legal_reference_score: float = 0.5
    legal_reference_cap: float = 2.0

    short_chunk_chars: int = Field(default=50, ge=0)
    short_chunk_penalty: float = 5.0
    no_text_penalty: float = 3.0
    near_duplicate_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    near_duplicate_penalty: float = 4.0
    low_information_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    low_information_penalty: float = 2.0


class CompressionConfig(BaseModel):
    """Configures budgeted compression and quality validation."""

    token_budget: int = Field(default=2500, ge=1)
    chars_per_token: int = Field(default=4, ge=1)
    # Bands apply to the retained share of the input (compressed / original).
    ideal_retention_band: tuple[float, float] = (0.10, 0.50)
    acceptable_retention_band: tuple[float, float] = (0.05, 0.80)
    min_quality_score: float = Field(default=60.0, ge=0.0, le=100.0)
    keyword_target: float = Field(default=0.70, ge=0.0, le=1.0)
    fallback_threshold: float = Field(default=0.20, ge=0.0, le=1.0)
    boilerplate_min_repeats: int = Field(default=3, ge=2)
    boilerplate_max_line_chars: int = Field(default=80, ge=1)
    min_fragment_chars: int = Field(default=100, ge=0)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)


class RetrievalConfig(BaseModel):
    """Configures lexical ranking and tiered synonym expansion."""

    min_results: int = Field(default=3, ge=1)
    top_k: int = Field(default=5, ge=1)
    synonym_weight: float = Field(default=0.6, gt=0.0, le=1.0)
    synonym_timeout_seconds: float = Field(default=5.0, gt=0.0)
    synonym_workers: int = Field(default=2, ge=1)
    generated_cache_size: int = Field(default=512, ge=1)


class SynonymBuildConfig(BaseModel):
    """Configures the offline synonym dictionary build."""

    max_candidates: int = Field(default=200, ge=1)
    min_frequency: int = Field(default=2, ge=1)
    batch_size: int = Field(default=10, ge=1)
    max_workers: int = Field(default=3, ge=1)
    requests_per_minute: float = Field(default=30.0, gt=0.0)
    max_retries: int = Field(default=4, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    exponential_base: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    max_synonyms_per_keyword: int = Field(default=10, ge=1)


class ConversationConfig(BaseModel):
    """Configures per-session prompt assembly and model calls."""

    context_token_budget: int = Field(default=2500, ge=1)
    turn_token_budget: int = Field(default=1500, ge=1)
    top_k: int = Field(default=5, ge=1)
    generation_timeout_seconds: float = Field(default=30.0, gt=0.0)
    answer_cache_size: int = Field(default=64, ge=0)


class AppSettings(BaseModel):
    """Process-level settings for the HTTP entrypoint."""

    data_dir: Path = Path("data")
    source_dir: Path | None = None
    openai_model: str = "gpt-4o-mini"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppSettings":
        source_dir = os.getenv("REGCHAT_SOURCE_DIR")
        return cls(
            data_dir=Path(os.getenv("REGCHAT_DATA_DIR", "data")),
            source_dir=Path(source_dir) if source_dir else None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            log_level=os.getenv("REGCHAT_LOG_LEVEL", "INFO"),
        )
