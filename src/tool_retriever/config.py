"""Configuration models for embedding, fusion, stage skipping and execution."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Optional pipeline stages the skipper may remove from a draft plan.
STAGE_CONTEXT_ENRICHMENT = "context-enrichment"
STAGE_LOCAL_NLP = "local-nlp"
STAGE_RESULT_MERGING = "result-merging"
STAGE_QUALITY_ASSESSMENT = "quality-assessment"
STAGE_SEMANTIC_EXPANSION = "semantic-expansion"
STAGE_PERFORMANCE_MONITORING = "performance-monitoring"
STAGE_DETAILED_LOGGING = "detailed-logging"

OPTIONAL_STAGES: tuple[str, ...] = (
    STAGE_CONTEXT_ENRICHMENT,
    STAGE_LOCAL_NLP,
    STAGE_RESULT_MERGING,
    STAGE_QUALITY_ASSESSMENT,
    STAGE_SEMANTIC_EXPANSION,
)


class EmbeddingConfig(BaseModel):
    """Pinned embedding model configuration."""

    model_name: str = Field(default="BAAI/bge-small-en-v1.5")
    dimensions: int = Field(default=384)
    max_length: int = Field(default=512)
    cache_dir: str | None = Field(default=None)


class FusionConfig(BaseModel):
    """Reciprocal rank fusion parameters shared by every merge path."""

    model_config = ConfigDict(frozen=True)

    rrf_k: int = Field(default=60, ge=0, description="RRF damping constant; higher flattens rank influence")
    source_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "semantic": 1.0,
            "categories": 0.8,
            "functionality": 0.7,
            "aliases": 0.6,
            "composites": 0.5,
        },
        description="Per source-type weight applied to RRF contributions",
    )
    default_source_weight: float = Field(default=0.5, description="Weight for unknown source types")

    def weight_for(self, source_type: str) -> float:
        return self.source_weights.get(source_type, self.default_source_weight)


class SkipperConfig(BaseModel):
    """Adaptive stage skipping configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="Disable to always run the draft plan as-is")
    stage_gains: dict[str, float] = Field(
        default_factory=lambda: {
            STAGE_CONTEXT_ENRICHMENT: 0.30,
            STAGE_LOCAL_NLP: 0.20,
            STAGE_RESULT_MERGING: 0.15,
            STAGE_QUALITY_ASSESSMENT: 0.10,
            STAGE_SEMANTIC_EXPANSION: 0.05,
            STAGE_PERFORMANCE_MONITORING: 0.10,
        },
        description="Estimated latency gain fraction per skipped stage",
    )
    max_gain: float = Field(default=0.6, description="Cap on the summed optimization gain")
    stage_time_estimates_ms: dict[str, int] = Field(
        default_factory=lambda: {
            STAGE_CONTEXT_ENRICHMENT: 150,
            STAGE_LOCAL_NLP: 80,
            STAGE_RESULT_MERGING: 50,
            STAGE_QUALITY_ASSESSMENT: 30,
            STAGE_PERFORMANCE_MONITORING: 20,
            STAGE_DETAILED_LOGGING: 10,
        },
        description="Typical stage latency used to estimate time saved",
    )


class ExecutorConfig(BaseModel):
    """Deadlines for plan execution."""

    model_config = ConfigDict(frozen=True)

    overall_timeout_seconds: float | None = Field(
        default=10.0, description="Deadline for the whole multi-strategy fan-out"
    )
    strategy_timeout_seconds: float | None = Field(
        default=None, description="Optional deadline applied to each strategy individually"
    )


class MergerConfig(BaseModel):
    """Result-set merge configuration for already-executed strategies."""

    model_config = ConfigDict(frozen=True)

    min_diverse_results: int = Field(
        default=5,
        ge=0,
        description="Results accepted unconditionally before the diverse strategy enforces new tags",
    )
    default_relevance: float = Field(default=0.5, description="Relevance assumed when a result has no score")


EMBEDDING_CONFIG = EmbeddingConfig()
FUSION_CONFIG = FusionConfig()
SKIPPER_CONFIG = SkipperConfig()
EXECUTOR_CONFIG = ExecutorConfig()
MERGER_CONFIG = MergerConfig()
