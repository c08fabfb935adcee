"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from evalgate.errors import ConfigurationError
from evalgate.models.evaluation import DegradationPolicy
from evalgate.models.scoring import ExclusionRule, ThresholdConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="EVALGATE_",
        case_sensitive=False,
    )

    # Application
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./data/evalgate.db"

    # Escalation gate
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    category_overrides: dict[str, float] = Field(default_factory=dict)
    exclusion_rules: list[ExclusionRule] = Field(default_factory=list)

    # Session pipeline
    max_concurrent_sessions: int = Field(default=10, gt=0)
    model_call_timeout_seconds: float = Field(default=60.0, gt=0)
    model_calls_per_minute: int = Field(default=600, gt=0)

    # Evaluation settings
    evaluator_timeout_seconds: float = Field(default=30.0, gt=0)
    live_sample_size: int = Field(default=100, gt=0)
    reference_dir: str = "./data/reference"  # API reference datasets are resolved inside this directory

    # Degradation detection
    degradation_percentile: float = Field(default=10.0, gt=0.0, lt=100.0)
    degradation_window_count: int = Field(default=5, ge=1)
    degradation_min_history: int = Field(default=3, ge=1)

    # Reporting
    confidence_level: float = Field(default=0.95, gt=0.0, lt=1.0)

    @field_validator("category_overrides")
    @classmethod
    def _check_overrides(cls, value: dict[str, float]) -> dict[str, float]:
        for category, threshold in value.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(
                    f"Threshold override for '{category}' must be in [0, 1], got {threshold}"
                )
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    def threshold_config(self) -> ThresholdConfig:
        """Snapshot of the escalation thresholds as an immutable value."""
        return ThresholdConfig(
            confidence_threshold=self.confidence_threshold,
            category_overrides=dict(self.category_overrides),
            exclusion_rules=list(self.exclusion_rules),
        )

    def degradation_policy(self) -> DegradationPolicy:
        return DegradationPolicy(
            percentile=self.degradation_percentile,
            trailing_windows=self.degradation_window_count,
            min_history=self.degradation_min_history,
        )


def load_settings(**overrides) -> Settings:
    """Build settings, turning validation failures into a ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
