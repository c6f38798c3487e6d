"""Configuration management for the sheet cleaner.

All configuration options can be set via environment variables with the
SC_ prefix, or via a .env file in the project root.

Environment Variables:
    SC_MAX_FILE_SIZE_MB: Maximum accepted workbook size in MB (default: 50)
    SC_CHUNK_SIZE: Data rows per chunk (default: 1000)
    SC_PARALLEL_BATCH_SIZE: Chunks started concurrently per apply batch (default: 3)
    SC_ANALYSIS_BATCH_SIZE: Chunks per analysis batch (default: 5)
    SC_RETAINED_BATCHES: Analysis batches kept materialized (default: 2)
    SC_SAMPLE_ROWS: Data rows per chunk preview (default: 5)
    SC_MAX_ISSUE_EXAMPLES: Example values kept per aggregated issue (default: 5)
    SC_MAX_RECOMMENDATIONS: Cap on generated recommendations (default: 12)
    SC_RECOMMENDATION_ISSUE_BATCH_SIZE: Issues per LLM prompt (default: 3)
    SC_SESSION_CACHE_SIZE: Live sessions kept by the registry (default: 32)
    SC_SESSION_TTL_HOURS: Idle lifetime of a session in hours (default: 24)
    SC_OPENAI_API_KEY: OpenAI API key (optional, enables LLM recommendations)
    SC_OPENAI_MODEL: OpenAI model for recommendations (default: gpt-4o-mini)
    SC_OPENAI_TEMPERATURE: LLM temperature setting (default: 0.2)
    SC_OPENAI_MAX_TOKENS: Maximum tokens for LLM responses (default: 4096)
    SC_LOG_LEVEL: Logging level (default: INFO)
    SC_DEBUG: Enable debug mode (default: false)
"""

import logging
from typing import Any

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Example .env file:
        SC_OPENAI_API_KEY=sk-...
        SC_CHUNK_SIZE=500
        SC_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="SC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Input Settings
    # =========================================================================

    max_file_size_mb: int = 50
    """Maximum accepted workbook size in megabytes."""

    # =========================================================================
    # Chunking Settings
    # =========================================================================

    chunk_size: int = 1000
    """Number of data rows per chunk. The header row is never counted."""

    parallel_batch_size: int = 3
    """Chunks started concurrently per batch when applying transformations."""

    analysis_batch_size: int = 5
    """Chunks analyzed concurrently per batch."""

    retained_batches: int = 2
    """Analysis batches kept materialized before older chunks are evicted."""

    sample_rows: int = 5
    """Data rows included in each chunk preview."""

    max_issue_examples: int = 5
    """Example values kept per aggregated issue."""

    # =========================================================================
    # Recommendation Settings
    # =========================================================================

    max_recommendations: int = 12
    """Upper bound on recommendations returned to the user."""

    recommendation_issue_batch_size: int = 3
    """Issues sent to the LLM per prompt."""

    openai_api_key: SecretStr = SecretStr("")
    """OpenAI API key. Without it only rule-based recommendations are produced."""

    openai_model: str = "gpt-4o-mini"
    """OpenAI model used to phrase recommendations."""

    openai_temperature: float = 0.2
    """Temperature for LLM sampling."""

    openai_max_tokens: int = 4096
    """Maximum tokens for LLM response generation."""

    # =========================================================================
    # Session Settings
    # =========================================================================

    session_cache_size: int = 32
    """Maximum number of live sessions kept by the registry (LRU)."""

    session_ttl_hours: int = 24
    """Idle lifetime of a registered session in hours."""

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL."""

    debug: bool = False
    """Enable debug mode with additional logging and error details."""

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return upper_v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"chunk_size must be at least 1, got {v}")
        return v

    @field_validator("parallel_batch_size", "analysis_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """Validate batch sizes stay in a sane concurrency range."""
        if not 1 <= v <= 16:
            raise ValueError(f"batch size must be between 1 and 16, got {v}")
        return v

    @field_validator(
        "retained_batches",
        "sample_rows",
        "max_issue_examples",
        "max_recommendations",
        "recommendation_issue_batch_size",
        "session_cache_size",
        "session_ttl_hours",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be at least 1, got {v}")
        return v

    @field_validator("max_file_size_mb")
    @classmethod
    def validate_file_size(cls, v: int) -> int:
        """Validate file size is positive and reasonable."""
        if not 1 <= v <= 1024:
            raise ValueError(f"max_file_size_mb must be between 1 and 1024, got {v}")
        return v

    @field_validator("openai_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError(f"openai_temperature must be between 0.0 and 2.0, got {v}")
        return v

    @model_validator(mode="after")
    def validate_sample_rows(self) -> "Settings":
        """Validate previews never exceed a chunk."""
        if self.sample_rows > self.chunk_size:
            raise ValueError(
                f"sample_rows ({self.sample_rows}) must not exceed "
                f"chunk_size ({self.chunk_size})"
            )
        return self

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def session_ttl_seconds(self) -> int:
        """Get session TTL in seconds."""
        return self.session_ttl_hours * 3600

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module."""
        level: int = getattr(logging, self.log_level)
        return level

    def get_openai_api_key(self) -> str:
        """Get the OpenAI API key value.

        Returns:
            The API key string. Returns empty string if not set.
        """
        return self.openai_api_key.get_secret_value()

    def to_safe_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary with sensitive values masked.

        Returns:
            Dictionary representation with API keys masked.
        """
        return {
            "max_file_size_mb": self.max_file_size_mb,
            "chunk_size": self.chunk_size,
            "parallel_batch_size": self.parallel_batch_size,
            "analysis_batch_size": self.analysis_batch_size,
            "retained_batches": self.retained_batches,
            "sample_rows": self.sample_rows,
            "max_issue_examples": self.max_issue_examples,
            "max_recommendations": self.max_recommendations,
            "recommendation_issue_batch_size": self.recommendation_issue_batch_size,
            "openai_api_key": "***" if self.get_openai_api_key() else "(not set)",
            "openai_model": self.openai_model,
            "openai_temperature": self.openai_temperature,
            "openai_max_tokens": self.openai_max_tokens,
            "session_cache_size": self.session_cache_size,
            "session_ttl_hours": self.session_ttl_hours,
            "log_level": self.log_level,
            "debug": self.debug,
        }


def validate_settings_on_startup(s: Settings) -> None:
    """Validate settings on application startup.

    Args:
        s: Settings instance to validate.
    """
    logger = logging.getLogger(__name__)

    if not s.get_openai_api_key():
        logger.warning(
            "OPENAI_API_KEY is not configured. Only rule-based recommendations "
            "will be generated. Set SC_OPENAI_API_KEY to enable the LLM generator."
        )

    logger.info(
        f"Configuration loaded: log_level={s.log_level}, debug={s.debug}, "
        f"chunk_size={s.chunk_size}, parallel_batch_size={s.parallel_batch_size}"
    )


settings = Settings()
