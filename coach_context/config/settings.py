import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using an absolute SQLite path when DATABASE_URL is unset.

    SQLite is only meant for local development. Point DATABASE_URL at the
    PostgreSQL instance that owns athlete, coach and book data in production.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        return db_url

    db_path = Path(__file__).parent.parent.parent / "coach_context.db"
    db_url = f"sqlite:///{db_path.resolve()}"
    logger.warning(f"DATABASE_URL not set, using local SQLite database: {db_url}")
    return db_url


class Settings(BaseSettings):
    openai_api_key: str = Field(default="", validation_alias="OPENAI_API_KEY")
    embedding_model: str = Field(default="text-embedding-3-small", validation_alias="EMBEDDING_MODEL")
    embedding_dimensions: int = Field(default=1536, validation_alias="EMBEDDING_DIMENSIONS")
    embedding_max_words: int = Field(
        default=6000,
        validation_alias="EMBEDDING_MAX_WORDS",
        description="Words kept per input before sending to the provider (~8000 tokens)",
    )
    embedding_batch_size: int = Field(default=100, validation_alias="EMBEDDING_BATCH_SIZE")
    embedding_batch_delay_seconds: float = Field(
        default=0.1,
        validation_alias="EMBEDDING_BATCH_DELAY_SECONDS",
        description="Pause between provider batches to stay under rate limits",
    )
    embedding_timeout_seconds: float = Field(default=20.0, validation_alias="EMBEDDING_TIMEOUT_SECONDS")
    total_context_tokens: int = Field(
        default=8000,
        validation_alias="TOTAL_CONTEXT_TOKENS",
        description="Approximate token budget shared by the three context layers",
    )
    retrieval_timeout_seconds: float = Field(
        default=15.0,
        validation_alias="RETRIEVAL_TIMEOUT_SECONDS",
        description="Per-layer timeout applied by the context assembler",
    )
    similarity_threshold: float = Field(default=0.7, validation_alias="SIMILARITY_THRESHOLD")
    activity_window_days: int = Field(default=14, validation_alias="ACTIVITY_WINDOW_DAYS")
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    retrieval_events_log: str | None = Field(default=None, validation_alias="RETRIEVAL_EVENTS_LOG")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(valid_levels)}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("similarity_threshold")
    @classmethod
    def validate_similarity_threshold(cls, value: float) -> float:
        """Similarity is cosine-based, so the threshold must lie in [0, 1]."""
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"SIMILARITY_THRESHOLD must be between 0 and 1, got {value}")
        return value

    @field_validator("openai_api_key")
    @classmethod
    def warn_missing_api_key(cls, value: str) -> str:
        """Empty key is allowed; book retrieval degrades to its placeholder."""
        if not value:
            logger.warning(
                "OPENAI_API_KEY is not set. Methodology retrieval will return "
                "'no book context available' until it is configured."
            )
        return value


settings = Settings()
