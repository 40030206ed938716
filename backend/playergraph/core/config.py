"""Configuration settings for the player graph application."""

from __future__ import annotations

from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Relational store (sessions, rounds, aggregated stats, checkpoints)
    postgres_db: str = Field(default="playergraph_db")
    postgres_user: str = Field(default="playergraph_user")
    postgres_password: str = Field(default="dev_password")
    postgres_host: str = Field(default="postgres")
    postgres_port: int = Field(default=5432)
    database_url_override: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy URL, takes precedence over postgres_* components",
    )

    db_pool_size: int = Field(default=10, ge=1)
    db_max_overflow: int = Field(default=20, ge=0)
    db_pool_timeout: int = Field(default=30, ge=1)
    db_pool_recycle: int = Field(default=1800, ge=-1)

    @property
    def database_url(self) -> str:
        """Construct async database URL from components."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Graph store
    neo4j_uri: str = Field(default="bolt://neo4j:7687")
    neo4j_user: str = Field(default="neo4j")
    neo4j_password: str = Field(default="dev_password")
    neo4j_database: str = Field(default="neo4j")

    # Per-store query timeouts
    stat_store_timeout_seconds: float = Field(default=10.0, gt=0)
    session_store_timeout_seconds: float = Field(default=15.0, gt=0)
    graph_store_timeout_seconds: float = Field(default=10.0, gt=0)

    # Application Configuration
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000,http://127.0.0.1:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list."""
        return [
            origin.strip() for origin in self.cors_origins.split(",") if origin.strip()
        ]

    # Relationship sync
    sync_round_page_size: int = Field(default=100, ge=1)
    sync_flush_round_threshold: int = Field(default=100, ge=1)
    sync_flush_relationship_threshold: int = Field(default=10_000, ge=1)
    sync_write_batch_size: int = Field(default=1000, ge=1)
    sync_max_parallel_rounds: int = Field(default=4, ge=1)
    sync_lookback_days: int = Field(default=7, ge=1)
    observation_interval_seconds: int = Field(
        default=30,
        ge=1,
        description="Poll interval of the upstream tracker, one observation tick",
    )

    # Alias scoring policy
    alias_weight_stat: float = Field(default=0.30, ge=0.0)
    alias_weight_behavioral: float = Field(default=0.20, ge=0.0)
    alias_weight_network: float = Field(default=0.25, ge=0.0)
    alias_weight_temporal: float = Field(default=0.15, ge=0.0)
    alias_weight_switchover: float = Field(
        default=0.0,
        ge=0.0,
        description="Activity switchover score weight; 0 keeps it as flags only",
    )

    alias_threshold_potential: float = Field(default=0.50, gt=0.0, le=1.0)
    alias_threshold_likely: float = Field(default=0.70, gt=0.0, le=1.0)
    alias_threshold_very_likely: float = Field(default=0.85, gt=0.0, le=1.0)

    alias_confidence_base: float = Field(default=0.50, ge=0.0, le=1.0)
    alias_confidence_stat_bonus: float = Field(default=0.25, ge=0.0, le=1.0)
    alias_confidence_behavioral_bonus: float = Field(default=0.15, ge=0.0, le=1.0)
    alias_confidence_network_bonus: float = Field(default=0.10, ge=0.0, le=1.0)
    alias_default_lookback_days: int = Field(default=90, ge=1)
    alias_max_parallel_comparisons: int = Field(default=5, ge=1)

    # Job Scheduler Configuration
    job_scheduler_enabled: bool = Field(default=True)
    relationship_sync_schedule: str = Field(default="cron:0 3 * * *")
    graph_integrity_schedule: str = Field(default="cron:30 4 * * 0")

    # Rate limiting for the comparison endpoint
    compare_rate_limit: str = Field(default="30/minute")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return v.upper()

    @model_validator(mode="after")
    def validate_alias_policy(self) -> "Settings":
        """Reject scoring policies that cannot produce a meaningful score."""
        weights = (
            self.alias_weight_stat,
            self.alias_weight_behavioral,
            self.alias_weight_network,
            self.alias_weight_temporal,
            self.alias_weight_switchover,
        )
        if sum(weights) <= 0:
            raise ValueError("At least one alias weight must be positive")

        if not (
            self.alias_threshold_potential
            < self.alias_threshold_likely
            < self.alias_threshold_very_likely
        ):
            raise ValueError(
                "Alias thresholds must be strictly increasing: "
                "potential < likely < very_likely"
            )
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix for environment variables
        extra="forbid",  # Forbid extra fields for better type safety
    )


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()


# Create a global settings instance lazily
settings: Settings | None = None


def get_global_settings() -> Settings:
    """Get or create the global settings instance."""
    global settings
    if settings is None:
        settings = get_settings()
    return settings
