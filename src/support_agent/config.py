"""Configuration models and environment settings for the support agent."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingConfig(BaseModel):
    """Configures paragraph-packing chunking for ingested documents."""

    max_chunk_chars: int = Field(default=1000, ge=100)
    overlap_chars: int = Field(default=200, ge=0)


class RetrievalConfig(BaseModel):
    """Configures knowledge-base similarity retrieval."""

    top_k: int = Field(default=3, ge=1, le=10)
    min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)


class AgentConfig(BaseModel):
    """Configures chat-turn execution."""

    retrieval_mode: Literal["inline", "tool"] = "inline"
    max_tool_steps: int = Field(default=5, ge=1)
    max_output_tokens: int = Field(default=1024, ge=1)
    default_span_name: str = "chat-turn"


class Settings(BaseSettings):
    """Environment-level settings.

    Provider keys are platform defaults; a tenant's own key always wins.
    Langfuse credentials are optional and only enable tracing.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    google_api_key: str | None = None
    embedding_model: str = "text-embedding-3-small"

    langfuse_public_key: str | None = None
    langfuse_secret_key: str | None = None
    langfuse_host: str = "https://cloud.langfuse.com"
    telemetry_project: str = "customer-support-platform"

    redis_url: str | None = None
    session_ttl_seconds: int = Field(default=30 * 60, ge=1)
    session_sweep_interval_seconds: float = Field(default=60.0, gt=0.0)

    database_url: str | None = None
    log_level: str = "INFO"

    retrieval: RetrievalConfig = RetrievalConfig()
    agent: AgentConfig = AgentConfig()
    chunking: ChunkingConfig = ChunkingConfig()

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.langfuse_public_key and self.langfuse_secret_key)


@lru_cache
def get_settings() -> Settings:
    """Return process-wide settings loaded once from the environment."""
    return Settings()
