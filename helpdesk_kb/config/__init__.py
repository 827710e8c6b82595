"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Dict, List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="knowledge-base-service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Embedding Provider ==========
    embedding_provider: str = Field(
        default="openai",
        description="Embedding provider: openai, zai or mock"
    )
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for embeddings and first-reply drafting"
    )
    zai_api_key: Optional[str] = Field(
        default=None,
        description="Z.AI API key (when embedding_provider=zai)"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name"
    )
    embedding_dimension: int = Field(
        default=1536,
        description="Embedding vector dimension",
        ge=8
    )
    embedding_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single embedding request",
        gt=0,
        le=300
    )

    # ========== Embedding Job Queue ==========
    embedding_workers: int = Field(
        default=4,
        description="Number of concurrent embedding generation workers",
        ge=1,
        le=64
    )
    embedding_queue_size: int = Field(
        default=1000,
        description="Maximum number of queued embedding jobs",
        ge=1
    )
    embedding_drain_timeout_seconds: float = Field(
        default=10.0,
        description="Seconds to wait for queued jobs on shutdown before cancelling",
        ge=0
    )
    flag_reaper_interval_seconds: int = Field(
        default=300,
        description="Seconds between stuck in-progress flag sweeps (0 disables)",
        ge=0
    )

    # ========== Search ==========
    search_default_limit: int = Field(default=10, description="Default search result limit", ge=1)
    search_default_threshold: float = Field(
        default=0.5,
        description="Default minimum cosine similarity",
        ge=-1.0,
        le=1.0
    )
    search_max_limit: int = Field(default=100, description="Upper bound for search limit", ge=1)

    # ========== LLM Settings (first reply drafting) ==========
    llm_model: str = Field(
        default="gpt-4o",
        description="Chat model used to draft automatic first replies"
    )
    llm_temperature: float = Field(
        default=0.7,
        description="Default temperature for LLM",
        ge=0.0,
        le=2.0
    )
    llm_max_tokens: int = Field(
        default=500,
        description="Default max tokens for LLM generation",
        ge=1,
        le=8000
    )

    # ========== Editor Directory ==========
    editor_tokens: Dict[str, str] = Field(
        default_factory=dict,
        description="Bearer token -> editor (agent) id allowed to modify articles"
    )
    viewer_tokens: Dict[str, str] = Field(
        default_factory=dict,
        description="Bearer token -> user id for authenticated non-editors"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("embedding_provider")
    @classmethod
    def validate_embedding_provider(cls, v: str) -> str:
        """Ensure the embedding provider is supported."""
        v = v.lower()
        allowed = {"openai", "zai", "mock"}
        if v not in allowed:
            raise ValueError(f"embedding_provider must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ArticleStatus(str):
    """Knowledge-base article lifecycle statuses."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class EmbeddingField(str):
    """Article fields that carry an embedding."""
    METADATA = "metadata"   # title + description
    CONTENT = "content"


DEFAULT_TAG_COLOR = "#6B7280"


# ========== Lists for validation ==========

VALID_ARTICLE_STATUSES = [
    ArticleStatus.DRAFT, ArticleStatus.PUBLISHED, ArticleStatus.ARCHIVED
]
VALID_EMBEDDING_FIELDS = [EmbeddingField.METADATA, EmbeddingField.CONTENT]
