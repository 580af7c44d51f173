"""Configuration models for the chat context engine."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RankingConfig(BaseModel):
    """BM25 parameters and the score cache bound of the ranking engine."""

    k1: float = Field(default=1.5, ge=0.0)
    b: float = Field(default=0.75, ge=0.0, le=1.0)
    cache_size: int = Field(default=4096, ge=0)


class HistoryConfig(BaseModel):
    """Configures relevance filtering of prior conversation turns."""

    budget: int = Field(default=50, ge=0)
    min_score: float | None = Field(default=None, ge=0.0)
    embed_timeout_seconds: float = Field(default=10.0, gt=0.0)


class StreamConfig(BaseModel):
    """Configures the generation stream controller."""

    idle_timeout_seconds: float | None = Field(default=None, gt=0.0)


class SessionConfig(BaseModel):
    """Configures prompt persona and collaborator time limits for a chat turn."""

    role: str = Field(default="PaiChat", min_length=1)
    style: str = Field(default="positive, warm and professional", min_length=1)
    history_budget: int = Field(default=50, ge=0)
    cache_timeout_seconds: float = Field(default=5.0, gt=0.0)


class ChatSettings(BaseSettings):
    """Process-level settings read from the environment and `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_CONTEXT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    llm_provider: Literal["openai", "ollama"] = Field(default="openai")
    llm_model: str = Field(default="gpt-4o-mini")
    llm_base_url: str = Field(default="http://localhost:11434")
    embedder: Literal["none", "hashing", "openai", "ollama"] = Field(default="hashing")
    embedding_model: str = Field(default="text-embedding-3-small")
    history_path: Path = Field(default=Path("chat_history.db"))
    log_level: str = Field(default="WARNING")
    session: SessionConfig = SessionConfig()
    history: HistoryConfig = HistoryConfig()
    stream: StreamConfig = StreamConfig()
