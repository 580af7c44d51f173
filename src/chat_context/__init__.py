"""Relevance-filtered conversational context engine."""

from .config import HistoryConfig, RankingConfig, SessionConfig, StreamConfig

__all__ = ["HistoryConfig", "RankingConfig", "SessionConfig", "StreamConfig"]
