"""Conversation history storage backends."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter

from chat_context.types import ChatMessage

logger = logging.getLogger(__name__)

_HISTORY_ADAPTER = TypeAdapter(list[ChatMessage])


class HistoryCache(Protocol):
    """Minimal history store contract consumed by `ChatSession`."""

    async def load_history(self, session_id: str) -> list[ChatMessage]:
        """Return the stored history, or an empty list for unknown sessions."""

    async def save_history(self, session_id: str, history: list[ChatMessage]) -> None:
        """Replace the stored history for a session."""

    async def close(self) -> None:
        """Release any underlying resources."""


class InMemoryHistoryCache:
    """Process-local history store used for tests and as the fallback backend."""

    def __init__(self) -> None:
        self._store: dict[str, list[ChatMessage]] = {}
        self._lock = asyncio.Lock()

    async def load_history(self, session_id: str) -> list[ChatMessage]:
        async with self._lock:
            return list(self._store.get(session_id, []))

    async def save_history(self, session_id: str, history: list[ChatMessage]) -> None:
        async with self._lock:
            self._store[session_id] = list(history)

    async def close(self) -> None:
        async with self._lock:
            self._store.clear()


class SqliteHistoryCache:
    """Key-value history store in a local SQLite file.

    Each session is one row holding its messages as JSON. Blocking sqlite
    calls run in a worker thread so the event loop keeps streaming.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._closed = False
        _ensure_history_table(self.path)

    async def load_history(self, session_id: str) -> list[ChatMessage]:
        self._check_open()
        raw = await asyncio.to_thread(self._read, session_id)
        if raw is None:
            return []
        return _HISTORY_ADAPTER.validate_json(raw)

    async def save_history(self, session_id: str, history: list[ChatMessage]) -> None:
        self._check_open()
        payload = _HISTORY_ADAPTER.dump_json(list(history)).decode("utf-8")
        await asyncio.to_thread(self._write, session_id, payload)

    async def close(self) -> None:
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"history cache is closed: {self.path}")

    def _read(self, session_id: str) -> str | None:
        with sqlite3.connect(self.path) as conn:
            cur = conn.execute(
                "SELECT messages FROM chat_history WHERE session_id = ?", (session_id,)
            )
            row = cur.fetchone()
        return row[0] if row else None

    def _write(self, session_id: str, payload: str) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT INTO chat_history(session_id, messages) VALUES(?, ?) "
                "ON CONFLICT(session_id) DO UPDATE SET messages=excluded.messages",
                (session_id, payload),
            )
            conn.commit()


def create_history_cache(path: str | Path | None) -> HistoryCache:
    """Open the SQLite store at `path`, or fall back to memory if that fails."""
    if path is None:
        return InMemoryHistoryCache()
    try:
        return SqliteHistoryCache(path)
    except (sqlite3.Error, OSError) as exc:
        logger.warning("history store %s unavailable, using in-memory cache: %s", path, exc)
        return InMemoryHistoryCache()


def _ensure_history_table(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS chat_history "
            "(session_id TEXT PRIMARY KEY, messages TEXT NOT NULL)"
        )
        conn.commit()
