"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A tool invocation requested by the generation backend."""

    model_config = ConfigDict(frozen=True)

    name: str
    id: str | None = None
    arguments: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """One immutable message of a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=content)


class StreamState(str, Enum):
    """Lifecycle of a generation stream."""

    IDLE = "idle"
    STREAMING = "streaming"
    PAUSED = "paused"
    STOPPED = "stopped"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamState.STOPPED, StreamState.DONE, StreamState.FAILED)


@dataclass(slots=True, frozen=True)
class StreamChunk:
    """One increment received from a generation backend."""

    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """Side-channel event emitted while a stream is consumed."""

    kind: Literal["text", "tool_call"]
    content: str
    tool_call: ToolCall | None = None


@dataclass(slots=True, frozen=True)
class StreamResult:
    """Accumulated output of a finished stream."""

    text: str
    state: StreamState
    error: BaseException | None = None


@dataclass(slots=True, frozen=True)
class ScoredDocument:
    """A corpus document with its BM25 score."""

    index: int
    text: str
    score: float


@dataclass(slots=True)
class ChatReply:
    """Outcome of one chat turn."""

    session_id: str
    text: str
    state: StreamState
    context_size: int
    trace_id: str
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return self.state is StreamState.FAILED
