"""Exception types raised by the chat context engine."""

from __future__ import annotations


class ChatContextError(Exception):
    """Base class for errors surfaced to callers of the engine."""


class PromptFormatError(ChatContextError):
    """The prompt template could not be rendered with the given variables."""


class GenerationError(ChatContextError):
    """The generation backend could not open a stream."""


class EndOfStream(Exception):
    """Raised by a stream handle once the backend has nothing more to send."""
