"""Generation backend contracts and the LangChain chat-model adapter."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from typing import Any, Protocol

from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, ToolMessage

from chat_context.errors import EndOfStream
from chat_context.generation.capabilities import DEFAULT_CAPABILITIES, ModelCapabilities
from chat_context.generation.tools import ToolRegistry
from chat_context.messages import message_text, to_langchain_many
from chat_context.types import ChatMessage, StreamChunk, ToolCall

logger = logging.getLogger(__name__)


class StreamHandle(Protocol):
    """Incremental output of one generation call."""

    async def recv(self) -> StreamChunk:
        """Return the next increment, or raise `EndOfStream` when finished."""

    async def close(self) -> None:
        """Release the underlying stream."""


class GenerationBackend(Protocol):
    """Anything that can turn a prompt into a stream of increments."""

    async def stream(self, messages: Sequence[ChatMessage]) -> StreamHandle:
        """Open a generation stream for `messages`."""


class IteratorStream:
    """`StreamHandle` over any async iterator of `StreamChunk`."""

    def __init__(self, iterator: AsyncIterator[StreamChunk]) -> None:
        self._iterator = iterator

    async def recv(self) -> StreamChunk:
        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            raise EndOfStream() from None

    async def close(self) -> None:
        aclose = getattr(self._iterator, "aclose", None)
        if aclose is not None:
            await aclose()


class LangChainChatBackend:
    """Streams from any LangChain chat model, running the tools it calls.

    Tools are bound only when `capabilities` says the model can call them;
    otherwise the model runs as a plain conversation. When a round ends with
    tool calls, each call is executed, its output is sent back as a
    `ToolMessage` and the model is streamed again, for at most
    `max_tool_rounds` rounds.
    """

    def __init__(
        self,
        llm: Any,
        *,
        model_name: str,
        tools: ToolRegistry | None = None,
        capabilities: ModelCapabilities = DEFAULT_CAPABILITIES,
        max_tool_rounds: int = 4,
    ) -> None:
        self.model_name = model_name
        self.tools = tools or ToolRegistry()
        self.max_tool_rounds = max_tool_rounds
        self.tools_enabled = bool(len(self.tools)) and capabilities.supports_tool_calls(model_name)
        if self.tools_enabled:
            self.llm = llm.bind_tools(self.tools.as_langchain_tools())
            logger.info("model %s supports tool calls, bound %d tools", model_name, len(self.tools))
        else:
            self.llm = llm
            if len(self.tools):
                logger.info("model %s does not support tool calls, running without tools", model_name)

    async def stream(self, messages: Sequence[ChatMessage]) -> StreamHandle:
        return IteratorStream(self._rounds(to_langchain_many(messages)))

    async def _rounds(self, conversation: list[BaseMessage]) -> AsyncIterator[StreamChunk]:
        for _ in range(self.max_tool_rounds + 1):
            gathered: AIMessageChunk | None = None
            async with aclosing(self.llm.astream(conversation)) as chunks:
                async for chunk in chunks:
                    gathered = chunk if gathered is None else gathered + chunk
                    text = message_text(chunk.content)
                    if text:
                        yield StreamChunk(content=text)

            calls = list(getattr(gathered, "tool_calls", None) or []) if self.tools_enabled else []
            if gathered is None or not calls:
                return

            conversation.append(AIMessage(content=gathered.content, tool_calls=calls))
            for call in calls:
                tool_call = ToolCall(name=call["name"], id=call.get("id"), arguments=call.get("args") or {})
                yield StreamChunk(tool_calls=(tool_call,))
                output = await self._run_tool(tool_call)
                conversation.append(ToolMessage(content=output, tool_call_id=tool_call.id or ""))

        logger.warning("model %s still calling tools after %d rounds", self.model_name, self.max_tool_rounds)

    async def _run_tool(self, call: ToolCall) -> str:
        try:
            return await asyncio.to_thread(self.tools.execute, call.name, dict(call.arguments))
        except Exception as exc:
            # Reported back to the model as the tool result.
            logger.warning("tool %s failed: %r", call.name, exc)
            return f"Tool {call.name} failed: {exc}"
