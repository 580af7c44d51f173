"""Conversion between engine messages and LangChain message objects."""

from __future__ import annotations

from collections.abc import Iterable

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from chat_context.types import ChatMessage, Role, ToolCall

_ROLE_BY_TYPE = {
    "system": Role.SYSTEM,
    "human": Role.USER,
    "ai": Role.ASSISTANT,
    "tool": Role.TOOL,
}


def to_langchain(message: ChatMessage) -> BaseMessage:
    if message.role is Role.SYSTEM:
        return SystemMessage(content=message.content)
    if message.role is Role.USER:
        return HumanMessage(content=message.content)
    if message.role is Role.TOOL:
        return ToolMessage(content=message.content, tool_call_id="")
    return AIMessage(
        content=message.content,
        tool_calls=[
            {"name": call.name, "args": dict(call.arguments), "id": call.id}
            for call in message.tool_calls
        ],
    )


def from_langchain(message: BaseMessage) -> ChatMessage:
    role = _ROLE_BY_TYPE.get(message.type)
    if role is None:
        raise ValueError(f"Unsupported message type: {message.type}")
    tool_calls = tuple(
        ToolCall(name=call["name"], id=call.get("id"), arguments=call.get("args") or {})
        for call in getattr(message, "tool_calls", None) or []
    )
    return ChatMessage(role=role, content=message_text(message.content), tool_calls=tool_calls)


def to_langchain_many(messages: Iterable[ChatMessage]) -> list[BaseMessage]:
    return [to_langchain(message) for message in messages]


def message_text(content: object) -> str:
    """Flatten LangChain content (plain string or content blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)
