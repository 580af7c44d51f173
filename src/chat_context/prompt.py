"""Prompt template used for every chat turn."""

from __future__ import annotations

from typing import Any, Protocol

from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from chat_context.errors import PromptFormatError
from chat_context.messages import from_langchain, to_langchain_many
from chat_context.types import ChatMessage

SYSTEM_PROMPT = (
    "You are {role}. Answer in a {style} tone. "
    "Your goal is to answer the user's question thoroughly and accurately, or to give "
    "suitable advice, while keeping the user satisfied. "
    "Earlier turns of the conversation that relate to the question are included for context."
)


class PromptFormatter(Protocol):
    """Renders prompt variables into the messages sent to the backend."""

    def format(self, variables: dict[str, Any]) -> list[ChatMessage]:
        """Return the formatted message list."""


class ChatPromptFormatter:
    """System persona, optional chat history, then the user's question.

    `chat_history` may be a list of `ChatMessage` (inserted as structured
    messages) or omitted for a fresh conversation.
    """

    def __init__(self, system_prompt: str = SYSTEM_PROMPT) -> None:
        self.template = ChatPromptTemplate.from_messages(
            [
                ("system", system_prompt),
                MessagesPlaceholder(variable_name="chat_history", optional=True),
                ("human", "Question: {question}"),
            ]
        )

    def format(self, variables: dict[str, Any]) -> list[ChatMessage]:
        values = dict(variables)
        history = values.get("chat_history")
        if history is not None:
            values["chat_history"] = to_langchain_many(history)
        try:
            rendered = self.template.format_messages(**values)
        except (KeyError, ValueError, TypeError) as exc:
            raise PromptFormatError(f"prompt formatting failed: {exc}") from exc
        return [from_langchain(message) for message in rendered]
