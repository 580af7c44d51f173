"""Which chat models can be handed tools."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ModelCapabilities(BaseModel):
    """Immutable tool-calling support table passed to a backend at construction.

    Models listed in `unsupported_tool_calls` always lose; unknown models are
    treated as not supporting tool calls.
    """

    model_config = ConfigDict(frozen=True)

    supported_tool_calls: frozenset[str] = Field(default_factory=frozenset)
    unsupported_tool_calls: frozenset[str] = Field(default_factory=frozenset)

    def supports_tool_calls(self, model_name: str) -> bool:
        if model_name in self.unsupported_tool_calls:
            return False
        return model_name in self.supported_tool_calls


DEFAULT_CAPABILITIES = ModelCapabilities(
    supported_tool_calls=frozenset(
        {
            "gpt-3.5-turbo",
            "gpt-3.5-turbo-0125",
            "gpt-3.5-turbo-1106",
            "gpt-4",
            "gpt-4-0613",
            "gpt-4-0125-preview",
            "gpt-4-turbo",
            "gpt-4-turbo-2024-04-09",
            "gpt-4o",
            "gpt-4o-mini",
            "claude-2",
            "claude-2.1",
            "claude-3-opus",
            "claude-3-sonnet",
            "claude-3-haiku",
            "claude-3-5-sonnet",
            "llama3.1",
            "llama3.1:8b",
            "llama3.1:70b",
            "llama3.2",
            "llama3.2:1b",
            "llama3.2:3b",
            "mistral-small3.1",
            "mistral-nemo",
            "deepseek-chat",
            "deepseek-coder",
            "gemini-pro",
            "gemini-1.5-flash",
            "gemini-1.5-pro",
            "qwen2.5:7b-instruct",
            "qwen2.5:14b-instruct",
            "qwen2.5:32b-instruct",
            "qwen2.5:72b-instruct",
            "qwen-plus",
            "qwen-turbo",
            "qwen-max",
            "glm-4",
            "moonshot-v1-8k",
            "moonshot-v1-32k",
            "moonshot-v1-128k",
        }
    ),
    unsupported_tool_calls=frozenset(
        {
            "deepseek-r1",
            "deepseek-v3",
            "deepseek-math",
            "llama2",
            "llama2:7b",
            "llama2:13b",
            "llama2:70b",
            "codellama",
            "qwen2:0.5b",
            "qwen2:1.5b",
            "qwen2:7b",
            "gemma2:2b",
            "gemma2:9b",
            "phi3",
            "phi3:mini",
            "mixtral:8x7b",
            "gpt-3.5-turbo-instruct",
            "text-davinci-003",
            "claude-instant-1",
            "text-embedding-ada-002",
            "text-embedding-3-small",
            "text-embedding-3-large",
        }
    ),
)
