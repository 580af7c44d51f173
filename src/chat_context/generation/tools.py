"""Tools a tool-calling chat model may invoke during a reply."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field


class ToolSpec(BaseModel):
    """A named tool with a pydantic argument schema and a plain handler."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], str]

    def invoke(self, arguments: dict[str, Any]) -> str:
        return self.handler(self.args_schema.model_validate(arguments))


class ToolRegistry:
    """Holds the tools offered to the model and runs the ones it calls."""

    def __init__(self, specs: list[ToolSpec] | None = None) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def names(self) -> list[str]:
        return list(self._tools)

    def execute(self, name: str, arguments: dict[str, Any]) -> str:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return spec.invoke(arguments)

    def as_langchain_tools(self) -> list[StructuredTool]:
        return [
            StructuredTool.from_function(
                name=spec.name,
                description=spec.description,
                args_schema=spec.args_schema,
                func=self._bind(spec),
            )
            for spec in self._tools.values()
        ]

    def _bind(self, spec: ToolSpec) -> Callable[..., str]:
        def _call(**kwargs: Any) -> str:
            return spec.invoke(kwargs)

        return _call


class CurrentTimeInput(BaseModel):
    timezone: str = Field(default="UTC", description="IANA time zone name, e.g. Europe/Paris.")


def _current_time(data: CurrentTimeInput) -> str:
    zone = timezone.utc if data.timezone.upper() == "UTC" else ZoneInfo(data.timezone)
    now = datetime.now(zone)
    return now.strftime("%Y-%m-%d %H:%M:%S %Z")


def default_tools() -> ToolRegistry:
    """Tools offered to capable models by the terminal client."""
    return ToolRegistry(
        [
            ToolSpec(
                name="current_time",
                description="Return the current date and time in the given time zone.",
                args_schema=CurrentTimeInput,
                handler=_current_time,
            )
        ]
    )
