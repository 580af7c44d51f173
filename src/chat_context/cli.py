"""Interactive terminal client for the chat context engine."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import threading
from collections import deque
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from chat_context.config import ChatSettings
from chat_context.errors import ChatContextError
from chat_context.generation.backend import GenerationBackend, LangChainChatBackend
from chat_context.generation.fallback import DeterministicBackend
from chat_context.generation.stream import StreamController
from chat_context.generation.tools import default_tools
from chat_context.history.cache import create_history_cache
from chat_context.history.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from chat_context.history.filter import HistoryFilter
from chat_context.obs.logs import configure_logging
from chat_context.session import ChatSession
from chat_context.types import ChatMessage, StreamEvent, StreamState

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(
    name="chat-context",
    help="Chat with relevance-filtered conversation history.",
    add_completion=False,
)

_EXIT_WORDS = ("exit", "quit")

DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", help="SQLite file holding chat history (defaults to settings)."),
]
SessionOption = Annotated[str, typer.Option("--session", "-s", help="Conversation id.")]


def _create_backend(settings: ChatSettings) -> GenerationBackend:
    if settings.llm_provider == "ollama":
        from langchain_ollama import ChatOllama

        llm = ChatOllama(model=settings.llm_model, base_url=settings.llm_base_url, temperature=0)
    elif os.getenv("OPENAI_API_KEY"):
        from langchain_openai import ChatOpenAI

        llm = ChatOpenAI(model=settings.llm_model, temperature=0)
    else:
        return DeterministicBackend(delay_seconds=0.02)

    return LangChainChatBackend(llm, model_name=settings.llm_model, tools=default_tools())


def _create_embedder(settings: ChatSettings) -> Embedder | None:
    """Embedder for history relevance; None keeps relevance lexical."""
    if settings.embedder == "none":
        return None
    if settings.embedder == "hashing":
        return HashingEmbedder()
    if settings.embedder == "openai" and not os.getenv("OPENAI_API_KEY"):
        logger.warning("OPENAI_API_KEY is not set, history relevance stays lexical")
        return None

    try:
        if settings.embedder == "openai":
            from langchain_openai import OpenAIEmbeddings

            embeddings = OpenAIEmbeddings(model=settings.embedding_model)
        else:
            from langchain_ollama import OllamaEmbeddings

            embeddings = OllamaEmbeddings(
                model=settings.embedding_model, base_url=settings.llm_base_url
            )
    except (ValueError, TypeError) as exc:
        logger.warning(
            "creating %s embedder failed, history relevance stays lexical: %r",
            settings.embedder,
            exc,
        )
        return None
    return LangChainEmbedder(embeddings)


def _build_session(settings: ChatSettings, db: Path | None) -> ChatSession:
    return ChatSession(
        backend=_create_backend(settings),
        cache=create_history_cache(db or settings.history_path),
        history_filter=HistoryFilter(_create_embedder(settings), config=settings.history),
        config=settings.session,
        stream_config=settings.stream,
    )


class _LineFeed:
    """Stdin lines delivered to the event loop by a daemon reader thread.

    Lines that arrive while a reply is streaming but are not stream commands
    are deferred and handed back as the next prompts.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._deferred: deque[str | None] = deque()
        self._loop = loop
        threading.Thread(target=self._read, name="stdin-reader", daemon=True).start()

    def _read(self) -> None:
        try:
            for line in sys.stdin:
                self._loop.call_soon_threadsafe(self.queue.put_nowait, line.rstrip("\n"))
            self._loop.call_soon_threadsafe(self.queue.put_nowait, None)
        except RuntimeError:
            # The event loop closed while the thread was blocked on stdin.
            return

    def defer(self, line: str | None) -> None:
        self._deferred.append(line)

    async def next_line(self) -> str | None:
        if self._deferred:
            return self._deferred.popleft()
        return await self.queue.get()


async def _listen_for_commands(feed: _LineFeed, controller: StreamController) -> None:
    while not controller.is_finished:
        line = await feed.queue.get()
        command = (line or "").strip().lower()
        if command == "pause":
            controller.pause()
        elif command in ("continue", "resume"):
            controller.resume()
        elif command == "stop":
            controller.stop()
        else:
            feed.defer(line)


def _announce_state(previous: StreamState, current: StreamState) -> None:
    if current is StreamState.PAUSED:
        console.print("\n[paused]", style="dim", markup=False)
    elif previous is StreamState.PAUSED and current is StreamState.STREAMING:
        console.print("\n[resumed]", style="dim", markup=False)


def _render(event: StreamEvent) -> None:
    if event.kind == "tool_call":
        console.print(f"[calling tool: {event.content}]", end="", style="dim", markup=False)
    else:
        console.print(event.content, end="", markup=False, highlight=False)


async def _chat_loop(session: ChatSession, session_id: str) -> None:
    feed = _LineFeed(asyncio.get_running_loop())
    console.print("[bold]chat-context[/]: type 'exit' or 'quit' to leave.")
    console.print("While a reply streams, type 'pause', 'continue' or 'stop'.")
    try:
        while True:
            console.print("[bold]You:[/] ", end="")
            line = await feed.next_line()
            if line is None:
                break
            text = line.strip()
            if text.lower() in _EXIT_WORDS:
                break
            if not text:
                continue

            controller = StreamController(
                session.stream_config, on_event=_render, on_state=_announce_state
            )
            listener = asyncio.create_task(_listen_for_commands(feed, controller))
            console.print("[bold]Assistant:[/] ", end="")
            try:
                reply = await session.respond(session_id, text, controller=controller)
            except ChatContextError as exc:
                console.print(f"\n[red]Error:[/] {exc}")
                continue
            finally:
                listener.cancel()

            console.print()
            if reply.state is StreamState.STOPPED:
                console.print("[stopped]", style="dim", markup=False)
            elif reply.failed:
                console.print("[red]Sorry, generating a reply failed. Please try again later.[/]")
    finally:
        await session.close()
    console.print("Goodbye!")


@app.command("chat")
def chat_cmd(session_id: SessionOption = "default", db: DbOption = None) -> None:
    """Start an interactive chat."""
    settings = ChatSettings()
    configure_logging(settings.log_level)
    asyncio.run(_chat_loop(_build_session(settings, db), session_id))


@app.command("history")
def history_cmd(session_id: SessionOption = "default", db: DbOption = None) -> None:
    """Print the stored history of a conversation."""
    settings = ChatSettings()
    configure_logging(settings.log_level)
    session = _build_session(settings, db)

    async def _load() -> list[ChatMessage]:
        try:
            return await session.get_history(session_id)
        finally:
            await session.close()

    messages = asyncio.run(_load())
    if not messages:
        console.print(f"No history for session '{session_id}'.")
        return

    table = Table(title=f"Session {session_id}")
    table.add_column("#", justify="right")
    table.add_column("Role")
    table.add_column("Content")
    for index, message in enumerate(messages, start=1):
        table.add_row(str(index), message.role.value, message.content)
    console.print(table)


@app.command("clear")
def clear_cmd(session_id: SessionOption = "default", db: DbOption = None) -> None:
    """Delete the stored history of a conversation."""
    settings = ChatSettings()
    configure_logging(settings.log_level)
    session = _build_session(settings, db)

    async def _clear() -> None:
        try:
            await session.clear_history(session_id)
        finally:
            await session.close()

    asyncio.run(_clear())
    console.print(f"Cleared history for session '{session_id}'.")


if __name__ == "__main__":
    app()
