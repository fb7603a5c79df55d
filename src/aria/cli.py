"""Aria CLI: chat with the agent, run one-off queries, and serve the UI."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from aria.config import get_settings

console = Console()

_QUIT_WORDS = ("quit", "exit", "q")
_LISTEN_WORDS = ("/listen", "/l")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Aria: a voice-capable assistant grounded on real-time web search."""
    level = logging.DEBUG if verbose else get_settings().log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


# ======================================================================
# CHAT: interactive conversation through the orchestrator
# ======================================================================
@main.command()
@click.option("--voice/--no-voice", default=None, help="Speak answers and allow /listen")
@click.option("--stream/--no-stream", default=None, help="Stream answers as they generate")
def chat(voice: bool | None, stream: bool | None) -> None:
    """Interactive chat.  Type /listen to ask by voice."""
    settings = get_settings().model_copy()
    if voice is not None:
        settings.voice_enabled = voice
    if stream is not None:
        settings.stream_responses = stream

    from aria.interface.agent import AgentOrchestrator

    agent = AgentOrchestrator.from_settings(settings)
    _warn_unavailable(settings)
    asyncio.run(_chat_loop(agent))


async def _chat_loop(agent) -> None:
    loop = asyncio.get_running_loop()
    printer = _EventPrinter(agent)
    agent.add_listener(printer)

    hint = "Type your question and press Enter. Type 'quit' to exit."
    if agent.voice_available:
        hint += " Type /listen to speak."
    greeting = agent.conversation.messages[0].text if len(agent.conversation) else ""
    console.print(Panel(f"{greeting}\n\n[dim]{hint}[/]".strip(), title="[bold cyan]Aria[/]"))

    try:
        while True:
            try:
                line = await loop.run_in_executor(
                    None, console.input, "\n[bold cyan]You>[/] "
                )
            except (EOFError, KeyboardInterrupt):
                break
            line = line.strip()
            if line.lower() in _QUIT_WORDS:
                break
            if not line:
                continue
            if line.lower() in _LISTEN_WORDS:
                console.print("[dim]Listening...[/]")
                await agent.listen()
            else:
                await agent.submit(line)
            printer.finish_turn(agent)
    finally:
        await agent.cleanup()


class _EventPrinter:
    """Renders agent events on the console."""

    def __init__(self, agent) -> None:
        self._streamed = False
        # The greeting is not an answer.
        greeting = _last_answer(agent)
        self._last_answer_id = greeting.id if greeting else ""

    def __call__(self, event) -> None:
        if event.kind == "notice":
            console.print(f"[yellow]{event.payload.get('message', '')}[/]")
        elif event.kind == "chunk":
            console.print(event.payload.get("text", ""), end="", highlight=False)
            self._streamed = True
        elif event.kind == "state":
            logging.getLogger(__name__).debug("Avatar: %s", event.payload)

    def finish_turn(self, agent) -> None:
        message = _last_answer(agent)
        if message is None or message.id == self._last_answer_id:
            return
        self._last_answer_id = message.id
        if self._streamed:
            console.print()
            self._streamed = False
            return
        _display_answer(message.text)


def _last_answer(agent):
    for message in reversed(agent.conversation.messages):
        if not message.is_user and not message.is_loading:
            return message
    return None


def _display_answer(text: str) -> None:
    console.print()
    console.print(Panel(Markdown(text), title="[bold cyan]Aria[/]", border_style="cyan"))


def _warn_unavailable(settings) -> None:
    if not settings.generation_available:
        console.print(
            "[yellow]No LLM API key configured; answers will fail. "
            "Set OPENAI_API_KEY or ANTHROPIC_API_KEY.[/]"
        )
    if not settings.search_available:
        console.print(
            "[yellow]TAVILY_API_KEY not set; answers will not be grounded on web search.[/]"
        )


# ======================================================================
# ASK: one question, no orchestration
# ======================================================================
@main.command()
@click.argument("question")
@click.option("--stream", "-s", is_flag=True, help="Print the answer as it generates")
def ask(question: str, stream: bool) -> None:
    """Answer a single question."""
    from aria.rag.pipeline import PipelineError, QueryPipeline

    settings = get_settings()
    _warn_unavailable(settings)
    pipeline = QueryPipeline.from_settings(settings)

    try:
        if stream:
            pipeline.answer_streaming(
                question, lambda chunk: console.print(chunk, end="", highlight=False)
            )
            console.print()
            return
        with console.status("[bold cyan]Searching and thinking..."):
            answer = pipeline.answer(question)
    except PipelineError as exc:
        console.print()
        console.print(f"[red]{exc}[/]")
        sys.exit(1)
    _display_answer(answer)


# ======================================================================
# SEARCH: inspect the grounding results
# ======================================================================
@main.command()
@click.argument("query")
@click.option("--max-results", "-n", default=None, type=int, help="Results to fetch")
@click.option("--context", "-c", "show_context", is_flag=True, help="Print the assembled context")
@click.option("--json", "as_json", is_flag=True, help="Print the results as JSON")
def search(query: str, max_results: int | None, show_context: bool, as_json: bool) -> None:
    """Run a web search and show what the model would see."""
    from aria.rag.context import assemble
    from aria.rag.search import SearchClient, results_to_dicts

    settings = get_settings()
    n = max_results if max_results is not None else settings.search_max_results
    with SearchClient(settings=settings) as client:
        with console.status("[bold cyan]Searching the web..."):
            results = client.search(query, max_results=n)

    if show_context:
        console.print(assemble(results), highlight=False)
        return
    if as_json:
        click.echo(json.dumps(results_to_dicts(results), indent=2))
        return
    if not results:
        console.print("[yellow]No results found.[/]")
        return

    table = Table(title="Search Results", show_lines=True)
    table.add_column("#", width=3)
    table.add_column("Score", width=6)
    table.add_column("Title", max_width=40)
    table.add_column("URL", max_width=40)
    table.add_column("Content", max_width=80)
    for i, r in enumerate(results, 1):
        table.add_row(
            str(i),
            f"{r.relevance_score:.3f}",
            r.title,
            r.url,
            r.content[:200] + "..." if len(r.content) > 200 else r.content,
        )
    console.print(table)


# ======================================================================
# LISTEN: one voice turn
# ======================================================================
@main.command()
def listen() -> None:
    """Record one utterance, answer it, and speak the answer."""
    from aria.interface.agent import AgentOrchestrator

    settings = get_settings().model_copy()
    settings.voice_enabled = True
    agent = AgentOrchestrator.from_settings(settings)

    async def run() -> None:
        printer = _EventPrinter(agent)
        agent.add_listener(printer)
        try:
            console.print(f"[dim]Listening for {settings.capture_window:g}s...[/]")
            await agent.listen()
            question = next((m for m in agent.conversation if m.is_user), None)
            if question is not None:
                console.print(f"[bold cyan]You said:[/] {question.text}")
            printer.finish_turn(agent)
        finally:
            await agent.cleanup()

    asyncio.run(run())


@main.command()
def voices() -> None:
    """List the available voice profiles."""
    from aria.interface.voice.tts import VOICE_PROFILES

    active = get_settings().voice_profile
    table = Table(title="Voice Profiles")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Description")
    for profile in VOICE_PROFILES.values():
        marker = " (active)" if profile.id == active else ""
        table.add_row(profile.id + marker, profile.label, profile.description)
    console.print(table)


# ======================================================================
# SERVE: WebSocket interface
# ======================================================================
@main.command()
@click.option("--host", default=None, help="Override host")
@click.option("--port", "-p", default=None, type=int, help="Override port")
def serve(host: str | None, port: int | None) -> None:
    """Start the WebSocket interface."""
    import uvicorn

    from aria.interface.ws_server import create_interface_app

    settings = get_settings()
    uvicorn.run(
        create_interface_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
