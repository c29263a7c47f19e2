"""CLI commands for codeagent."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from codeagent.agent.loop import AgentLoop, LoopListener, LoopResult
from codeagent.agent.tools import build_default_tools
from codeagent.config import ensure_sessions_dir, load_config, save_default_config
from codeagent.config.schema import Config
from codeagent.errors import CodeAgentError, ConfigurationError, ProviderError, SessionNotFoundError
from codeagent.providers import create_provider
from codeagent.session.export import export_markdown
from codeagent.session.models import ToolCallRequest, ToolOutcome
from codeagent.session.store import SessionStore
from codeagent.utils.helpers import preview
from codeagent.utils.logging import configure_logging

app = typer.Typer(
    name="codeagent",
    help="codeagent: a tool-using coding assistant for the terminal",
)
console = Console()


class ConsoleListener(LoopListener):
    """Prints streamed text and tool activity as it happens."""

    def __init__(self, out: Console):
        self.out = out
        self.streamed = False
        self.streamed_any = False

    def reset(self) -> None:
        self.streamed = False
        self.streamed_any = False

    def on_text(self, text: str) -> None:
        self.streamed = True
        self.streamed_any = True
        self.out.print(text, end="", markup=False, highlight=False)

    def on_tool_start(self, call: ToolCallRequest) -> None:
        if self.streamed:
            self.out.print()
            self.streamed = False
        arguments = call.arguments if isinstance(call.arguments, dict) else {}
        args = ", ".join(f"{k}={preview(v)}" for k, v in arguments.items())
        self.out.print(f"[dim]> {escape(call.name)}({escape(args)})[/dim]")

    def on_tool_result(self, call: ToolCallRequest, outcome: ToolOutcome) -> None:
        style = "green" if outcome.ok else "red"
        self.out.print(f"[{style}]  {escape(outcome.human_summary)}[/{style}]", highlight=False)

    def on_retry(self, attempt: int, error: ProviderError) -> None:
        if self.streamed:
            self.out.print()
            self.streamed = False
            self.out.print("[yellow](partial response above discarded)[/yellow]")
        self.out.print(f"[dim]Provider error, retrying ({attempt}): {escape(str(error))}[/dim]")


def _load(config_path: Optional[Path]) -> Config:
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    configure_logging(config.log_level)
    return config


@app.command()
def onboard(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
) -> None:
    """Initialize configuration and the sessions directory."""
    path = save_default_config(config_path)
    config = load_config(config_path)
    sessions = ensure_sessions_dir(config)

    console.print(f"[green]Config created at:[/green] {path}")
    console.print(f"[green]Sessions stored in:[/green] {sessions}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit config to add your API key")
    console.print('2. Run: codeagent agent -m "Hello!"')


@app.command()
def agent(
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Message to send"),
    session_id: Optional[str] = typer.Option(None, "--session", "-s", help="Resume an existing session"),
    title: str = typer.Option("New Coding Session", "--title", "-t", help="Title for a new session"),
    directory: Optional[Path] = typer.Option(None, "--dir", "-d", help="Working directory for tools"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
) -> None:
    """Chat with the agent."""
    config = _load(config_path)
    store = SessionStore(ensure_sessions_dir(config))

    if session_id:
        try:
            info = store.info(session_id)
        except SessionNotFoundError:
            console.print(f"[red]Error:[/red] Session not found: {session_id}")
            raise typer.Exit(1)
        workspace = Path(info.directory).expanduser()
        console.print(f"[dim]Resuming session {info.id} ({info.title}, {info.turn_count} turns)[/dim]")
    else:
        workspace = (directory or Path.cwd()).expanduser().resolve()
        session_id = store.create(title=title, directory=str(workspace))

    listener = ConsoleListener(console)
    loop = AgentLoop(
        provider=create_provider(config),
        tools=build_default_tools(workspace, config.tools),
        store=store,
        config=config.agent,
        listener=listener,
    )

    def send(text: str) -> LoopResult | None:
        listener.reset()
        try:
            result = asyncio.run(loop.run(session_id, text))
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted.[/yellow]")
            return None
        except CodeAgentError as e:
            if listener.streamed:
                console.print()
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            return None
        if listener.streamed:
            console.print()
        if result.ok:
            if result.answer and not listener.streamed_any:
                console.print(result.answer, markup=False)
        else:
            console.print(f"[red]{type(result.error).__name__}:[/red] {escape(str(result.error))}")
        return result

    if message:
        result = send(message)
        if result is None or not result.ok:
            raise typer.Exit(1)
        return

    console.print(f"[bold]codeagent[/bold] session [cyan]{session_id}[/cyan] in {workspace}")
    console.print("Type 'exit' to quit.\n")
    while True:
        try:
            user_input = console.input("[bold blue]> [/bold blue]")
            if user_input.strip().lower() in ("exit", "quit"):
                break
            if not user_input.strip():
                continue
            send(user_input)
            console.print()
        except (KeyboardInterrupt, EOFError):
            break
    console.print("\n[dim]Goodbye![/dim]")


@app.command()
def sessions(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
) -> None:
    """List saved sessions, most recent first."""
    config = _load(config_path)
    store = SessionStore(ensure_sessions_dir(config))
    infos = store.list_sessions()
    if not infos:
        console.print("[dim]No sessions yet.[/dim]")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Directory")
    table.add_column("Turns", justify="right")
    table.add_column("Updated", style="green")
    for info in infos:
        table.add_row(
            info.id,
            info.title,
            info.directory,
            str(info.turn_count),
            info.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def export(
    session_id: str = typer.Argument(..., help="Session to export"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file (default: <title>_<id>.md)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
) -> None:
    """Export a session transcript to Markdown."""
    config = _load(config_path)
    store = SessionStore(ensure_sessions_dir(config))
    try:
        info = store.info(session_id)
        path = export_markdown(info, store.load(session_id), output)
    except CodeAgentError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    console.print(f"[green]Exported to:[/green] {path}")


@app.command()
def status(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
) -> None:
    """Show current status and configuration."""
    config = _load(config_path)
    agent_cfg = config.agent

    table = Table(title="codeagent Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Provider", config.provider.kind)
    table.add_row("Model", agent_cfg.model)
    table.add_row("Max Tokens", str(agent_cfg.max_tokens))
    table.add_row("Temperature", str(agent_cfg.temperature))
    table.add_row("Max Tool Iterations", str(agent_cfg.max_tool_iterations))
    table.add_row("Tool Offer Policy", ", ".join(p.value for p in agent_cfg.tool_offer_policy))
    table.add_row("Provider Retries", str(agent_cfg.max_provider_retries))
    table.add_row("Interrupted Calls", agent_cfg.interrupted_call_policy.value)

    api_key = config.provider.api_key
    table.add_row("API Key", f"...{api_key[-8:]}" if api_key else "[red]Not configured[/red]")
    table.add_row("API Base", config.provider.api_base or "Default")
    table.add_row("Tools", ", ".join(config.tools.enabled) or "[dim]None[/dim]")
    table.add_row("Sessions", str(config.sessions_path))

    console.print(table)


if __name__ == "__main__":
    app()
