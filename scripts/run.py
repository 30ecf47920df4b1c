"""Main entry point for the repository agent."""

import asyncio
import logging
import shutil
import sys
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import configure_repo_path, settings
from src.tools import CommandPolicy, CommandValidator, ToolInvocation, ToolResult

__version__ = "0.1.0"
logger = logging.getLogger(__name__)

MAX_STEP_PREVIEW_CHARS = 600


@dataclass
class SessionStats:
    """Track session statistics."""

    start_time: float = field(default_factory=time.time)
    queries: int = 0
    model_calls: int = 0
    tools_executed: int = 0
    tool_errors: int = 0
    errors: int = 0
    total_response_time: float = 0.0

    def record_query(self, iterations: int, tool_results: list[ToolResult], response_time: float) -> None:
        self.queries += 1
        self.model_calls += iterations
        self.tools_executed += len(tool_results)
        self.tool_errors += sum(1 for r in tool_results if r.is_error)
        self.total_response_time += response_time

    def record_error(self) -> None:
        self.errors += 1

    @property
    def duration(self) -> float:
        """Session duration in seconds."""
        return time.time() - self.start_time

    @property
    def avg_response_time(self) -> float:
        return self.total_response_time / self.queries if self.queries > 0 else 0

    def display(self, console: Console) -> None:
        """Display session statistics."""
        minutes, seconds = divmod(int(self.duration), 60)
        duration_str = f"{minutes}m {seconds}s" if minutes else f"{seconds}s"

        table = Table(title="Session Statistics", show_header=False, box=None)
        table.add_column("Stat", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Duration", duration_str)
        table.add_row("Queries", str(self.queries))
        table.add_row("Model calls", str(self.model_calls))
        if self.tools_executed > 0:
            table.add_row("Tools executed", str(self.tools_executed))
        if self.tool_errors > 0:
            table.add_row("Tool errors", str(self.tool_errors))
        if self.errors > 0:
            table.add_row("Errors", str(self.errors))
        if self.queries > 0:
            table.add_row("Avg response time", f"{self.avg_response_time:.1f}s")

        console.print()
        console.print(table)


app = typer.Typer(
    name="repo-agent",
    help="Tool-using coding agent working inside a git repository",
)
console = Console()


@app.callback()
def _configure_repo(
    repo: Path | None = typer.Option(
        None,
        "--repo",
        "-r",
        help="Local repository to work in (overrides REPO_PATH and sandbox mode).",
    ),
) -> None:
    """Configure the repository for CLI runs."""
    if repo is not None:
        configure_repo_path(repo)


def _load_validator() -> CommandValidator:
    return CommandValidator(CommandPolicy.from_yaml(settings.command_policy_path))


def _print_step(invocation: ToolInvocation, result: ToolResult) -> None:
    """Show one tool execution while the agent works."""
    style = "red" if result.is_error else "dim"
    preview = result.output
    if len(preview) > MAX_STEP_PREVIEW_CHARS:
        preview = preview[:MAX_STEP_PREVIEW_CHARS] + " ..."
    console.print(f"[bold]→ {invocation.name}[/bold]")
    console.print(preview, style=style, markup=False, highlight=False)


async def _build_manager():
    """Prepare the repository and wire up the agent."""
    from src.agent import ConversationManager, load_system_prompt
    from src.llm import LiteLLMBackend
    from src.repo import create_repo_manager
    from src.storage import create_store
    from src.tools import build_registry

    repo = create_repo_manager(settings)
    repo_path = await repo.ensure_ready()

    registry = build_registry(
        repo_path,
        _load_validator(),
        github_token=settings.github_token,
        guidelines_file=settings.guidelines_file,
    )
    store = create_store(settings.store_backend, settings.redis_url, settings.redis_namespace)
    manager = ConversationManager(
        backend=LiteLLMBackend(),
        registry=registry,
        store=store,
        system_prompt=load_system_prompt(repo_path),
        step_callback=_print_step,
    )
    return manager, store, repo_path


async def _ask(manager, conversation_id: str, text: str, stats: SessionStats | None = None) -> None:
    """Process a message and display the response."""
    from src.agent import AgentError

    start_time = time.time()
    try:
        with console.status("[bold cyan]Working...[/bold cyan]"):
            result = await manager.process_message(conversation_id, "cli", text)
    except AgentError as e:
        if stats:
            stats.record_error()
        console.print(f"[red]Error:[/red] {e}")
        return

    if stats:
        stats.record_query(result.iterations, result.tool_results, time.time() - start_time)
    console.print(Panel(Markdown(result.response or "(no response)"), title="Response"))
    console.print(
        f"[dim]Iterations: {result.iterations} | Tools: {len(result.tool_results)} | "
        f"{time.time() - start_time:.1f}s[/dim]"
    )


def _print_help() -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Command", style="cyan")
    table.add_column("Description")
    table.add_row("/clear", "Clear conversation history")
    table.add_row("/stats", "Show session statistics")
    table.add_row("/validate <cmd>", "Check a command against the policy")
    table.add_row("/help", "Show this help")
    table.add_row("/quit", "Exit the chat")
    console.print(table)


async def _chat_session(conversation_id: str) -> None:
    manager, store, repo_path = await _build_manager()
    stats = SessionStats()
    validator = _load_validator()

    console.print(
        Panel(
            f"Repository: [cyan]{repo_path}[/cyan]\nModel: [cyan]{settings.model}[/cyan]\n"
            f"Conversation: [dim]{conversation_id}[/dim]\n\nType [bold]/help[/bold] for commands.",
            title=f"Repo Agent v{__version__}",
        )
    )

    try:
        while True:
            try:
                text = await asyncio.to_thread(Prompt.ask, "[bold green]You[/bold green]")
            except (EOFError, KeyboardInterrupt):
                break

            text = text.strip()
            if not text:
                continue

            if text.startswith("/"):
                command, _, arg = text.partition(" ")
                if command in ("/quit", "/exit", "/q"):
                    break
                if command == "/clear":
                    await manager.clear_conversation(conversation_id)
                    console.print("[dim]Conversation cleared.[/dim]")
                elif command == "/stats":
                    stats.display(console)
                elif command == "/validate":
                    verdict = validator.validate(arg)
                    color = "green" if verdict else "red"
                    console.print(f"[{color}]{verdict.reason}[/{color}]")
                elif command == "/help":
                    _print_help()
                else:
                    console.print(f"[yellow]Unknown command: {command}[/yellow]")
                continue

            await _ask(manager, conversation_id, text, stats)
    finally:
        stats.display(console)
        await store.close()


@app.command()
def chat(
    conversation: str = typer.Option(
        None, "--conversation", "-c", help="Conversation id to resume"
    ),
) -> None:
    """Start an interactive chat session with the agent."""
    asyncio.run(_chat_session(conversation or f"cli-{uuid.uuid4().hex[:8]}"))


@app.command()
def query(
    text: str = typer.Argument(..., help="Message to send"),
    conversation: str = typer.Option(
        None, "--conversation", "-c", help="Conversation id (new one when omitted)"
    ),
) -> None:
    """Process a single message and exit."""

    async def _run() -> None:
        manager, store, _ = await _build_manager()
        try:
            await _ask(manager, conversation or f"cli-{uuid.uuid4().hex[:8]}", text)
        finally:
            await store.close()

    asyncio.run(_run())


@app.command()
def validate(
    command: str = typer.Argument(..., help="Shell command to check"),
) -> None:
    """Check a command against the command policy without running it."""
    verdict = _load_validator().validate(command)
    if verdict:
        console.print(f"[green]ALLOWED[/green] {command}")
    else:
        console.print(f"[red]REJECTED[/red] {command}: {verdict.reason}")
        raise typer.Exit(code=1)


@app.command()
def tools() -> None:
    """List the tools available to the agent."""
    from src.tools import build_registry

    registry = build_registry(settings.repo_path, _load_validator())

    table = Table(title="Agent Tools")
    table.add_column("Tool", style="cyan")
    table.add_column("Description")
    for tool in registry.list_tools():
        table.add_row(tool.name, tool.description.splitlines()[0])
    console.print(table)


@app.command()
def prs(
    state: str = typer.Option("open", "--state", "-s", help="open, closed, merged or all"),
    limit: int = typer.Option(10, "--limit", "-n"),
) -> None:
    """List the repository's pull requests."""
    from src.tools import GitError, GitHub

    github = GitHub(settings.repo_path, token=settings.github_token)
    try:
        pull_requests = asyncio.run(github.list_prs(state, limit))
    except GitError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if not pull_requests:
        console.print(f"[dim]No {state} pull requests[/dim]")
        return

    table = Table(title=f"Pull Requests ({state})")
    table.add_column("#", style="cyan")
    table.add_column("Title")
    table.add_column("Branch", style="green")
    table.add_column("Author", style="dim")
    for pr in pull_requests:
        table.add_row(str(pr.number), pr.title, f"{pr.head_ref} → {pr.base_ref}", pr.author)
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, "--host", "-h"),
    port: int = typer.Option(settings.api_port, "--port", "-p"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the REST API server."""
    import uvicorn

    console.print(f"Starting API server at [cyan]http://{host}:{port}[/cyan]")
    console.print("API docs available at [cyan]/docs[/cyan]")

    uvicorn.run(
        "src.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def _github_status(repo: str, token: str | None) -> str:
    """Probe the GitHub API for the configured repository."""
    import httpx

    from src.repo import extract_repo_name

    parts = repo.removesuffix(".git").rstrip("/").replace(":", "/").split("/")
    if len(parts) < 2:
        return "[yellow]expected owner/name[/yellow]"
    owner = parts[-2]
    headers = {"Accept": "application/vnd.github+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    try:
        response = httpx.get(
            f"https://api.github.com/repos/{owner}/{extract_repo_name(repo)}",
            headers=headers,
            timeout=5.0,
        )
    except httpx.HTTPError as e:
        return f"[red]UNREACHABLE[/red] ({e})"
    if response.status_code == 200:
        return "[green]OK[/green]"
    return f"[red]HTTP {response.status_code}[/red]"


@app.command()
def check() -> None:
    """Check system status and dependencies."""
    from src.repo import create_repo_manager

    console.print("[bold]System Status Check[/bold]\n")

    # Repository
    try:
        repo_path = asyncio.run(create_repo_manager(settings).ensure_ready())
        console.print(f"Repository ({settings.repo_mode}): [green]OK[/green] ({repo_path})")
    except Exception as e:
        console.print(f"Repository ({settings.repo_mode}): [red]ERROR[/red] ({e})")

    # CLIs
    for program in ("git", "gh"):
        status = "[green]OK[/green]" if shutil.which(program) else "[red]NOT FOUND[/red]"
        console.print(f"{program}: {status}")

    # gh authentication
    if shutil.which("gh"):
        from src.tools import GitError, GitHub

        cwd = settings.repo_path if settings.repo_path.is_dir() else Path.cwd()
        try:
            asyncio.run(GitHub(cwd, token=settings.github_token).check_auth())
            console.print("gh auth: [green]OK[/green]")
        except GitError as e:
            console.print(f"gh auth: [yellow]NOT AUTHENTICATED[/yellow] ({e})")

    # GitHub API
    if settings.github_repo:
        console.print(f"GitHub ({settings.github_repo}): {_github_status(settings.github_repo, settings.github_token)}")

    # Command policy
    policy_status = "found" if settings.command_policy_path.exists() else "missing, using defaults"
    console.print(f"Command policy: {settings.command_policy_path} ({policy_status})")

    # Check settings
    console.print(f"\nModel: {settings.model}")
    console.print(f"API key configured: {bool(settings.anthropic_api_key)}")
    console.print(f"Store backend: {settings.store_backend}")
    console.print(f"Max iterations: {settings.agent_max_iterations}")
    console.print(f"Command timeout: {settings.command_timeout}s")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
