"""Main entry point for Vibe DevOps."""

import asyncio
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table
from rich.text import Text

from vibe_devops import __version__
from vibe_devops.config import (
    DEFAULT_API_KEY_PLACEHOLDER,
    Config,
    set_config,
)
from vibe_devops.context.logs import (
    LogLevel,
    analyze_lines,
    count_by_level,
    parse_log_query,
    read_last_lines,
    summarize_issues,
)
from vibe_devops.checkpoint import CheckpointInfo, GitCheckpoints
from vibe_devops.diagnose import DiagnoseResult, DiagnoseService, analyze_with_ai, render_report
from vibe_devops.exceptions import CheckpointError, ConfigurationError, VibeError
from vibe_devops.llm import create_provider_from_config, list_gemini_models
from vibe_devops.logging import configure_logging, get_logger
from vibe_devops.run_handler import RunFlags, RunHandler
from vibe_devops.safety import BackupManager
from vibe_devops.session import Budget, Scope, create_session_service

log = get_logger(__name__)

console = Console()

app = typer.Typer(
    help="Vibe - an AI terminal agent that turns requests into shell commands.",
    no_args_is_help=True,
    add_completion=False,
)
config_app = typer.Typer(help="Manage vibe configuration (provider, API key).")
app.add_typer(config_app, name="config")

COMMANDS = {"run", "init", "config", "model", "restore", "undo", "logs", "diagnose", "version"}
DEFAULT_LOG_QUESTION = "Analyze this log and explain the root cause of any errors"


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}", highlight=False, soft_wrap=True)
    raise typer.Exit(code=1)


def _load_config(directory: str = ".") -> Config:
    try:
        cfg = Config.load(directory)
    except ConfigurationError as e:
        _fail(str(e))
    set_config(cfg)
    configure_logging(cfg)
    return cfg


def _backup_manager(cfg: Config) -> BackupManager:
    return BackupManager(cfg.safety.backup_dir, cfg.safety.retention_days)


async def _run_request(cfg: Config, request: str, flags: RunFlags) -> None:
    provider = create_provider_from_config(cfg)
    try:
        await provider.is_configured()
        session_service = create_session_service(
            provider,
            project_dir=cfg.session.project_dir,
            global_dir=cfg.session.global_dir,
            budget=Budget(cfg.session.max_recent_lines, cfg.session.max_recent_chars),
            enabled=flags.use_session,
        )
        handler = RunHandler(
            provider,
            session_service,
            flags,
            console=console,
            backup_manager=_backup_manager(cfg),
        )
        await handler.handle(request)
    finally:
        await provider.close()


def _execute_request(cfg: Config, request: str, flags: RunFlags) -> None:
    try:
        asyncio.run(_run_request(cfg, request, flags))
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        raise typer.Exit(code=130)
    except VibeError as e:
        log.debug("Run failed", error=str(e), error_type=type(e).__name__)
        _fail(str(e))


@app.command()
def run(
    request: list[str] = typer.Argument(..., help="What you want to do, in plain language"),
    agent: bool | None = typer.Option(None, "--agent/--no-agent", help="Let the agent inspect the workspace with tools"),
    agent_max_steps: int = typer.Option(5, "--agent-max-steps", help="Max tool steps before asking to extend"),
    self_heal: bool | None = typer.Option(None, "--self-heal/--no-self-heal", help="Re-engage the agent after failures"),
    self_heal_max_attempts: int = typer.Option(0, "--self-heal-max-attempts", help="Max self-heal re-invocations"),
    session: str = typer.Option("", "--session", help="Session memory name"),
    session_scope: str = typer.Option("", "--session-scope", help="none, project, global or both"),
    no_session: bool = typer.Option(False, "--no-session", help="Disable session memory"),
    stream: bool = typer.Option(False, "--stream/--no-stream", help="Stream the explanation as it is generated"),
    checkpoint: bool | None = typer.Option(
        None, "--checkpoint/--no-checkpoint", help="Commit the workspace to git before running, for vibe undo"
    ),
) -> None:
    """Turn a request into a shell command and run it."""
    cfg = _load_config()
    text = " ".join(request).strip()
    if not text:
        _fail("empty request")

    scope = session_scope or cfg.session.scope
    try:
        scope = Scope(scope.lower())
    except ValueError:
        _fail(f"invalid session scope: {scope}. Use: none, project, global, both")

    flags = RunFlags(
        agent_mode=True if agent is None else agent,
        agent_max_steps=agent_max_steps if agent_max_steps > 0 else cfg.agent.max_steps,
        extend_steps=cfg.agent.extend_steps,
        self_heal=cfg.agent.self_heal if self_heal is None else self_heal,
        self_heal_max_attempts=self_heal_max_attempts or cfg.agent.self_heal_max_attempts,
        session_name=session or cfg.session.name,
        session_scope=scope,
        use_session=cfg.session.enabled and not no_session and scope != Scope.NONE,
        stream=stream,
        checkpoint=cfg.agent.checkpoint if checkpoint is None else checkpoint,
    )
    _execute_request(cfg, text, flags)


@app.command()
def init(directory: str = typer.Argument(".", help="Directory to initialize")) -> None:
    """Create a default .vibe.yaml in a directory."""
    target = Path(directory).expanduser().resolve()
    if not target.is_dir():
        _fail(f"directory does not exist: {target}")

    config_file = Config.config_path(target)
    if config_file.exists():
        console.print(f"Configuration file already exists: {config_file}", highlight=False)
        return

    console.print(f"Creating default configuration file: {config_file}", highlight=False)
    Config.default().write(target)
    console.print(
        Panel(
            "1. Run 'vibe config provider gemini' to select the provider.\n"
            "2. Run 'vibe config api-key \"<your_api_key>\"' to set your API key and pick a model.\n"
            "3. Run 'vibe run \"<your request>\"' to start using the agent.",
            title="Initialization complete! Next steps",
            expand=False,
        )
    )


@config_app.command("provider")
def config_provider(name: str = typer.Argument(..., help="gemini, ollama or openai")) -> None:
    """Set the active AI provider."""
    cfg = _load_config()
    try:
        cfg.set_provider(name)
    except ConfigurationError as e:
        _fail(str(e))
    cfg.write(".")
    console.print(f"[green]Active provider set to '{cfg.ai.provider}'.[/green]")


def _select_model(models: list[str]) -> str:
    console.print("Select a model to use:")
    for index, name in enumerate(models, start=1):
        console.print(f"\\[{index}] {name.removeprefix('models/')}", highlight=False)
    choice = IntPrompt.ask("Enter the number of the model", console=console)
    if choice < 1 or choice > len(models):
        _fail("invalid selection")
    return models[choice - 1].removeprefix("models/")


def _fetch_gemini_models(api_key: str) -> list[str]:
    try:
        models = asyncio.run(list_gemini_models(api_key))
    except VibeError as e:
        _fail(f"failed to fetch models: {e}")
    if not models:
        _fail("no models found for this API key")
    return models


@config_app.command("api-key")
def config_api_key(key: str = typer.Argument(..., help="API key of the active provider")) -> None:
    """Set the API key for the active provider."""
    cfg = _load_config()
    try:
        cfg.set_api_key(key)
    except ConfigurationError as e:
        _fail(str(e))
    cfg.write(".")

    if cfg.ai.provider == "gemini":
        console.print("Validating API key and fetching available models...")
        models = _fetch_gemini_models(key)
        console.print("[green]API Key is valid.[/green]")
        cfg.set_model(_select_model(models))
        cfg.write(".")
        console.print(f"Selected model: {cfg.active_model}", highlight=False)

    console.print(f"[green]API key for provider '{cfg.ai.provider}' has been set.[/green]")


@app.command()
def model(
    name: str = typer.Argument("", help="Model to use; omit to pick from a list"),
    list_only: bool = typer.Option(False, "--list", help="List available models (does not change config)"),
) -> None:
    """Select or change the AI model."""
    cfg = _load_config()
    if name.strip():
        cfg.set_model(name)
        cfg.write(".")
        console.print(f"[green]Model set to '{cfg.active_model}'.[/green]")
        return

    if cfg.ai.provider != "gemini":
        _fail(f"model listing is not supported for provider '{cfg.ai.provider}'; pass the model name")

    api_key = cfg.ai.gemini.api_key.strip()
    if not api_key or api_key == DEFAULT_API_KEY_PLACEHOLDER:
        _fail("Gemini API key is not configured. Run 'vibe config api-key <your_api_key>' first")

    models = _fetch_gemini_models(api_key)
    if list_only:
        for item in models:
            console.print(item.removeprefix("models/"), highlight=False)
        return

    cfg.set_model(_select_model(models))
    cfg.write(".")
    console.print(f"[green]Model set to '{cfg.active_model}'.[/green]")


def _backup_table(backups: list) -> Table:
    table = Table(title="Safety Backups")
    table.add_column("#", justify="right")
    table.add_column("Time")
    table.add_column("Command", overflow="fold")
    table.add_column("Paths")
    for index, backup in enumerate(backups, start=1):
        command = backup.command if len(backup.command) <= 60 else backup.command[:57] + "..."
        table.add_row(
            str(index),
            backup.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            command,
            "\n".join(backup.backup_paths) or "-",
        )
    return table


@app.command()
def restore(
    list_only: bool = typer.Option(False, "--list", help="List available backups"),
    cleanup: bool = typer.Option(False, "--cleanup", help="Remove backups older than the retention window"),
) -> None:
    """Restore files from safety backups."""
    cfg = Config.from_yaml(Config.config_path("."))
    configure_logging(cfg)
    manager = _backup_manager(cfg)

    if cleanup:
        console.print("Cleaning up old backups...")
        removed = manager.cleanup_old_backups()
        console.print(f"[green]Done! Removed {len(removed)} backup(s).[/green]")
        return

    backups = manager.get_recent_backups(10)
    if not backups:
        console.print("No safety backups found")
        console.print("   Backups are created when running dangerous commands")
        return

    console.print(_backup_table(backups))
    if list_only:
        return

    selection = Prompt.ask(f"Select to restore (1-{len(backups)}, or 'q' to quit)", default="q", console=console)
    if selection.strip().lower() in ("", "q"):
        console.print("Cancelled.")
        return
    try:
        index = int(selection)
    except ValueError:
        index = 0
    if index < 1 or index > len(backups):
        _fail("invalid selection")

    selected = backups[index - 1]
    console.print("\nThis will overwrite current files with backed up versions:")
    for original in selected.backup_paths:
        console.print(f"   - {original}", highlight=False)
    if not Confirm.ask("Continue?", default=False, console=console):
        console.print("Cancelled.")
        return

    restored = manager.restore_backup(selected.location)
    console.print(f"[green]Restored {len(restored)} path(s).[/green]")


def _checkpoint_table(checkpoints: list[CheckpointInfo]) -> Table:
    table = Table(title="Recent Vibe Checkpoints")
    table.add_column("#", justify="right")
    table.add_column("Commit")
    table.add_column("When")
    table.add_column("Message", overflow="fold")
    for index, checkpoint in enumerate(checkpoints, start=1):
        table.add_row(str(index), checkpoint.hash, checkpoint.relative, checkpoint.message)
    return table


@app.command()
def undo(
    last: bool = typer.Option(False, "--last", help="Restore the most recent checkpoint"),
    list_only: bool = typer.Option(False, "--list", help="List available checkpoints"),
) -> None:
    """Restore the workspace to a git checkpoint taken before an AI session."""
    configure_logging(Config.from_yaml(Config.config_path(".")))
    checkpoints = GitCheckpoints(".")
    if not checkpoints.is_git_repo():
        _fail("not a git repository")

    try:
        recent = checkpoints.recent()
    except CheckpointError as e:
        _fail(str(e))
    if not recent:
        console.print("No vibe checkpoints found")
        console.print("   Checkpoints are created by 'vibe run --checkpoint'")
        return

    if last and not list_only:
        selected = recent[0]
    else:
        console.print(_checkpoint_table(recent))
        if list_only:
            return
        selection = Prompt.ask(f"Select to restore (1-{len(recent)}, or 'q' to quit)", default="q", console=console)
        if selection.strip().lower() in ("", "q"):
            console.print("Cancelled.")
            return
        try:
            index = int(selection)
        except ValueError:
            index = 0
        if index < 1 or index > len(recent):
            _fail("invalid selection")
        selected = recent[index - 1]

    if checkpoints.has_uncommitted_changes():
        console.print("[yellow]You have uncommitted changes. They will be stashed first.[/yellow]")
        if not Confirm.ask("Continue anyway?", default=False, console=console):
            console.print("Cancelled.")
            return

    console.print(f"Restoring to checkpoint {selected.hash}...", highlight=False)
    try:
        checkpoints.restore(selected.hash)
    except CheckpointError as e:
        _fail(str(e))
    console.print("[green]Done! Workspace restored.[/green]")


@app.command()
def logs(
    path: str = typer.Argument(..., help="Log file to analyze"),
    lines: int = typer.Option(100, "--lines", "-n", help="Number of trailing lines to read"),
    question: str = typer.Option("", "--question", "-q", help="Question for the agent about this log"),
) -> None:
    """Summarize a log file and ask the agent about it."""
    cfg = _load_config()
    log_path, _ = parse_log_query(path)
    try:
        tail = read_last_lines(Path(log_path).expanduser(), max(1, lines))
    except VibeError as e:
        _fail(str(e))

    counts = count_by_level(tail)
    summary = Table(title=f"Log Analysis: {log_path}")
    summary.add_column("Level")
    summary.add_column("Lines", justify="right")
    for level in (LogLevel.FATAL, LogLevel.ERROR, LogLevel.WARN, LogLevel.INFO):
        if counts.get(level):
            summary.add_row(level.name, str(counts[level]))
    console.print(summary)

    issues = analyze_lines(tail)
    if issues:
        categories = ", ".join(f"{name}: {count}" for name, count in summarize_issues(issues).items())
        console.print(f"[yellow]Issues detected: {len(issues)}[/yellow] ({categories})", highlight=False)
    else:
        console.print("[green]No obvious errors detected[/green]")

    request = f"{question.strip() or DEFAULT_LOG_QUESTION} @logs {log_path}:{max(1, lines)}"
    flags = RunFlags(
        agent_mode=True,
        agent_max_steps=cfg.agent.max_steps,
        extend_steps=cfg.agent.extend_steps,
        self_heal=False,
        session_name=cfg.session.name,
        use_session=False,
    )
    _execute_request(cfg, request, flags)


def _diagnose_service(cfg: Config) -> DiagnoseService:
    return DiagnoseService(
        disk_warn_percent=cfg.diagnose.disk_warn_percent,
        memory_warn_percent=cfg.diagnose.memory_warn_percent,
        command_timeout=cfg.diagnose.command_timeout,
    )


async def _analyze_findings(cfg: Config, result: DiagnoseResult) -> str:
    provider = create_provider_from_config(cfg)
    try:
        await provider.is_configured()
        return await analyze_with_ai(provider, result)
    finally:
        await provider.close()


@app.command()
def diagnose(
    ai: bool = typer.Option(False, "--ai", help="Analyze the findings with the AI provider"),
) -> None:
    """Check disk, memory, Docker, listening ports and services."""
    cfg = Config.from_yaml(Config.config_path("."))
    configure_logging(cfg)

    console.print("Collecting system information...")
    result = asyncio.run(_diagnose_service(cfg).run())
    render_report(console, result)

    if not ai:
        return
    if not result.has_problems:
        console.print("Nothing to analyze.")
        return

    console.print("\nAnalyzing with AI...")
    try:
        analysis = asyncio.run(_analyze_findings(cfg, result))
    except VibeError as e:
        log.debug("AI analysis failed", error=str(e))
        console.print(f"[yellow]AI analysis unavailable:[/yellow] {escape(str(e))}", highlight=False)
        return
    console.print(Panel(Text(analysis), title="AI Analysis", expand=False))


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Vibe DevOps v{__version__}")


def rewrite_args(argv: list[str]) -> list[str]:
    """Treat ``vibe <free text>`` as ``vibe run <free text>``."""
    if not argv:
        return argv
    first = argv[0]
    if first in COMMANDS or first.startswith("-"):
        return argv
    return ["run", *argv]


def cli_entry() -> None:
    """Console script entry point."""
    app(args=rewrite_args(sys.argv[1:]), prog_name="vibe")


if __name__ == "__main__":
    cli_entry()
