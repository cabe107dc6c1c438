"""CLI commands for flow-commander."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from loguru import logger
from rich.console import Console

from flow_commander import __version__

if TYPE_CHECKING:
    from flow_commander.config.schema import Config
    from flow_commander.core.runner import RunHandle
    from flow_commander.core.settings import RunSettings

app = typer.Typer(
    name="flow-commander",
    help="flow-commander - plan/execute loops for CLI coding agents",
    no_args_is_help=True,
)
console = Console()

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def version_callback(value: bool) -> None:
    if value:
        console.print(f"flow-commander v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """flow-commander entrypoint."""
    del version


# ---------------------------------------------------------------------- #
# Shared setup                                                             #
# ---------------------------------------------------------------------- #


def _load(cwd: str) -> tuple[Path, "Config"]:
    from flow_commander.config.loader import get_config_path, load_config
    from flow_commander.utils.helpers import resolve_workdir

    workdir = resolve_workdir(cwd)
    config = load_config(get_config_path(workdir))
    _apply_agent_overrides(config)
    return workdir, config


def _apply_agent_overrides(config: "Config") -> None:
    """Export configured commands through each agent's env override."""
    from flow_commander.providers.agent_registry import AGENT_DEFS

    for key, agent_def in AGENT_DEFS.items():
        agent_cfg = config.get_agent_config(key)
        command = (agent_cfg.command if agent_cfg else "").strip()
        if command:
            os.environ[agent_def.env_override] = command


def _detect_available_agents() -> dict[str, str]:
    """Installed agent CLIs, keyed by agent, with the resolved path."""
    from flow_commander.errors import ConfigurationError
    from flow_commander.providers.agent_registry import AGENT_DEFS
    from flow_commander.providers.cli_check import resolve_agent

    detected: dict[str, str] = {}
    for key, agent_def in AGENT_DEFS.items():
        try:
            resolution = resolve_agent(agent_def)
        except ConfigurationError as exc:
            console.print(f"[yellow]{exc}[/yellow]")
            continue
        if resolution.available:
            detected[key] = resolution.path or resolution.command
    return detected


def _pick_default(detected: dict[str, str], current: str) -> str:
    if current in detected:
        return current
    for preferred in ("codex", "claude", "gemini"):
        if preferred in detected:
            return preferred
    return current


# ---------------------------------------------------------------------- #
# Commands                                                                 #
# ---------------------------------------------------------------------- #


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing settings without prompt."),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help="Do not ask interactive questions during setup.",
    ),
    cwd: str = typer.Option("", "--cwd", help="Project directory (default: current directory)."),
) -> None:
    """Detect installed agents and write .flow-commander/settings.json."""
    from flow_commander.config.loader import get_config_path, save_config
    from flow_commander.config.schema import Config
    from flow_commander.utils.helpers import resolve_workdir

    workdir = resolve_workdir(cwd)
    config_path = get_config_path(workdir)
    if config_path.exists() and not force:
        if non_interactive:
            console.print(f"[yellow]Settings already exist at {config_path} (skip).[/yellow]")
            raise typer.Exit()
        console.print(f"[yellow]Settings already exist at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    detected = _detect_available_agents()
    if detected:
        console.print("\nDetected CLI agents:")
        for key, path in detected.items():
            console.print(f"  - {key}: [cyan]{path}[/cyan]")
        config.models.planning = _pick_default(detected, config.models.planning)
        config.models.execution = _pick_default(detected, config.models.execution)
        if not non_interactive and len(detected) > 1:
            choices = ", ".join(detected)
            planning = typer.prompt(f"Planning model ({choices})", default=config.models.planning)
            execution = typer.prompt(f"Execution model ({choices})", default=config.models.execution)
            if planning.strip().lower() in detected:
                config.models.planning = planning.strip().lower()
            if execution.strip().lower() in detected:
                config.models.execution = execution.strip().lower()
    else:
        console.print("[yellow]No installed CLI agents detected.[/yellow]")
        console.print("Install at least one of: codex, claude, gemini")

    save_config(config, config_path)
    console.print(f"[green]OK[/green] Created settings at {config_path}")
    console.print(f"Planning: [cyan]{config.models.planning}[/cyan]  Execution: [cyan]{config.models.execution}[/cyan]")
    console.print("\nNext: [cyan]flow-commander run \"<task>\"[/cyan] or [cyan]flow-commander tui[/cyan]")


@app.command()
def status(
    cwd: str = typer.Option("", "--cwd", help="Project directory (default: current directory)."),
) -> None:
    """Show settings and agent availability."""
    from flow_commander.config.loader import get_config_path
    from flow_commander.config.schema import format_max_iterations
    from flow_commander.errors import ConfigurationError
    from flow_commander.providers.agent_registry import AGENT_DEFS
    from flow_commander.providers.cli_check import resolve_agent
    from flow_commander.session.task_store import TaskFileStore

    workdir, config = _load(cwd)
    config_path = get_config_path(workdir)
    store = TaskFileStore(workdir)

    console.print("flow-commander Status\n")
    console.print(f"Settings: {config_path} {'[green]OK[/green]' if config_path.exists() else '[red]NO[/red]'}")
    console.print(f"Planning model: [cyan]{config.models.planning}[/cyan]")
    console.print(f"Execution model: [cyan]{config.models.execution}[/cyan]")
    console.print(
        f"Max iterations: {format_max_iterations(config.flow.max_iterations)} | "
        f"retry limit {config.flow.retry_limit} | "
        f"backoff {config.flow.backoff_base_s:g}s..{config.flow.backoff_cap_s:g}s"
    )
    console.print(f"Task files: {len(store.list_pending())} pending, {len(store.list_done())} done")

    console.print("\nCLI agents:")
    for key, agent_def in AGENT_DEFS.items():
        try:
            resolution = resolve_agent(agent_def)
        except ConfigurationError as exc:
            console.print(f"  - {key}: [red]NO[/red] | {exc}")
            continue
        mark = "[green]OK[/green]" if resolution.available else "[red]NO[/red]"
        where = resolution.path or "-"
        via = " (login shell)" if resolution.kind == "shell" else ""
        console.print(f"  - {key}: {mark} | cmd={agent_def.resolve_command()} | path={where}{via}")


@app.command()
def run(
    task: str = typer.Argument("", help="Task description (or use --file)."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read the task description from a file."),
    planning: str = typer.Option("", "--planning", help="Planning agent (codex|claude|gemini)."),
    execution: str = typer.Option("", "--execution", help="Execution agent (codex|claude|gemini)."),
    max_iterations: Optional[int] = typer.Option(
        None,
        "--max-iterations",
        help="Cycle limit; 0 means unlimited.",
    ),
    retry_limit: Optional[int] = typer.Option(None, "--retry-limit", help="Attempts per tool call."),
    cwd: str = typer.Option("", "--cwd", help="Project directory (default: current directory)."),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging to stderr."),
) -> None:
    """Run the plan/execute flow headless and stream its output."""
    from flow_commander.core.runner import EngineRunner
    from flow_commander.errors import ConfigurationError
    from flow_commander.utils.helpers import configure_logging

    workdir, config = _load(cwd)
    configure_logging("DEBUG" if verbose else config.logging.level)

    text = task
    if file is not None:
        try:
            text = file.read_text(encoding="utf-8")
        except OSError as exc:
            console.print(f"[red]Cannot read {file}: {exc}[/red]")
            raise typer.Exit(EXIT_CONFIG)
    if not text.strip():
        console.print("[red]No task given. Pass TASK or --file.[/red]")
        raise typer.Exit(EXIT_CONFIG)

    try:
        settings = _run_settings(config, planning, execution, max_iterations, retry_limit)
        handle = EngineRunner(workdir, settings=settings).start(text)
    except (ConfigurationError, ValueError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(EXIT_CONFIG)

    raise typer.Exit(_follow(handle))


@app.command()
def tui(
    cwd: str = typer.Option("", "--cwd", help="Project directory (default: current directory)."),
) -> None:
    """Start the terminal UI."""
    from flow_commander.tui.app import FlowApp
    from flow_commander.utils.helpers import configure_logging

    workdir, config = _load(cwd)
    configure_logging(config.logging.level, log_file=config.log_path(workdir))
    logger.info(f"[tui] starting in {workdir}")
    FlowApp(workdir=workdir, config=config).run()


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    cwd: str = typer.Option("", "--cwd", help="Project directory (default: current directory)."),
) -> None:
    """Delete pending and done task files and the saved task text."""
    from flow_commander.errors import StoreError
    from flow_commander.session.task_store import TaskFileStore

    workdir, _config = _load(cwd)
    store = TaskFileStore(workdir)
    if not yes and not typer.confirm(f"Delete task files under {store.state_dir}?"):
        raise typer.Exit()
    try:
        removed = store.clear()
    except StoreError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(EXIT_FAILED)
    console.print(f"[green]OK[/green] Removed {removed} file(s)")


# ---------------------------------------------------------------------- #
# Run helpers                                                              #
# ---------------------------------------------------------------------- #


def _run_settings(
    config: "Config",
    planning: str,
    execution: str,
    max_iterations: Optional[int],
    retry_limit: Optional[int],
) -> "RunSettings":
    from dataclasses import replace

    from flow_commander.core.retry import RetryPolicy
    from flow_commander.core.settings import RunSettings
    from flow_commander.providers.agent_registry import get_agent_def

    settings = RunSettings.from_config(config)
    changes: dict = {}
    if planning:
        changes["planning_model"] = get_agent_def(planning).key
    if execution:
        changes["execution_model"] = get_agent_def(execution).key
    if max_iterations is not None:
        changes["max_iterations"] = None if max_iterations == 0 else max_iterations
    if retry_limit is not None:
        changes["retry"] = RetryPolicy(
            retry_limit=retry_limit,
            base_s=settings.retry.base_s,
            cap_s=settings.retry.cap_s,
        )
    return replace(settings, **changes) if changes else settings


def _follow(handle: "RunHandle") -> int:
    """Print output and phase changes until the run ends. Returns the exit code."""
    from flow_commander.utils.render import TRUNCATED_NOTICE, line_text, status_line

    seen_change = 0
    seen_lines = 0
    last_phase = None
    cancelled = False
    warned_truncated = False

    def _drain() -> None:
        nonlocal seen_lines, last_phase, warned_truncated
        lines, seen_lines = handle.buffer.lines_since(seen_lines)
        if handle.buffer.truncated and not warned_truncated:
            warned_truncated = True
            console.print(TRUNCATED_NOTICE, style="dim")
        for line in lines:
            console.print(line_text(line))
        snapshot = handle.snapshot()
        if snapshot.phase != last_phase:
            last_phase = snapshot.phase
            console.print(status_line(snapshot))

    while True:
        try:
            seen_change = handle.wait_for_update(seen_change, timeout=0.5)
            _drain()
            if not handle.is_running:
                break
        except KeyboardInterrupt:
            if cancelled:
                continue
            cancelled = True
            console.print("[yellow]Cancelling...[/yellow]")
            handle.cancel()

    handle.join()
    _drain()
    phase = handle.current_phase()
    if phase.kind in ("completed", "no_todo_files"):
        return 0
    if phase.kind == "failed":
        return EXIT_FAILED
    return EXIT_CANCELLED
