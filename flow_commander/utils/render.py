"""Rich styling shared by the CLI and the TUI."""

from __future__ import annotations

from rich.text import Text

from flow_commander.core.flow import EngineSnapshot, FlowPhase
from flow_commander.core.output import OutputKind, OutputLine

KIND_STYLES: dict[OutputKind, str] = {
    OutputKind.STDOUT: "",
    OutputKind.STDERR: "dim red",
    OutputKind.INFO: "cyan",
    OutputKind.SUCCESS: "green",
    OutputKind.WARNING: "yellow",
    OutputKind.ERROR: "bold red",
    OutputKind.RUNNING: "magenta",
}

PHASE_ICONS: dict[str, str] = {
    "idle": "·",
    "completed": "✓",
    "no_todo_files": "✓",
    "failed": "✗",
    "cycle_complete": "↻",
}

TRUNCATED_NOTICE = "(older output was dropped)"


def line_text(line: OutputLine) -> Text:
    """Render a buffer line without interpreting markup in tool output."""
    return Text(line.display, style=KIND_STYLES.get(line.kind, ""))


def phase_icon(phase: FlowPhase) -> str:
    return PHASE_ICONS.get(phase.kind, "●")


def phase_style(phase: FlowPhase) -> str:
    if phase.kind == "failed":
        return "bold red"
    if phase.kind in ("completed", "no_todo_files"):
        return "bold green"
    if phase.kind == "idle":
        return "dim"
    return "bold yellow"


def status_line(snapshot: EngineSnapshot) -> Text:
    """One-line run status: phase, cycle and current file."""
    limit = "∞" if snapshot.max_iterations is None else str(snapshot.max_iterations)
    text = Text()
    text.append(f"{phase_icon(snapshot.phase)} {snapshot.status_text()}", style=phase_style(snapshot.phase))
    text.append(f"  cycle {snapshot.cycle_count}/{limit}", style="dim")
    if snapshot.current_file:
        text.append(f"  file {snapshot.current_file}", style="dim")
    return text
