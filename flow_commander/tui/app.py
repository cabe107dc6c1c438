"""Textual front end: task input, streaming output and a status bar."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from loguru import logger
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Input, Label, RichLog, Static

from flow_commander.config.loader import get_config_path, save_config
from flow_commander.config.schema import Config, format_max_iterations, next_max_iterations
from flow_commander.core.output import OutputBuffer
from flow_commander.core.runner import EngineRunner, RunHandle
from flow_commander.core.settings import RunSettings
from flow_commander.errors import ConfigurationError, RunnerBusyError, StoreError
from flow_commander.providers.agent_registry import get_agent_def, next_agent_key
from flow_commander.session.task_store import TaskFileStore
from flow_commander.utils.render import TRUNCATED_NOTICE, line_text, status_line

SLASH_COMMANDS = {
    "/exit": "Quit",
    "/clear": "Delete task files and saved task text",
    "/settings": "Show current settings",
    "/help": "List commands",
}


class FlowApp(App):
    CSS = """
    Screen {
        background: #050a08;
        color: #b7ffc8;
    }

    #title {
        height: 1;
        content-align: center middle;
        color: #ffd400;
        background: #153024;
        text-style: bold;
        width: 100%;
    }

    #output {
        height: 1fr;
        margin: 0 1;
        border: heavy #00ff66;
        background: #07160f;
        padding: 0 1;
    }

    #task-input {
        margin: 0 1;
        border: heavy #ffd400;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: #18331f;
        color: #e2ff6d;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel_run", "Cancel"),
        Binding("ctrl+p", "cycle_planning", "Planning model"),
        Binding("ctrl+e", "cycle_execution", "Execution model"),
        Binding("ctrl+t", "cycle_iterations", "Max iterations"),
        Binding("ctrl+l", "clear_output", "Clear output"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(self, workdir: Path | None = None, config: Config | None = None) -> None:
        super().__init__()
        self.workdir = workdir or Path.cwd()
        self.config = config or Config()
        self.buffer = OutputBuffer()
        self.runner = EngineRunner(self.workdir, buffer=self.buffer)
        self.handle: Optional[RunHandle] = None
        self._seen_lines = 0
        self._truncation_shown = False
        self._starting = False
        self._status_note = "Enter a task and press Enter"

    def compose(self) -> ComposeResult:
        yield Label(f"flow-commander  {self.workdir}", id="title")
        yield RichLog(id="output", wrap=True, markup=False, highlight=False, auto_scroll=True)
        yield Input(placeholder="Describe the task, or /help", id="task-input")
        yield Static("", id="status-bar")

    def on_mount(self) -> None:
        self.set_interval(self.config.flow.poll_interval_s, self._poll)
        self.query_one("#task-input", Input).focus()
        self.refresh_status()

    def on_unmount(self) -> None:
        if self.handle is not None and self.handle.is_running:
            self.handle.cancel()
            self.handle.join(timeout=5.0)

    # ------------------------------------------------------------------ #
    # Input                                                                #
    # ------------------------------------------------------------------ #

    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        event.input.value = ""
        if not text:
            return
        if text.startswith("/"):
            self._run_slash_command(text)
            return
        self._start(text)

    def _run_slash_command(self, text: str) -> None:
        command = text.split()[0].lower()
        log = self.query_one("#output", RichLog)
        if command == "/exit":
            self.exit()
        elif command == "/clear":
            if self._busy():
                return
            self.run_worker(self._clear_task_files, thread=True, group="files")
        elif command == "/settings":
            for line in self._settings_lines():
                log.write(Text(line, style="cyan"))
        elif command == "/help":
            for name, help_text in SLASH_COMMANDS.items():
                log.write(Text(f"{name:<10} {help_text}", style="cyan"))
        else:
            self.notify(f"Unknown command {command}", severity="warning")
        self.refresh_status()

    def _start(self, task_text: str) -> None:
        if self._busy():
            return
        settings = RunSettings.from_config(self.config)
        self._starting = True
        self._status_note = "Checking models..."
        self.refresh_status()
        self.run_worker(lambda: self._start_in_thread(task_text, settings), thread=True, group="start")

    def _start_in_thread(self, task_text: str, settings: RunSettings) -> None:
        """Model lookup may spawn a login shell, so it runs off the event loop."""
        try:
            handle = self.runner.start(task_text, settings)
        except RunnerBusyError:
            self.call_from_thread(self._start_failed, "A flow is already running", "warning", "Ready")
        except ConfigurationError as exc:
            self.call_from_thread(self._start_failed, str(exc), "error", "Model not available")
        else:
            self.call_from_thread(self._started, handle, len(task_text))

    def _started(self, handle: RunHandle, size: int) -> None:
        self._starting = False
        self.handle = handle
        self.query_one("#output", RichLog).clear()
        self._seen_lines = 0
        self._truncation_shown = False
        self._status_note = "Running (Esc cancels)"
        logger.info(f"[tui] started flow ({size} chars)")
        self.refresh_status()

    def _start_failed(self, message: str, severity: str, note: str) -> None:
        self._starting = False
        self.notify(message, severity=severity, timeout=8)
        self._status_note = note
        self.refresh_status()

    def _clear_task_files(self) -> None:
        try:
            removed = TaskFileStore(self.workdir).clear()
        except StoreError as exc:
            self.call_from_thread(self.notify, str(exc), severity="error")
            return
        self.call_from_thread(self._set_note, f"Removed {removed} task file(s)")

    def _set_note(self, note: str) -> None:
        self._status_note = note
        self.refresh_status()

    def _busy(self) -> bool:
        if self._starting or (self.handle is not None and self.handle.is_running):
            self.notify("A flow is already running", severity="warning")
            return True
        return False

    # ------------------------------------------------------------------ #
    # Actions                                                              #
    # ------------------------------------------------------------------ #

    def action_cancel_run(self) -> None:
        if self.handle is not None and self.handle.is_running:
            self.handle.cancel()
            self._status_note = "Cancelling..."
            self.refresh_status()

    def action_cycle_planning(self) -> None:
        if self._busy():
            return
        self.config.models.planning = next_agent_key(self.config.models.planning)
        self._settings_changed()

    def action_cycle_execution(self) -> None:
        if self._busy():
            return
        self.config.models.execution = next_agent_key(self.config.models.execution)
        self._settings_changed()

    def action_cycle_iterations(self) -> None:
        if self._busy():
            return
        self.config.flow.max_iterations = next_max_iterations(self.config.flow.max_iterations)
        self._settings_changed()

    def action_clear_output(self) -> None:
        if self.handle is not None and self.handle.is_running:
            return
        self.buffer.reset()
        self._seen_lines = 0
        self.query_one("#output", RichLog).clear()

    def _settings_changed(self) -> None:
        self._status_note = "Settings updated"
        self.refresh_status()
        config = self.config.model_copy(deep=True)
        self.run_worker(lambda: self._save_settings(config), thread=True, group="settings")

    def _save_settings(self, config: Config) -> None:
        try:
            save_config(config, get_config_path(self.workdir))
        except OSError as exc:
            logger.warning(f"[tui] could not save settings: {exc}")
            self.call_from_thread(self.notify, f"Settings not saved: {exc}", severity="warning")

    def _settings_lines(self) -> list[str]:
        flow = self.config.flow
        return [
            f"Planning model:  {get_agent_def(self.config.models.planning).name}",
            f"Execution model: {get_agent_def(self.config.models.execution).name}",
            f"Max iterations:  {format_max_iterations(flow.max_iterations)}",
            f"Retry limit:     {flow.retry_limit} (backoff {flow.backoff_base_s:g}s..{flow.backoff_cap_s:g}s)",
            f"Settings file:   {get_config_path(self.workdir)}",
        ]

    # ------------------------------------------------------------------ #
    # Rendering                                                            #
    # ------------------------------------------------------------------ #

    def _poll(self) -> None:
        lines, self._seen_lines = self.buffer.lines_since(self._seen_lines)
        if lines:
            log = self.query_one("#output", RichLog)
            if self.buffer.truncated and not self._truncation_shown:
                self._truncation_shown = True
                log.write(Text(TRUNCATED_NOTICE, style="dim"))
            for line in lines:
                log.write(line_text(line))
        if self.handle is not None:
            if not self.handle.is_running and self._status_note.startswith(("Running", "Cancelling")):
                self._status_note = "Ready"
            self.refresh_status()

    def refresh_status(self) -> None:
        planning = get_agent_def(self.config.models.planning).name
        execution = get_agent_def(self.config.models.execution).name
        limit = format_max_iterations(self.config.flow.max_iterations)
        status = Text()
        if self.handle is not None:
            status.append_text(status_line(self.handle.snapshot()))
            status.append("  |  ")
        status.append(
            f"Plan:{planning}  Exec:{execution}  Max:{limit}  "
            f"^P/^E models  ^T iterations  Esc cancel  ^Q quit  |  {self._status_note}"
        )
        self.query_one("#status-bar", Static).update(status)


if __name__ == "__main__":
    FlowApp().run()
