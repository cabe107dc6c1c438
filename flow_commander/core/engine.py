"""Plan/execute state machine."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from loguru import logger

from flow_commander.bus.events import PHASE_CHANGED, STATE_CHANGED, EventHub, PhaseChanged, StateChanged
from flow_commander.core.flow import (
    CheckingDoneFiles,
    CheckingTodoFiles,
    Completed,
    CycleComplete,
    EngineSnapshot,
    Failed,
    FlowPhase,
    Idle,
    MovingCompletedFiles,
    NoTodoFiles,
    ProcessingTodos,
    ReadingInput,
    RunningExecution,
    RunningPlanning,
    is_terminal,
    is_valid_transition,
)
from flow_commander.core.output import OutputBuffer, OutputLine
from flow_commander.core.retry import wait_with_countdown
from flow_commander.core.settings import RunSettings
from flow_commander.core.task_utils import completed_entry, upsert_completed_task_summary
from flow_commander.errors import FlowInvariantError, StoreError, ToolCancelled, ToolError
from flow_commander.providers.agent_registry import AgentDef
from flow_commander.providers.invoker import InvocationMode, Invoker

if TYPE_CHECKING:
    from flow_commander.session.task_store import TaskFile


class TaskStore(Protocol):
    def list_pending(self) -> list["TaskFile"]: ...

    def list_done(self) -> list["TaskFile"]: ...

    def has_done_files(self) -> bool: ...

    def mark_done(self, task: "TaskFile") -> "TaskFile": ...

    def summarize(self, task: "TaskFile") -> str: ...

    def save_task_text(self, text: str) -> None: ...


class PromptSource(Protocol):
    def planning(self, task_text: str) -> str: ...

    def execution(self, task: "TaskFile", task_text: str) -> str: ...


@dataclass
class EngineState:
    """Mutable engine bookkeeping. Only the engine thread touches it."""

    phase: FlowPhase = field(default_factory=Idle)
    cycle_count: int = 0
    max_iterations: Optional[int] = None
    todo_files: list["TaskFile"] = field(default_factory=list)
    current_file_index: int = 0
    retry_wait_remaining: Optional[int] = None


class _RunCancelled(Exception):
    """Unwinds a step when the cancel signal is seen."""


class FlowEngine:
    """Drive one task through planning and execution cycles.

    The engine is single-use: build a new one for each task. ``run`` blocks
    the calling thread until the flow reaches a terminal phase or the
    cancel event fires, in which case the phase returns to ``Idle``.
    """

    def __init__(
        self,
        *,
        invoker: Invoker,
        store: TaskStore,
        prompts: PromptSource,
        buffer: OutputBuffer,
        planning: AgentDef,
        execution: AgentDef,
        settings: RunSettings | None = None,
        cancel_event: threading.Event | None = None,
        hub: EventHub | None = None,
    ) -> None:
        self.invoker = invoker
        self.store = store
        self.prompts = prompts
        self.buffer = buffer
        self.settings = settings or RunSettings()
        self.cancel_event = cancel_event or threading.Event()
        self.hub = hub
        self.state = EngineState(max_iterations=self.settings.max_iterations)
        self._planning = InvocationMode("planning", planning)
        self._execution = InvocationMode("execution", execution)
        self._task_text = ""
        self._running = False
        self._version = 0
        self._latest = EngineSnapshot(max_iterations=self.settings.max_iterations)
        self._steps: dict[type, Callable[[FlowPhase], FlowPhase]] = {
            ReadingInput: self._read_input,
            CheckingDoneFiles: self._check_done_files,
            RunningPlanning: self._run_planning,
            CheckingTodoFiles: self._check_todo_files,
            ProcessingTodos: self._process_todos,
            RunningExecution: self._run_execution,
            MovingCompletedFiles: self._move_completed_files,
            CycleComplete: self._finish_cycle,
        }

    # ------------------------------------------------------------------ #
    # Public                                                               #
    # ------------------------------------------------------------------ #

    @property
    def latest_snapshot(self) -> EngineSnapshot:
        return self._latest

    @property
    def task_text(self) -> str:
        return self._task_text

    def cancel(self) -> None:
        self.cancel_event.set()

    def run(self, task_text: str) -> FlowPhase:
        if not isinstance(self.state.phase, Idle) or self._running:
            raise FlowInvariantError("engine instances run a single task")
        self._task_text = task_text.strip()
        self._running = True
        logger.info(f"[engine] starting run ({len(self._task_text)} chars)")
        try:
            if self.cancel_event.is_set():
                return self.state.phase
            self._transition(ReadingInput())
            while not is_terminal(self.state.phase):
                if self.cancel_event.is_set():
                    self._cancel()
                    break
                try:
                    nxt = self._step(self.state.phase)
                except _RunCancelled:
                    self._cancel()
                    break
                except StoreError as exc:
                    nxt = self._failed(f"Task file error: {exc.reason}")
                self._transition(nxt)
        finally:
            self._running = False
            self._publish()
        logger.info(f"[engine] run finished in {self.state.phase.kind} after {self.state.cycle_count} cycle(s)")
        return self.state.phase

    # ------------------------------------------------------------------ #
    # Transitions                                                          #
    # ------------------------------------------------------------------ #

    def _step(self, phase: FlowPhase) -> FlowPhase:
        handler = self._steps.get(type(phase))
        if handler is None:
            raise FlowInvariantError(f"No step defined for phase {phase.kind}")
        return handler(phase)

    def _transition(self, nxt: FlowPhase) -> None:
        previous = self.state.phase
        if not is_valid_transition(previous, nxt):
            raise FlowInvariantError(f"Illegal transition {previous!r} -> {nxt!r}")
        if isinstance(nxt, RunningPlanning) and nxt.attempt == 1:
            self.state.cycle_count += 1
        if isinstance(nxt, (ProcessingTodos, RunningExecution)):
            self.state.current_file_index = (
                nxt.current if isinstance(nxt, ProcessingTodos) else nxt.file_index
            )
        self.state.phase = nxt
        logger.debug(f"[engine] {previous.kind} -> {nxt.kind}")
        self._publish(previous)

    def _cancel(self) -> None:
        self.state.retry_wait_remaining = None
        self._emit(OutputLine.warning("Flow cancelled"))
        logger.info(f"[engine] cancelled during {self.state.phase.kind}")
        self._transition(Idle())

    def _failed(self, reason: str) -> Failed:
        self._emit(OutputLine.error(reason))
        logger.warning(f"[engine] {reason}")
        return Failed(reason)

    # ------------------------------------------------------------------ #
    # Steps                                                                #
    # ------------------------------------------------------------------ #

    def _read_input(self, phase: FlowPhase) -> FlowPhase:
        size = len(self._task_text.encode("utf-8"))
        self._emit(OutputLine.info(f"Using entered task text ({size} bytes)"))
        self.store.save_task_text(self._task_text)
        return CheckingDoneFiles()

    def _check_done_files(self, phase: FlowPhase) -> FlowPhase:
        has_done = self.store.has_done_files()
        if self.state.cycle_count == 0:
            if has_done:
                done = self.store.list_done()
                self._emit(OutputLine.info(f"Found {len(done)} completed task file(s) from earlier runs"))
                self._record_completed(done)
            else:
                self._emit(OutputLine.info("No completed task files from earlier runs"))
        return RunningPlanning(model=self._planning.display_name, attempt=1)

    def _run_planning(self, phase: FlowPhase) -> FlowPhase:
        assert isinstance(phase, RunningPlanning)
        name = self._planning.display_name
        if phase.attempt == 1:
            self._emit(OutputLine.running(f"Starting {name} (cycle {self.state.cycle_count})..."))
        prompt = self.prompts.planning(self._task_text)
        error = self._invoke(self._planning, prompt)
        if error is None:
            return CheckingTodoFiles()
        return self._retry_or_fail(error, phase.attempt, replace(phase, attempt=phase.attempt + 1))

    def _check_todo_files(self, phase: FlowPhase) -> FlowPhase:
        self._emit(OutputLine.info("Checking for todo files..."))
        files = self.store.list_pending()
        self.state.todo_files = list(files)
        self.state.current_file_index = 0
        if not files:
            self._emit(OutputLine.success("No todo files found - all done!"))
            return NoTodoFiles()
        self._emit(OutputLine.info(f"Found {len(files)} todo file(s)"))
        return ProcessingTodos(current=0, total=len(files))

    def _process_todos(self, phase: FlowPhase) -> FlowPhase:
        assert isinstance(phase, ProcessingTodos)
        task = self._todo(phase.current)
        self._emit(OutputLine.running(f"Processing: {task.name} with {self._execution.display_name}"))
        return RunningExecution(model=self._execution.display_name, file_index=phase.current, attempt=1)

    def _run_execution(self, phase: FlowPhase) -> FlowPhase:
        assert isinstance(phase, RunningExecution)
        task = self._todo(phase.file_index)
        prompt = self.prompts.execution(task, self._task_text)
        error = self._invoke(self._execution, prompt)
        if error is not None:
            return self._retry_or_fail(error, phase.attempt, replace(phase, attempt=phase.attempt + 1))
        self._emit(OutputLine.success(f"Completed: {task.name}"))
        following = phase.file_index + 1
        total = len(self.state.todo_files)
        if following < total:
            return ProcessingTodos(current=following, total=total)
        return MovingCompletedFiles()

    def _move_completed_files(self, phase: FlowPhase) -> FlowPhase:
        self._record_completed(self.state.todo_files)
        for task in self.state.todo_files:
            done = self.store.mark_done(task)
            self._emit(OutputLine.info(f"Archived {task.name} -> {done.name}"))
        return CycleComplete(iteration=self.state.cycle_count)

    def _finish_cycle(self, phase: FlowPhase) -> FlowPhase:
        limit = self.state.max_iterations
        if limit is not None and self.state.cycle_count >= limit:
            self._emit(OutputLine.warning(f"Reached maximum iterations ({limit}). Stopping flow."))
            return Completed()
        if not self.store.list_pending():
            self._emit(OutputLine.success("No pending work remains"))
            return Completed()
        self._emit(OutputLine.info(f"Cycle {self.state.cycle_count} complete, starting next cycle..."))
        return CheckingDoneFiles()

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _todo(self, index: int) -> "TaskFile":
        if not 0 <= index < len(self.state.todo_files):
            raise FlowInvariantError(f"File index {index} outside {len(self.state.todo_files)} todo files")
        return self.state.todo_files[index]

    def _invoke(self, mode: InvocationMode, prompt: str) -> Optional[ToolError]:
        """Run one tool call. Returns the error on failure, None on success."""
        try:
            self.invoker.invoke(mode, prompt, self.cancel_event)
        except ToolCancelled as exc:
            raise _RunCancelled() from exc
        except ToolError as exc:
            if self.cancel_event.is_set():
                raise _RunCancelled() from exc
            self._emit(OutputLine.error(f"{mode.display_name} failed: {exc.reason}"))
            return exc
        if self.cancel_event.is_set():
            raise _RunCancelled()
        self._emit(OutputLine.success(f"{mode.display_name} completed successfully"))
        return None

    def _retry_or_fail(self, error: ToolError, attempt: int, retry_phase: FlowPhase) -> FlowPhase:
        model = retry_phase.model  # type: ignore[union-attr]
        policy = self.settings.retry
        if not policy.has_attempts_remaining(attempt):
            return self._failed(f"{model} failed after {attempt} attempt(s): {error.reason}")

        wait = policy.wait_seconds(attempt)
        cause = f"exited with code {error.exit_code}" if error.exit_code is not None else "failed"
        self._emit(OutputLine.warning(f"{model} {cause}, retrying in {wait:g}s..."))
        completed = wait_with_countdown(
            wait,
            self.cancel_event,
            on_tick=self._set_retry_wait,
            poll_interval_s=self.settings.poll_interval_s,
        )
        self.state.retry_wait_remaining = None
        self._publish()
        if not completed:
            raise _RunCancelled()
        return retry_phase

    def _set_retry_wait(self, seconds: int) -> None:
        self.state.retry_wait_remaining = seconds
        self._publish()

    def _record_completed(self, tasks: list["TaskFile"]) -> None:
        text = self._task_text
        for task in tasks:
            text = upsert_completed_task_summary(text, completed_entry(task.name, self.store.summarize(task)))
        if text != self._task_text:
            self._task_text = text
            self.store.save_task_text(text)

    def _emit(self, line: OutputLine) -> None:
        self.buffer.append(line)

    def _publish(self, previous: FlowPhase | None = None) -> None:
        self._version += 1
        state = self.state
        snapshot = EngineSnapshot(
            phase=state.phase,
            cycle_count=state.cycle_count,
            max_iterations=state.max_iterations,
            todo_files=tuple(t.name for t in state.todo_files),
            current_file_index=state.current_file_index,
            retry_wait_remaining=state.retry_wait_remaining,
            is_running=self._running,
            version=self._version,
        )
        self._latest = snapshot
        if self.hub is None:
            return
        self.hub.publish(STATE_CHANGED, StateChanged(snapshot))
        if previous is not None:
            self.hub.publish(PHASE_CHANGED, PhaseChanged(previous, snapshot))
