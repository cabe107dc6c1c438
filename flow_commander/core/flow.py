"""Flow phases and engine state snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Optional, Union


@dataclass(frozen=True)
class Idle:
    kind: ClassVar[str] = "idle"

    def description(self) -> str:
        return "Idle"


@dataclass(frozen=True)
class ReadingInput:
    kind: ClassVar[str] = "reading_input"

    def description(self) -> str:
        return "Reading input"


@dataclass(frozen=True)
class CheckingDoneFiles:
    kind: ClassVar[str] = "checking_done_files"

    def description(self) -> str:
        return "Checking completed task files"


@dataclass(frozen=True)
class RunningPlanning:
    model: str
    attempt: int = 1
    kind: ClassVar[str] = "running_planning"

    def description(self) -> str:
        return f"Running {self.model} (attempt {self.attempt})"


@dataclass(frozen=True)
class CheckingTodoFiles:
    kind: ClassVar[str] = "checking_todo_files"

    def description(self) -> str:
        return "Checking for todo files"


@dataclass(frozen=True)
class NoTodoFiles:
    kind: ClassVar[str] = "no_todo_files"

    def description(self) -> str:
        return "No todo files found"


@dataclass(frozen=True)
class ProcessingTodos:
    current: int
    total: int
    kind: ClassVar[str] = "processing_todos"

    def description(self) -> str:
        return f"Processing todos ({self.current + 1}/{self.total})"


@dataclass(frozen=True)
class RunningExecution:
    model: str
    file_index: int
    attempt: int = 1
    kind: ClassVar[str] = "running_execution"

    def description(self) -> str:
        return f"Running {self.model} on file {self.file_index + 1} (attempt {self.attempt})"


@dataclass(frozen=True)
class MovingCompletedFiles:
    kind: ClassVar[str] = "moving_completed_files"

    def description(self) -> str:
        return "Moving completed files"


@dataclass(frozen=True)
class CycleComplete:
    iteration: int
    kind: ClassVar[str] = "cycle_complete"

    def description(self) -> str:
        return f"Cycle {self.iteration} complete"


@dataclass(frozen=True)
class Completed:
    kind: ClassVar[str] = "completed"

    def description(self) -> str:
        return "Completed"


@dataclass(frozen=True)
class Failed:
    reason: str
    kind: ClassVar[str] = "failed"

    def description(self) -> str:
        return f"Failed: {self.reason}"


FlowPhase = Union[
    Idle,
    ReadingInput,
    CheckingDoneFiles,
    RunningPlanning,
    CheckingTodoFiles,
    NoTodoFiles,
    ProcessingTodos,
    RunningExecution,
    MovingCompletedFiles,
    CycleComplete,
    Completed,
    Failed,
]

TERMINAL_KINDS = frozenset({Completed.kind, NoTodoFiles.kind, Failed.kind})

# Allowed successors per phase kind. Cancellation (any non-terminal -> Idle)
# is checked separately.
TRANSITIONS: dict[str, frozenset[str]] = {
    Idle.kind: frozenset({ReadingInput.kind}),
    ReadingInput.kind: frozenset({CheckingDoneFiles.kind, Failed.kind}),
    CheckingDoneFiles.kind: frozenset({RunningPlanning.kind, Failed.kind}),
    RunningPlanning.kind: frozenset({CheckingTodoFiles.kind, RunningPlanning.kind, Failed.kind}),
    CheckingTodoFiles.kind: frozenset({ProcessingTodos.kind, NoTodoFiles.kind, Failed.kind}),
    ProcessingTodos.kind: frozenset({RunningExecution.kind, Failed.kind}),
    RunningExecution.kind: frozenset(
        {ProcessingTodos.kind, MovingCompletedFiles.kind, RunningExecution.kind, Failed.kind}
    ),
    MovingCompletedFiles.kind: frozenset({CycleComplete.kind, Failed.kind}),
    CycleComplete.kind: frozenset({Completed.kind, CheckingDoneFiles.kind, Failed.kind}),
    Completed.kind: frozenset(),
    NoTodoFiles.kind: frozenset(),
    Failed.kind: frozenset(),
}


def is_terminal(phase: FlowPhase) -> bool:
    """Completed, NoTodoFiles and Failed end a run."""
    return phase.kind in TERMINAL_KINDS


def is_valid_transition(current: FlowPhase, nxt: FlowPhase) -> bool:
    """Check a transition against the flow table, cancellation included."""
    if isinstance(nxt, Idle):
        return not is_terminal(current) and not isinstance(current, Idle)
    if nxt.kind not in TRANSITIONS.get(current.kind, frozenset()):
        return False
    # Retries must advance the attempt counter by exactly one on the same target.
    if isinstance(current, RunningPlanning) and isinstance(nxt, RunningPlanning):
        return nxt.attempt == current.attempt + 1
    if isinstance(current, RunningExecution) and isinstance(nxt, RunningExecution):
        return nxt.file_index == current.file_index and nxt.attempt == current.attempt + 1
    if isinstance(nxt, (RunningPlanning, RunningExecution)) and not isinstance(current, type(nxt)):
        return nxt.attempt == 1
    return True


@dataclass(frozen=True)
class EngineSnapshot:
    """Immutable view of engine state handed to the presentation layer."""

    phase: FlowPhase = field(default_factory=Idle)
    cycle_count: int = 0
    max_iterations: Optional[int] = None
    todo_files: tuple[str, ...] = ()
    current_file_index: int = 0
    retry_wait_remaining: Optional[int] = None
    is_running: bool = False
    version: int = 0

    @property
    def current_file(self) -> Optional[str]:
        if not self.todo_files:
            return None
        if isinstance(self.phase, (ProcessingTodos, RunningExecution)):
            if 0 <= self.current_file_index < len(self.todo_files):
                return self.todo_files[self.current_file_index]
        return None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.phase)

    def status_text(self) -> str:
        text = self.phase.description()
        if self.retry_wait_remaining is not None:
            text = f"{text} - retrying in {self.retry_wait_remaining}s"
        return text
