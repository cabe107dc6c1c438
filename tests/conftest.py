from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

import pytest

from flow_commander.bus.events import PHASE_CHANGED, STATE_CHANGED, EventHub
from flow_commander.core.engine import FlowEngine
from flow_commander.core.output import OutputBuffer
from flow_commander.core.retry import RetryPolicy
from flow_commander.core.settings import RunSettings
from flow_commander.errors import StoreError, ToolError
from flow_commander.providers.agent_registry import AGENT_DEFS
from flow_commander.providers.invoker import InvocationMode, ToolOutcome
from flow_commander.session.task_store import TaskFile


class FakeStore:
    def __init__(
        self,
        pending: tuple[str, ...] = (),
        done: tuple[str, ...] = (),
        refill: bool = False,
    ) -> None:
        self._initial = [TaskFile(name, Path("todo") / name) for name in pending]
        self.pending = list(self._initial)
        self.done = [TaskFile(name, Path("todo/done") / name, "done") for name in done]
        self.refill = refill
        self.saved_texts: list[str] = []
        self.fail_on: Optional[str] = None

    def list_pending(self) -> list[TaskFile]:
        if self.fail_on == "list_pending":
            raise StoreError("disk unplugged")
        if self.refill:
            return list(self._initial)
        return list(self.pending)

    def list_done(self) -> list[TaskFile]:
        return list(self.done)

    def has_done_files(self) -> bool:
        return bool(self.done)

    def mark_done(self, task: TaskFile) -> TaskFile:
        if self.fail_on == "mark_done":
            raise StoreError(f"cannot move {task.name}")
        if task in self.pending:
            self.pending.remove(task)
        moved = TaskFile(task.name, Path("todo/done") / task.name, "done")
        self.done.append(moved)
        return moved

    def summarize(self, task: TaskFile) -> str:
        return f"Task {task.path.stem}: finished"

    def save_task_text(self, text: str) -> None:
        self.saved_texts.append(text)


class FakePrompts:
    def planning(self, task_text: str) -> str:
        return f"plan: {task_text}"

    def execution(self, task: TaskFile, task_text: str) -> str:
        return f"execute: {task.name}"


class FakeInvoker:
    """Scripted tool calls: each entry is "ok", "fail" or a callable."""

    def __init__(self, script: Optional[list] = None, default: str = "ok") -> None:
        self.script = list(script or [])
        self.default = default
        self.calls: list[tuple[str, str]] = []

    @property
    def roles(self) -> list[str]:
        return [role for role, _prompt in self.calls]

    def invoke(self, mode: InvocationMode, prompt: str, cancel_event: threading.Event) -> ToolOutcome:
        self.calls.append((mode.role, prompt))
        step = self.script.pop(0) if self.script else self.default
        if callable(step):
            step = step(mode, cancel_event)
        if step == "fail":
            raise ToolError(f"{mode.display_name} exited with code 1", exit_code=1)
        return ToolOutcome(exit_code=0, duration_s=0.0, line_count=0)


class Recorder:
    """Collects phases and snapshots published on an EventHub."""

    def __init__(self, hub: EventHub) -> None:
        self.phases: list = []
        self.snapshots: list = []
        hub.subscribe(PHASE_CHANGED, lambda event: self.phases.append(event.snapshot.phase))
        hub.subscribe(STATE_CHANGED, lambda event: self.snapshots.append(event.snapshot))

    def kinds(self) -> list[str]:
        return [phase.kind for phase in self.phases]


def no_wait_settings(**overrides) -> RunSettings:
    values = {
        "max_iterations": 1,
        "retry": RetryPolicy(retry_limit=3, base_s=0.0, cap_s=0.0),
        "poll_interval_s": 0.01,
    }
    values.update(overrides)
    return RunSettings(**values)


EngineBuilder = Callable[..., tuple[FlowEngine, Recorder]]


@pytest.fixture
def make_engine() -> EngineBuilder:
    def _build(
        store: FakeStore,
        invoker: FakeInvoker,
        settings: Optional[RunSettings] = None,
        buffer: Optional[OutputBuffer] = None,
        planning: str = "codex",
        execution: str = "codex",
    ) -> tuple[FlowEngine, Recorder]:
        hub = EventHub()
        recorder = Recorder(hub)
        engine = FlowEngine(
            invoker=invoker,
            store=store,
            prompts=FakePrompts(),
            buffer=buffer if buffer is not None else OutputBuffer(),
            planning=AGENT_DEFS[planning],
            execution=AGENT_DEFS[execution],
            settings=settings or no_wait_settings(),
            hub=hub,
        )
        return engine, recorder

    return _build
