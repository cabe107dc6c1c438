"""Background thread that owns a FlowEngine and the handle presentation layers use."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from flow_commander.bus.events import (
    OUTPUT_APPENDED,
    RUN_FINISHED,
    STATE_CHANGED,
    EventHub,
    EventHandler,
    OutputAppended,
    RunFinished,
)
from flow_commander.core.engine import FlowEngine
from flow_commander.core.flow import EngineSnapshot, Failed, FlowPhase
from flow_commander.core.output import OutputBuffer, OutputLine
from flow_commander.core.prompts import PromptBuilder
from flow_commander.core.settings import RunSettings
from flow_commander.errors import ConfigurationError, RunnerBusyError
from flow_commander.providers.agent_registry import AgentDef, get_agent_def
from flow_commander.providers.cli_check import is_available
from flow_commander.providers.invoker import ToolInvoker
from flow_commander.session.task_store import TaskFileStore

EngineFactory = Callable[..., FlowEngine]
Availability = Callable[[AgentDef], bool]


class RunHandle:
    """Read-only view of one run plus its cancel switch."""

    def __init__(self, engine: FlowEngine, hub: EventHub, buffer: OutputBuffer) -> None:
        self._engine = engine
        self._hub = hub
        self.buffer = buffer
        self._thread: Optional[threading.Thread] = None
        self._changed = threading.Condition()
        self._change_count = 0
        self._final: Optional[EngineSnapshot] = None
        hub.subscribe(STATE_CHANGED, self._notify)
        hub.subscribe(OUTPUT_APPENDED, self._notify)

    # ------------------------------------------------------------------ #
    # Presentation API                                                     #
    # ------------------------------------------------------------------ #

    def current_phase(self) -> FlowPhase:
        return self.snapshot().phase

    def snapshot(self) -> EngineSnapshot:
        return self._final or self._engine.latest_snapshot

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def cancel(self) -> None:
        """Ask the engine to stop. Returns immediately."""
        if not self._engine.cancel_event.is_set():
            logger.info("[runner] cancel requested")
        self._engine.cancel()

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """Register for ``phase_changed``, ``state_changed``, ``output_appended`` or ``run_finished``."""
        return self._hub.subscribe(event_name, handler)

    def wait_for_update(self, seen: int, timeout: float | None = None) -> int:
        """Block until a change newer than ``seen`` or ``timeout``. Returns the change counter."""
        with self._changed:
            self._changed.wait_for(lambda: self._change_count != seen, timeout=timeout)
            return self._change_count

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the engine thread. True when it has finished."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    # ------------------------------------------------------------------ #
    # Runner side                                                          #
    # ------------------------------------------------------------------ #

    def _notify(self, _payload: object) -> None:
        with self._changed:
            self._change_count += 1
            self._changed.notify_all()

    def _start(self, task_text: str) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(task_text,),
            name="flow-engine",
            daemon=True,
        )
        self._thread.start()

    def _run(self, task_text: str) -> None:
        try:
            self._engine.run(task_text)
        except Exception as exc:
            # Only invariant violations reach here; report them as a failed run.
            logger.exception("[runner] engine aborted")
            reason = f"internal error: {exc}"
            self.buffer.append(OutputLine.error(reason))
            latest = self._engine.latest_snapshot
            self._final = EngineSnapshot(
                phase=Failed(reason),
                cycle_count=latest.cycle_count,
                max_iterations=latest.max_iterations,
                todo_files=latest.todo_files,
                current_file_index=latest.current_file_index,
                is_running=False,
                version=latest.version + 1,
            )
        self._hub.publish(RUN_FINISHED, RunFinished(self.snapshot()))
        self._notify(None)


class EngineRunner:
    """Start flows on a background thread, one at a time.

    ``engine_factory`` receives keyword arguments ``buffer``, ``settings``,
    ``planning``, ``execution``, ``cancel_event`` and ``hub`` and returns a
    FlowEngine. The default wires the real invoker and task store under
    ``workdir``.
    """

    def __init__(
        self,
        workdir: Path | str | None = None,
        *,
        settings: RunSettings | None = None,
        buffer: OutputBuffer | None = None,
        engine_factory: EngineFactory | None = None,
        availability: Availability | None = None,
    ) -> None:
        self.workdir = Path(workdir) if workdir else Path.cwd()
        self.settings = settings or RunSettings()
        self.buffer = buffer if buffer is not None else OutputBuffer()
        self._engine_factory = engine_factory or self._default_engine
        self._availability = availability or is_available
        self._active: Optional[RunHandle] = None
        self._lock = threading.Lock()

    @property
    def active(self) -> Optional[RunHandle]:
        with self._lock:
            if self._active is not None and self._active.is_running:
                return self._active
            return None

    def validate(self, settings: RunSettings) -> tuple[AgentDef, AgentDef]:
        """Resolve both models; raise ConfigurationError if either can't run."""
        planning = get_agent_def(settings.planning_model)
        execution = get_agent_def(settings.execution_model)
        agents = [planning] if planning.key == execution.key else [planning, execution]
        missing = [agent for agent in agents if not self._availability(agent)]
        if missing:
            names = ", ".join(f"{a.name} ({a.resolve_command()})" for a in missing)
            raise ConfigurationError(f"Model CLI not available: {names}")
        return planning, execution

    def start(self, task_text: str, settings: RunSettings | None = None) -> RunHandle:
        text = (task_text or "").strip()
        if not text:
            raise ValueError("Task text is empty")
        run_settings = settings or self.settings

        with self._lock:
            if self._active is not None and self._active.is_running:
                raise RunnerBusyError("A flow is already running")
            planning, execution = self.validate(run_settings)

            self.buffer.reset()
            hub = EventHub()
            remove_listener = self.buffer.add_listener(
                lambda line: hub.publish(OUTPUT_APPENDED, OutputAppended(line))
            )
            hub.subscribe(RUN_FINISHED, lambda _event: remove_listener())
            engine = self._engine_factory(
                buffer=self.buffer,
                settings=run_settings,
                planning=planning,
                execution=execution,
                cancel_event=threading.Event(),
                hub=hub,
            )
            handle = RunHandle(engine, hub, self.buffer)
            self._active = handle
            logger.info(
                f"[runner] starting flow: planning={planning.key} execution={execution.key} "
                f"max_iterations={run_settings.max_iterations or 'unlimited'}"
            )
            handle._start(text)
            return handle

    def cancel(self) -> None:
        handle = self.active
        if handle is not None:
            handle.cancel()

    def _default_engine(
        self,
        *,
        buffer: OutputBuffer,
        settings: RunSettings,
        planning: AgentDef,
        execution: AgentDef,
        cancel_event: threading.Event,
        hub: EventHub,
    ) -> FlowEngine:
        store = TaskFileStore(self.workdir)
        return FlowEngine(
            invoker=ToolInvoker(buffer, cwd=self.workdir, poll_interval_s=settings.poll_interval_s),
            store=store,
            prompts=PromptBuilder(store, self.workdir),
            buffer=buffer,
            planning=planning,
            execution=execution,
            settings=settings,
            cancel_event=cancel_event,
            hub=hub,
        )
