"""Run event contracts and a lightweight signal bus."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from flow_commander.core.flow import EngineSnapshot, FlowPhase
from flow_commander.core.output import OutputLine

EventHandler = Callable[[object], None]

PHASE_CHANGED = "phase_changed"
STATE_CHANGED = "state_changed"
OUTPUT_APPENDED = "output_appended"
RUN_FINISHED = "run_finished"


@dataclass(frozen=True)
class PhaseChanged:
    """Engine entered a new phase."""

    previous: FlowPhase
    snapshot: EngineSnapshot


@dataclass(frozen=True)
class StateChanged:
    """Any published engine state change (phase, countdown, file index)."""

    snapshot: EngineSnapshot


@dataclass(frozen=True)
class OutputAppended:
    """A line was added to the output buffer."""

    line: OutputLine


@dataclass(frozen=True)
class RunFinished:
    """The engine thread returned."""

    snapshot: EngineSnapshot


class EventHub:
    """Simple in-process pub/sub shared by the engine thread and readers.

    Handlers run synchronously on the publishing thread, in publish order.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers[event_name].append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_name, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def publish(self, event_name: str, payload: object) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event_name, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                # A broken subscriber must not stop the engine thread.
                logger.exception(f"[events] handler for {event_name} failed")
