"""Event bus between the engine thread and presentation layers."""

from flow_commander.bus.events import (
    OUTPUT_APPENDED,
    PHASE_CHANGED,
    RUN_FINISHED,
    STATE_CHANGED,
    EventHub,
    OutputAppended,
    PhaseChanged,
    RunFinished,
    StateChanged,
)

__all__ = [
    "EventHub",
    "OUTPUT_APPENDED",
    "OutputAppended",
    "PHASE_CHANGED",
    "PhaseChanged",
    "RUN_FINISHED",
    "RunFinished",
    "STATE_CHANGED",
    "StateChanged",
]
