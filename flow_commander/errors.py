"""Exception types shared across flow-commander."""

from __future__ import annotations


class FlowCommanderError(Exception):
    """Base class for flow-commander errors."""


class ToolError(FlowCommanderError):
    """External tool call failed (spawn error, non-zero exit, cancellation)."""

    def __init__(self, reason: str, exit_code: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.exit_code = exit_code


class ToolCancelled(ToolError):
    """Tool call was abandoned because the run was cancelled."""


class StoreError(FlowCommanderError):
    """Task files could not be enumerated, read or moved."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ConfigurationError(FlowCommanderError):
    """Selected model is unknown or not installed."""


class RunnerBusyError(FlowCommanderError):
    """A run is already active."""


class FlowInvariantError(FlowCommanderError):
    """Engine state machine attempted an illegal transition."""
