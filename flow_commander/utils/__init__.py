"""Utility functions for flow-commander."""

from flow_commander.utils.helpers import configure_logging, ensure_dir, get_state_path, resolve_workdir

__all__ = ["configure_logging", "ensure_dir", "get_state_path", "resolve_workdir"]
