"""Utility functions for flow-commander."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

STATE_DIR = ".flow-commander"


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_state_path(workdir: Path | str | None = None) -> Path:
    """Per-project state directory (settings, task text, task files, logs)."""
    root = Path(workdir) if workdir else Path.cwd()
    return root / STATE_DIR


def resolve_workdir(raw: str | Path | None) -> Path:
    """Expand and resolve a ``--cwd`` style option."""
    value = str(raw or "").strip()
    if not value:
        return Path.cwd()
    return Path(value).expanduser().resolve()


def configure_logging(level: str = "WARNING", log_file: Path | None = None) -> None:
    """Route loguru output to stderr, or only to ``log_file`` when given.

    Full-screen UIs pass a file so log lines don't draw over the screen.
    """
    logger.remove()
    if log_file is None:
        logger.add(sys.stderr, level=level.upper())
        return
    ensure_dir(log_file.parent)
    logger.add(
        str(log_file),
        level=level.upper(),
        rotation="5 MB",
        retention=3,
        encoding="utf-8",
        enqueue=True,
    )
