"""Helpers for task summaries and the ``<COMPLETED_TASKS>`` block of the task text."""

from __future__ import annotations

import re
from typing import Iterable, Optional

MAX_SUMMARY_LINES = 5
MAX_SUMMARY_LENGTH = 100
MAX_ENTRY_LENGTH = 500

COMPLETED_TASKS_OPEN = "<COMPLETED_TASKS>"
COMPLETED_TASKS_CLOSE = "</COMPLETED_TASKS>"

_UNIX_PREFIXES = ("/home/", "/tmp/", "/var/", "/usr/", "/etc/")
_REPO_PREFIXES = (
    "src/",
    "lib/",
    "bin/",
    "tests/",
    "test/",
    "docs/",
    "doc/",
    "pkg/",
    "cmd/",
    "internal/",
    "config/",
    "configs/",
    "build/",
    "dist/",
    "out/",
    "node_modules/",
    "vendor/",
    "packages/",
)
_DRIVE_RE = re.compile(r"[A-Za-z]:[\\/]")


def truncate_summary(text: str, max_len: int) -> str:
    """Cut ``text`` to ``max_len`` characters, ending with ``...`` when cut."""
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - 3)] + "..."


def extract_task_summary(content: str, max_len: int = MAX_SUMMARY_LENGTH) -> str:
    """Summarize a task file as its ``# Task`` title and first Objective line.

    Falls back to the first non-empty line when neither is present.
    """
    title: Optional[str] = None
    objective: Optional[str] = None
    first_non_empty: Optional[str] = None
    in_objective = False

    for line in content.splitlines():
        stripped = line.strip()
        if first_non_empty is None and stripped:
            first_non_empty = stripped
        if title is None and stripped.startswith("# Task"):
            title = stripped[2:]
        if stripped.startswith("## Objective"):
            in_objective = True
            continue
        if in_objective and objective is None:
            if stripped.startswith("#"):
                break
            if stripped:
                objective = stripped
                break

    if title and objective:
        summary = f"{title}\n{objective}"
    else:
        summary = title or objective or first_non_empty or ""
    return truncate_summary(summary, max_len)


def contains_path_reference(text: str) -> bool:
    if any(prefix in text for prefix in _UNIX_PREFIXES):
        return True
    if ".flow-commander/todo/done/" in text or ".flow-commander\\todo\\done\\" in text:
        return True
    if "./" in text or ".\\" in text:
        return True
    if any(prefix in text for prefix in _REPO_PREFIXES):
        return True
    return bool(_DRIVE_RE.search(text))


def normalize_summary_entry(summary: str) -> Optional[str]:
    """Collapse a summary onto one line; None if it is empty or names a path."""
    single_line = " ".join(summary.split())
    if not single_line or contains_path_reference(single_line):
        return None
    return truncate_summary(single_line, MAX_ENTRY_LENGTH)


def completed_entry(name: str, summary: str) -> str:
    """Format one ``<COMPLETED_TASKS>`` line for a finished task file."""
    normalized = normalize_summary_entry(summary)
    return f"- {name}: {normalized}" if normalized else f"- {name}"


def _block_bounds(task_text: str) -> Optional[tuple[int, int]]:
    open_pos = task_text.find(COMPLETED_TASKS_OPEN)
    close_pos = task_text.find(COMPLETED_TASKS_CLOSE)
    if open_pos < 0 or close_pos < 0:
        return None
    start = open_pos + len(COMPLETED_TASKS_OPEN)
    if start > close_pos:
        return None
    return start, close_pos


def extract_completed_tasks_summary(task_text: str) -> str:
    """Contents of the ``<COMPLETED_TASKS>`` block, or an empty string."""
    bounds = _block_bounds(task_text)
    if bounds is None:
        return ""
    start, end = bounds
    return task_text[start:end].strip()


def strip_completed_tasks_block(task_text: str) -> str:
    """Task text without its ``<COMPLETED_TASKS>`` block."""
    bounds = _block_bounds(task_text)
    if bounds is None:
        return task_text
    start, end = bounds
    head = task_text[: start - len(COMPLETED_TASKS_OPEN)]
    tail = task_text[end + len(COMPLETED_TASKS_CLOSE):]
    return (head.rstrip() + "\n" + tail.lstrip()).strip() + "\n"


def upsert_completed_task_summary(task_text: str, summary_line: str) -> str:
    """Add ``summary_line`` to the ``<COMPLETED_TASKS>`` block.

    The block is appended to the text when missing. A line that already
    appears anywhere in the text is not added again.
    """
    entry = summary_line.strip()
    if not entry or entry in task_text:
        return task_text

    bounds = _block_bounds(task_text)
    if bounds is not None:
        start, end = bounds
        before = task_text[:end]
        after = task_text[end:]
        if not task_text[start:end].strip():
            return f"{task_text[:start]}\n{entry}\n{after}"
        separator = "" if before.endswith("\n") else "\n"
        return f"{before}{separator}{entry}\n{after}"

    separator = "" if task_text.endswith("\n") or not task_text else "\n"
    return f"{task_text}{separator}\n{COMPLETED_TASKS_OPEN}\n{entry}\n{COMPLETED_TASKS_CLOSE}\n"


def summarize_task_files(entries: Iterable[tuple[str, Optional[str]]]) -> str:
    """Render ``(name, content)`` pairs as short snippets for the planner.

    ``content`` of None means the file could not be read.
    """
    summaries: list[str] = []
    for name, content in entries:
        if content is None:
            snippet = "[Could not read file content]"
        else:
            lines = content.splitlines()
            snippet = "\n".join(lines[:MAX_SUMMARY_LINES])
            if len(lines) > MAX_SUMMARY_LINES:
                snippet += "\n..."
        summaries.append(f"- {name}:\n{snippet}")
    return "\n\n".join(summaries)
