"""Filesystem store for task text and unit-of-work files."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

from loguru import logger

from flow_commander.core.task_utils import MAX_ENTRY_LENGTH, extract_task_summary
from flow_commander.errors import StoreError

STATE_DIR = ".flow-commander"
TODO_DIR = "todo"
DONE_DIR = "done"
TASK_FILE = "task.md"
TASK_SUFFIX = ".md"

TaskStatus = Literal["pending", "done"]


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


@dataclass(frozen=True)
class TaskFile:
    """Handle to one unit-of-work file."""

    name: str
    path: Path
    status: TaskStatus = "pending"


class TaskFileStore:
    """Pending/done task files plus the persisted task text.

    Directory layout::

        <root>/.flow-commander/
            task.md
            todo/
                task-001.md        pending
                done/
                    task-000.md    done
    """

    def __init__(self, root: Path | str | None = None) -> None:
        self.root = Path(root) if root else Path.cwd()
        self.state_dir = self.root / STATE_DIR
        self.todo_dir = self.state_dir / TODO_DIR
        self.done_dir = self.todo_dir / DONE_DIR
        self.task_path = self.state_dir / TASK_FILE

    # ------------------------------------------------------------------ #
    # Enumeration                                                          #
    # ------------------------------------------------------------------ #

    def list_pending(self) -> list[TaskFile]:
        """Pending task files, sorted by name."""
        return [TaskFile(p.name, p, "pending") for p in self._list_md(self.todo_dir)]

    def list_done(self) -> list[TaskFile]:
        return [TaskFile(p.name, p, "done") for p in self._list_md(self.done_dir)]

    def has_done_files(self) -> bool:
        return bool(self._list_md(self.done_dir))

    def _list_md(self, directory: Path) -> list[Path]:
        if not directory.exists():
            return []
        try:
            paths = [
                p for p in directory.iterdir()
                if p.is_file() and p.suffix.lower() == TASK_SUFFIX
            ]
        except OSError as exc:
            raise StoreError(f"Cannot list {directory}: {exc}") from exc
        return sorted(paths, key=lambda p: p.name)

    # ------------------------------------------------------------------ #
    # Transitions                                                          #
    # ------------------------------------------------------------------ #

    def mark_done(self, task: TaskFile) -> TaskFile:
        """Move ``task`` into the done directory and return the moved handle.

        Calling this for a file that is already done returns the done handle
        unchanged. A name clash in the done directory gets a timestamp suffix.
        """
        if task.status == "done" or task.path.parent == self.done_dir:
            if task.path.exists():
                return TaskFile(task.path.name, task.path, "done")
            raise StoreError(f"Done file {task.name} no longer exists")

        if not task.path.exists():
            already = self.done_dir / task.name
            if already.exists():
                return TaskFile(already.name, already, "done")
            raise StoreError(f"Task file {task.name} not found in {self.todo_dir}")

        try:
            self.done_dir.mkdir(parents=True, exist_ok=True)
            target = self.done_dir / task.name
            if target.exists():
                target = self.done_dir / f"{task.path.stem}_{_stamp()}{task.path.suffix}"
            shutil.move(str(task.path), str(target))
        except OSError as exc:
            raise StoreError(f"Cannot move {task.name} to done: {exc}") from exc

        logger.info(f"[store] {task.name} -> {target.name}")
        return TaskFile(target.name, target, "done")

    # ------------------------------------------------------------------ #
    # Content                                                              #
    # ------------------------------------------------------------------ #

    def read_text(self, task: TaskFile) -> str:
        try:
            return task.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Cannot read {task.name}: {exc}") from exc

    def try_read_text(self, task: TaskFile) -> Optional[str]:
        try:
            return self.read_text(task)
        except StoreError as exc:
            logger.warning(f"[store] {exc}")
            return None

    def summarize(self, task: TaskFile) -> str:
        """One-line summary of a task file, used for completed-task bookkeeping."""
        content = self.try_read_text(task)
        if not content:
            return task.path.stem
        return extract_task_summary(content, max_len=MAX_ENTRY_LENGTH) or task.path.stem

    def load_task_text(self) -> str:
        if not self.task_path.exists():
            return ""
        try:
            return self.task_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Cannot read {self.task_path}: {exc}") from exc

    def save_task_text(self, text: str) -> None:
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            self.todo_dir.mkdir(parents=True, exist_ok=True)
            self.task_path.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Cannot write {self.task_path}: {exc}") from exc

    def clear(self) -> int:
        """Delete pending files, done files and the task text. Returns files removed."""
        removed = 0
        targets = [*self._list_md(self.done_dir), *self._list_md(self.todo_dir)]
        if self.task_path.exists():
            targets.append(self.task_path)
        for path in targets:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StoreError(f"Cannot delete {path}: {exc}") from exc
            removed += 1
        logger.info(f"[store] cleared {removed} file(s) under {self.state_dir}")
        return removed
