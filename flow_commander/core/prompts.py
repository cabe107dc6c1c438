"""Prompt text sent to the planning and execution agents."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from flow_commander.core.task_utils import (
    extract_completed_tasks_summary,
    strip_completed_tasks_block,
    summarize_task_files,
)

if TYPE_CHECKING:
    from flow_commander.session.task_store import TaskFile, TaskFileStore

TODO_LOCATION = ".flow-commander/todo/"

GUIDELINE_FILES = (
    "AGENTS.override.md",
    "AGENTS.md",
    ".agents.md",
    "CLAUDE.md",
    "CLAUDE.local.md",
    "GEMINI.md",
    ".gemini/GEMINI.md",
    ".cursorrules",
    ".github/copilot-instructions.md",
)

PLANNING_PREFIX = """# Role

You are a software architect. Break the requirements in <PLAN> into small,
self-contained task files that another agent will implement one at a time.

Planning is read-only: write task files under `{todo}` and nothing else.
Do not edit source code, run builds or tests, or run git commands.

# Project guidelines

Read these before planning and cite them in every task:
{guidelines}

# Process

1. Explore the code the plan touches. Name exact files and functions.
2. Compare the plan against <PENDING_TASKS> and <COMPLETED_TASKS>.
   Do not duplicate pending work and do not redo completed work.
3. Write one task per logical change as `{todo}task-NNN.md`, continuing the
   numbering of existing tasks with zero padding.
4. If every requirement is already covered by completed work, write nothing.

Each task file uses this layout:

```markdown
# Task NNN: <title>

## Objective
<one sentence>

## Context
<why it is needed, dependencies on other tasks>

## Implementation Steps
1. <step>

## Reference Files
- `repo/relative/path` - <what changes>

## Acceptance Criteria
- [ ] <verifiable check>
```

---
"""

PLANNING_POSTFIX = """
---

Write task files to `{todo}` only, or none if nothing remains to be done.
Do not print explanations.
"""

EXECUTION_PREFIX = """# Role

You are a software engineer implementing exactly one task. Make only the
changes described in <TASK_SPECIFICATION>; do not refactor or add extras.

# Project guidelines

Follow these throughout; they win over the task text when they conflict:
{guidelines}

# Process

1. Read the reference files named in the task. If the code already does what
   the task asks, change nothing and say so.
2. Implement the steps with the smallest diff that satisfies the acceptance
   criteria, matching the surrounding style.
3. Run the project's formatter, linter and tests, and fix what you broke.
4. Finish with a short summary: files changed, checks run, blockers.

Do not modify files under `{todo}`.

---
"""

EXECUTION_POSTFIX = """
---

Implement the task above now.
"""

NO_GUIDELINES = "- No project guideline files found. Use general best practices."


def _walk(directory: Path, suffix: str) -> Iterable[Path]:
    if not directory.is_dir():
        return []
    return (p for p in directory.rglob(f"*{suffix}") if p.is_file())


def discover_guideline_files(root: Path) -> list[str]:
    """Agent instruction files present in ``root``, as sorted relative paths."""
    found: set[str] = set()
    for rel in GUIDELINE_FILES:
        if (root / rel).is_file():
            found.add(rel)
    for path in _walk(root / ".cursor" / "rules", ".mdc"):
        found.add(path.relative_to(root).as_posix())
    for path in _walk(root / ".github" / "instructions", ".instructions.md"):
        found.add(path.relative_to(root).as_posix())
    return sorted(found)


def render_guidelines(files: list[str]) -> str:
    if not files:
        return NO_GUIDELINES
    return "\n".join(f"- `{name}`" for name in files)


def _section(tag: str, body: str, empty: str) -> str:
    return f"<{tag}>\n{body.strip() or empty}\n</{tag}>"


def wrap_for_planning(
    task_text: str,
    pending_summary: str,
    completed_summary: str,
    guidelines: list[str],
) -> str:
    prefix = PLANNING_PREFIX.format(todo=TODO_LOCATION, guidelines=render_guidelines(guidelines))
    return "\n".join(
        [
            prefix,
            _section("PENDING_TASKS", pending_summary, "None"),
            "",
            _section("COMPLETED_TASKS", completed_summary, "None"),
            "",
            "<PLAN>",
            strip_completed_tasks_block(task_text).strip(),
            "</PLAN>",
            PLANNING_POSTFIX.format(todo=TODO_LOCATION),
        ]
    )


def wrap_for_execution(
    task_content: str,
    task_name: str,
    completed_summary: str,
    guidelines: list[str],
) -> str:
    prefix = EXECUTION_PREFIX.format(todo=TODO_LOCATION, guidelines=render_guidelines(guidelines))
    return "\n".join(
        [
            prefix,
            _section("COMPLETED_TASKS", completed_summary, "None"),
            "",
            f"<TASK_SPECIFICATION file=\"{task_name}\">",
            task_content.strip(),
            "</TASK_SPECIFICATION>",
            EXECUTION_POSTFIX,
        ]
    )


class PromptBuilder:
    """Compose prompts from the task text and the files in a TaskFileStore."""

    def __init__(self, store: "TaskFileStore", root: Path | None = None) -> None:
        self.store = store
        self.root = root or store.root

    def planning(self, task_text: str) -> str:
        pending = [(t.name, self.store.try_read_text(t)) for t in self.store.list_pending()]
        return wrap_for_planning(
            task_text,
            summarize_task_files(pending),
            extract_completed_tasks_summary(task_text),
            discover_guideline_files(self.root),
        )

    def execution(self, task: "TaskFile", task_text: str) -> str:
        return wrap_for_execution(
            self.store.read_text(task),
            task.name,
            extract_completed_tasks_summary(task_text),
            discover_guideline_files(self.root),
        )
