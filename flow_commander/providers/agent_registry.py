"""Registry of supported CLI agents."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from typing import Literal

from flow_commander.errors import ConfigurationError

StreamFormat = Literal["text", "claude-json"]

PROMPT_PLACEHOLDER = "{prompt}"


@dataclass(frozen=True)
class AgentDef:
    """CLI agent metadata."""

    key: str
    name: str
    command: str
    env_override: str
    arg_template: tuple[str, ...]
    stream_format: StreamFormat = "text"

    def resolve_command(self) -> str:
        """Resolve command from env override or default command."""
        value = os.getenv(self.env_override, "").strip()
        return value or self.command

    def command_parts(self) -> list[str]:
        """Command split into argv tokens (overrides may carry flags)."""
        command = self.resolve_command()
        try:
            parts = shlex.split(command, posix=os.name != "nt")
        except ValueError as exc:
            raise ConfigurationError(f"Cannot parse command for agent '{self.key}': {command!r} ({exc})") from exc
        if not parts:
            raise ConfigurationError(f"Empty command for agent '{self.key}'")
        return parts

    def build_args(self, prompt: str) -> list[str]:
        """Arguments after the executable, with the prompt substituted."""
        return [prompt if arg == PROMPT_PLACEHOLDER else arg for arg in self.arg_template]

    def build_argv(self, prompt: str) -> list[str]:
        return [*self.command_parts(), *self.build_args(prompt)]


AGENT_DEFS: dict[str, AgentDef] = {
    "codex": AgentDef(
        key="codex",
        name="Codex",
        command="codex",
        env_override="FLOW_COMMANDER_CODEX_CMD",
        arg_template=("exec", "--dangerously-bypass-approvals-and-sandbox", PROMPT_PLACEHOLDER),
    ),
    "claude": AgentDef(
        key="claude",
        name="Claude Code",
        command="claude",
        env_override="FLOW_COMMANDER_CLAUDE_CMD",
        arg_template=(
            "-p",
            PROMPT_PLACEHOLDER,
            "--dangerously-skip-permissions",
            "--output-format",
            "stream-json",
            "--verbose",
        ),
        stream_format="claude-json",
    ),
    "gemini": AgentDef(
        key="gemini",
        name="Gemini",
        command="gemini",
        env_override="FLOW_COMMANDER_GEMINI_CMD",
        arg_template=("-y", PROMPT_PLACEHOLDER),
    ),
}

DEFAULT_AGENT = "codex"


def get_agent_def(agent_type: str) -> AgentDef:
    """Get an agent definition by key."""
    key = (agent_type or "").strip().lower()
    if key not in AGENT_DEFS:
        choices = ", ".join(sorted(AGENT_DEFS))
        raise ConfigurationError(f"Unknown agent type '{agent_type}'. Expected one of: {choices}")
    return AGENT_DEFS[key]


def next_agent_key(key: str) -> str:
    keys = list(AGENT_DEFS)
    idx = keys.index(key) if key in keys else -1
    return keys[(idx + 1) % len(keys)]

