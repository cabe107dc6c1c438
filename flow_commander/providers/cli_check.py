"""Locate agent executables on PATH or through the user's login shell."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import Literal, Optional

from loguru import logger

from flow_commander.providers.agent_registry import AgentDef

ResolutionKind = Literal["path", "shell", "missing"]

_SAFE_COMMAND_RE = re.compile(r"^[A-Za-z0-9_.+/\\:-]+$")
SHELL_LOOKUP_TIMEOUT_S = 5.0


@dataclass(frozen=True)
class CommandResolution:
    """How an agent command can be launched."""

    kind: ResolutionKind
    command: str
    path: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.kind != "missing"


def is_safe_command_name(command: str) -> bool:
    """Reject names that would need shell quoting to look up."""
    return bool(command) and bool(_SAFE_COMMAND_RE.match(command))


def _user_shell() -> Optional[str]:
    if os.name == "nt":
        return None
    shell = os.getenv("SHELL", "").strip()
    if shell and os.path.isfile(shell):
        return shell
    return shutil.which("bash") or shutil.which("sh")


def _lookup_in_shell(command: str) -> Optional[str]:
    """Ask a login shell for ``command`` (aliases, nvm shims and the like)."""
    shell = _user_shell()
    if not shell:
        return None
    try:
        completed = subprocess.run(
            [shell, "-l", "-c", f"command -v {command}"],
            capture_output=True,
            text=True,
            timeout=SHELL_LOOKUP_TIMEOUT_S,
            stdin=subprocess.DEVNULL,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug(f"[cli_check] shell lookup for {command} failed: {exc}")
        return None
    if completed.returncode != 0:
        return None
    lines = [line.strip() for line in completed.stdout.splitlines() if line.strip()]
    return lines[-1] if lines else None


def resolve_cli_command(command: str, *, use_shell: bool = True) -> CommandResolution:
    """Resolve an executable name to a launchable command."""
    name = (command or "").strip()
    if not is_safe_command_name(name):
        return CommandResolution(kind="missing", command=name)

    found = shutil.which(name)
    if found:
        return CommandResolution(kind="path", command=name, path=found)

    if use_shell:
        via_shell = _lookup_in_shell(name)
        if via_shell:
            return CommandResolution(kind="shell", command=name, path=via_shell)

    return CommandResolution(kind="missing", command=name)


def resolve_agent(agent: AgentDef, *, use_shell: bool = True) -> CommandResolution:
    parts = agent.command_parts()
    return resolve_cli_command(parts[0], use_shell=use_shell)


def is_available(agent: AgentDef, *, use_shell: bool = True) -> bool:
    """True when the agent's executable can be launched."""
    resolution = resolve_agent(agent, use_shell=use_shell)
    logger.debug(f"[cli_check] {agent.key}: {resolution.kind} ({resolution.path or '-'})")
    return resolution.available
