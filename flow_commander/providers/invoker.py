"""Run one planning or execution CLI call and stream its output."""

from __future__ import annotations

import os
import queue
import shlex
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Literal, Optional, Protocol

from loguru import logger

from flow_commander.core.output import OutputBuffer, OutputKind, OutputLine
from flow_commander.errors import ToolCancelled, ToolError
from flow_commander.providers.agent_registry import AgentDef
from flow_commander.providers.cli_check import CommandResolution, resolve_cli_command
from flow_commander.providers.stream_json import parse_claude_stream_line

Role = Literal["planning", "execution"]

KILL_GRACE_S = 3.0


@dataclass(frozen=True)
class InvocationMode:
    """Which agent to run and for what."""

    role: Role
    agent: AgentDef

    @property
    def display_name(self) -> str:
        return self.agent.name


@dataclass(frozen=True)
class ToolOutcome:
    """Successful tool call."""

    exit_code: int
    duration_s: float
    line_count: int


class Invoker(Protocol):
    """What the engine needs from a tool runner."""

    def invoke(
        self,
        mode: InvocationMode,
        prompt: str,
        cancel_event: threading.Event,
    ) -> ToolOutcome:
        ...


Resolver = Callable[[str], CommandResolution]


class ToolInvoker:
    """Spawn an agent CLI with pipes and stream its lines into an OutputBuffer.

    Two reader threads push ``(kind, text)`` pairs into one queue; the
    calling thread drains the queue into the buffer, so the buffer sees
    lines in arrival order while the process is still running.
    """

    def __init__(
        self,
        buffer: OutputBuffer,
        *,
        cwd: str | Path | None = None,
        poll_interval_s: float = 0.1,
        kill_grace_s: float = KILL_GRACE_S,
        resolver: Optional[Resolver] = None,
    ) -> None:
        self.buffer = buffer
        self.cwd = str(cwd) if cwd else None
        self.poll_interval_s = poll_interval_s
        self.kill_grace_s = kill_grace_s
        self._resolver = resolver or resolve_cli_command

    def invoke(
        self,
        mode: InvocationMode,
        prompt: str,
        cancel_event: threading.Event,
    ) -> ToolOutcome:
        agent = mode.agent
        if cancel_event.is_set():
            raise ToolCancelled(f"{agent.name} cancelled before start")

        argv = self._build_argv(agent, prompt)
        logger.info(f"[invoker] {mode.role}: starting {agent.name} ({argv[0]})")
        started = time.monotonic()
        proc = self._spawn(agent, argv)

        lines: "queue.Queue[Optional[tuple[OutputKind, str]]]" = queue.Queue()
        parse = parse_claude_stream_line if agent.stream_format == "claude-json" else None
        readers = [
            threading.Thread(
                target=_pump,
                args=(proc.stdout, OutputKind.STDOUT, lines, parse),
                name=f"{agent.key}-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=_pump,
                args=(proc.stderr, OutputKind.STDERR, lines, None),
                name=f"{agent.key}-stderr",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        line_count = 0
        open_streams = len(readers)
        while open_streams:
            if cancel_event.is_set():
                self._terminate(proc)
                raise ToolCancelled(f"{agent.name} cancelled")
            try:
                item = lines.get(timeout=self.poll_interval_s)
            except queue.Empty:
                continue
            if item is None:
                open_streams -= 1
                continue
            kind, text = item
            self.buffer.append(OutputLine(text, kind))
            line_count += 1

        returncode = self._wait(proc, cancel_event, agent)
        duration = time.monotonic() - started
        logger.info(f"[invoker] {agent.name} exited with {returncode} after {duration:.1f}s")
        if returncode != 0:
            raise ToolError(f"{agent.name} exited with code {returncode}", exit_code=returncode)
        return ToolOutcome(exit_code=returncode, duration_s=duration, line_count=line_count)

    # ------------------------------------------------------------------ #
    # Process helpers                                                      #
    # ------------------------------------------------------------------ #

    def _build_argv(self, agent: AgentDef, prompt: str) -> list[str]:
        parts = agent.command_parts()
        args = agent.build_args(prompt)
        resolution = self._resolver(parts[0])
        if resolution.kind == "shell":
            # Only reachable through a login shell (aliases, version managers).
            shell = os.getenv("SHELL") or "/bin/sh"
            line = " ".join(shlex.quote(token) for token in [*parts, *args])
            return [shell, "-l", "-c", line]
        if resolution.kind == "path" and resolution.path:
            return [resolution.path, *parts[1:], *args]
        return agent.build_argv(prompt)

    def _spawn(self, agent: AgentDef, argv: list[str]) -> subprocess.Popen:
        kwargs: dict = {}
        if os.name == "nt":
            kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            kwargs["start_new_session"] = True
        try:
            return subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                cwd=self.cwd,
                **kwargs,
            )
        except OSError as exc:
            raise ToolError(f"Failed to start {agent.name}: {exc}") from exc

    def _wait(self, proc: subprocess.Popen, cancel_event: threading.Event, agent: AgentDef) -> int:
        while True:
            if cancel_event.is_set():
                self._terminate(proc)
                raise ToolCancelled(f"{agent.name} cancelled")
            try:
                return proc.wait(timeout=self.poll_interval_s)
            except subprocess.TimeoutExpired:
                continue

    def _terminate(self, proc: subprocess.Popen) -> None:
        """Stop the process and its children."""
        if proc.poll() is not None:
            return
        logger.warning(f"[invoker] terminating pid {proc.pid}")
        if os.name == "nt":
            try:
                subprocess.run(
                    ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
                    capture_output=True,
                    timeout=self.kill_grace_s,
                )
            except (OSError, subprocess.TimeoutExpired) as exc:
                logger.warning(f"[invoker] taskkill failed ({exc}), killing pid {proc.pid}")
                proc.kill()
            return

        _signal_group(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=self.kill_grace_s)
        except subprocess.TimeoutExpired:
            _signal_group(proc, signal.SIGKILL)
            try:
                proc.wait(timeout=self.kill_grace_s)
            except subprocess.TimeoutExpired:
                logger.error(f"[invoker] pid {proc.pid} did not exit after SIGKILL")


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(os.getpgid(proc.pid), sig)
    except ProcessLookupError:
        return
    except OSError:
        proc.send_signal(sig)


def _pump(
    stream: Optional[IO[str]],
    kind: OutputKind,
    sink: "queue.Queue[Optional[tuple[OutputKind, str]]]",
    parse: Optional[Callable[[str], Optional[str]]],
) -> None:
    """Forward lines from ``stream`` to ``sink``; ``None`` marks EOF."""
    if stream is None:
        sink.put(None)
        return
    try:
        for raw in stream:
            text = raw.rstrip("\r\n")
            if parse is not None:
                parsed = parse(text)
                if parsed is None:
                    continue
                for part in parsed.splitlines() or [""]:
                    sink.put((kind, part))
            else:
                sink.put((kind, text))
    except (OSError, ValueError) as exc:
        # Stream closed underneath us during termination.
        logger.debug(f"[invoker] {kind.value} reader stopped: {exc}")
    finally:
        sink.put(None)
