from __future__ import annotations

import json
import sys
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from flow_commander import __version__
from flow_commander.cli.commands import app
from flow_commander.providers.cli_check import CommandResolution

runner = CliRunner()

AGENT_ENV = ("FLOW_COMMANDER_CODEX_CMD", "FLOW_COMMANDER_CLAUDE_CMD", "FLOW_COMMANDER_GEMINI_CMD")


@pytest.fixture(autouse=True)
def _isolated_agent_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Commands may export overrides; make sure they are restored afterwards.
    for name in AGENT_ENV:
        monkeypatch.setenv(name, "")


def _only(*installed: str):
    def _resolve(command: str, *, use_shell: bool = True) -> CommandResolution:
        if command in installed:
            return CommandResolution("path", command, f"/usr/local/bin/{command}")
        return CommandResolution("missing", command)

    return _resolve


def test_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"flow-commander v{__version__}" in result.stdout


def test_init_picks_an_installed_agent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("flow_commander.providers.cli_check.resolve_cli_command", _only("claude"))

    result = runner.invoke(app, ["init", "--non-interactive", "--cwd", str(tmp_path)])

    assert result.exit_code == 0
    data = json.loads((tmp_path / ".flow-commander" / "settings.json").read_text(encoding="utf-8"))
    assert data["models"] == {"planning": "claude", "execution": "claude"}


def test_init_keeps_existing_settings(tmp_path: Path) -> None:
    path = tmp_path / ".flow-commander" / "settings.json"
    path.parent.mkdir(parents=True)
    path.write_text("{}", encoding="utf-8")

    result = runner.invoke(app, ["init", "--non-interactive", "--cwd", str(tmp_path)])

    assert result.exit_code == 0
    assert "skip" in result.stdout
    assert path.read_text(encoding="utf-8") == "{}"


def test_status_lists_agents(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("flow_commander.providers.cli_check.resolve_cli_command", _only("codex"))
    todo = tmp_path / ".flow-commander" / "todo"
    todo.mkdir(parents=True)
    (todo / "task-001.md").write_text("# Task 001", encoding="utf-8")

    result = runner.invoke(app, ["status", "--cwd", str(tmp_path)])

    assert result.exit_code == 0
    assert "Task files: 1 pending, 0 done" in result.stdout
    assert "codex: OK" in result.stdout
    assert "gemini: NO" in result.stdout


def test_status_reports_unparseable_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("flow_commander.providers.cli_check.resolve_cli_command", _only("claude"))
    monkeypatch.setenv("FLOW_COMMANDER_CODEX_CMD", 'codex "--x')

    result = runner.invoke(app, ["status", "--cwd", str(tmp_path)])

    assert result.exit_code == 0
    assert "codex: NO" in result.stdout
    assert "Cannot parse command" in result.stdout
    assert "claude: OK" in result.stdout


def test_clear_removes_files(tmp_path: Path) -> None:
    todo = tmp_path / ".flow-commander" / "todo"
    (todo / "done").mkdir(parents=True)
    (todo / "a.md").write_text("a", encoding="utf-8")
    (todo / "done" / "b.md").write_text("b", encoding="utf-8")

    result = runner.invoke(app, ["clear", "--yes", "--cwd", str(tmp_path)])

    assert result.exit_code == 0
    assert "Removed 2 file(s)" in result.stdout
    assert not (todo / "a.md").exists()


def test_run_without_task_is_a_usage_error(tmp_path: Path) -> None:
    result = runner.invoke(app, ["run", "--cwd", str(tmp_path)])

    assert result.exit_code == 2
    assert "No task given" in result.stdout


def test_run_with_unavailable_model(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("flow_commander.core.runner.is_available", lambda agent: False)

    result = runner.invoke(app, ["run", "Add caching", "--execution", "gemini", "--cwd", str(tmp_path)])

    assert result.exit_code == 2
    assert "Model CLI not available" in result.stdout
    assert not (tmp_path / ".flow-commander" / "todo").exists()


def test_run_unknown_agent(tmp_path: Path) -> None:
    result = runner.invoke(app, ["run", "x", "--planning", "copilot", "--cwd", str(tmp_path)])

    assert result.exit_code == 2
    assert "Unknown agent type" in result.stdout


FAKE_AGENT = textwrap.dedent(
    """
    import pathlib
    import sys

    prompt = sys.argv[-1]
    todo = pathlib.Path(".flow-commander/todo")
    if "<PLAN>" in prompt:
        done = todo / "done"
        if not (done.exists() and any(done.iterdir())):
            todo.mkdir(parents=True, exist_ok=True)
            (todo / "task-001.md").write_text("# Task 001: Say hi\\n\\n## Objective\\nGreet.\\n")
        print("planned")
    else:
        print("implemented task-001")
    """
)


def test_run_end_to_end_with_fake_agent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    script = tmp_path / "fake_agent.py"
    script.write_text(FAKE_AGENT, encoding="utf-8")
    monkeypatch.setenv("FLOW_COMMANDER_CODEX_CMD", f"{sys.executable} {script}")

    result = runner.invoke(app, ["run", "Say hi", "--retry-limit", "1", "--cwd", str(tmp_path)])

    assert result.exit_code == 0, result.stdout
    assert "implemented task-001" in result.stdout
    assert "Completed" in result.stdout
    assert (tmp_path / ".flow-commander" / "todo" / "done" / "task-001.md").exists()
    task_text = (tmp_path / ".flow-commander" / "task.md").read_text(encoding="utf-8")
    assert "- task-001.md: Task 001: Say hi Greet." in task_text
