from pathlib import Path

from flow_commander.config.schema import Config
from flow_commander.core.settings import RunSettings
from flow_commander.errors import ConfigurationError
from flow_commander.tui.app import FlowApp


def _recording_app(tmp_path: Path, monkeypatch):
    app = FlowApp(workdir=tmp_path, config=Config())
    delivered = []
    monkeypatch.setattr(app, "call_from_thread", lambda fn, *args, **kwargs: delivered.append((fn.__name__, args)))
    return app, delivered


def test_runner_writes_into_the_apps_buffer(tmp_path: Path) -> None:
    app = FlowApp(workdir=tmp_path, config=Config())
    assert app.runner.buffer is app.buffer


def test_start_result_is_handed_back_to_the_event_loop(tmp_path: Path, monkeypatch) -> None:
    app, delivered = _recording_app(tmp_path, monkeypatch)
    handle = object()
    monkeypatch.setattr(app.runner, "start", lambda task_text, settings: handle)
    app._start_in_thread("task", RunSettings.from_config(app.config))
    assert delivered == [("_started", (handle, 4))]
    assert app.handle is None


def test_unavailable_model_is_reported_without_a_handle(tmp_path: Path, monkeypatch) -> None:
    app, delivered = _recording_app(tmp_path, monkeypatch)

    def fail(task_text, settings):
        raise ConfigurationError("Planning model 'codex' is not available")

    monkeypatch.setattr(app.runner, "start", fail)
    app._start_in_thread("task", RunSettings.from_config(app.config))
    assert delivered == [("_start_failed", ("Planning model 'codex' is not available", "error", "Model not available"))]
    assert app.handle is None


def test_clear_runs_the_store_and_reports_the_count(tmp_path: Path, monkeypatch) -> None:
    app, delivered = _recording_app(tmp_path, monkeypatch)
    todo = tmp_path / ".flow-commander" / "todo"
    todo.mkdir(parents=True)
    (todo / "a.md").write_text("# A\n", encoding="utf-8")
    app._clear_task_files()
    assert not (todo / "a.md").exists()
    assert delivered[0][0] == "_set_note"
    assert delivered[0][1][0].startswith("Removed ")


def test_settings_are_saved_off_the_event_loop(tmp_path: Path, monkeypatch) -> None:
    app, delivered = _recording_app(tmp_path, monkeypatch)
    saved = []
    monkeypatch.setattr("flow_commander.tui.app.save_config", lambda config, path: saved.append((config, path)))
    config = app.config.model_copy(deep=True)
    app._save_settings(config)
    assert saved and saved[0][0] is config
    assert delivered == []
