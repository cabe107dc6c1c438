from __future__ import annotations

import threading
from pathlib import Path

import pytest

from conftest import FakeInvoker, FakePrompts, FakeStore, no_wait_settings
from flow_commander.core.engine import FlowEngine
from flow_commander.core.flow import Completed, Failed, Idle, NoTodoFiles
from flow_commander.core.output import OutputBuffer, OutputLine
from flow_commander.core.runner import EngineRunner
from flow_commander.errors import ConfigurationError, RunnerBusyError


class FactoryRecorder:
    def __init__(self, store: FakeStore, invoker: FakeInvoker) -> None:
        self.store = store
        self.invoker = invoker
        self.calls = 0

    def __call__(self, **kwargs) -> FlowEngine:
        self.calls += 1
        return FlowEngine(invoker=self.invoker, store=self.store, prompts=FakePrompts(), **kwargs)


def _runner(tmp_path: Path, factory, availability=lambda agent: True, buffer=None) -> EngineRunner:
    return EngineRunner(
        tmp_path,
        settings=no_wait_settings(),
        buffer=buffer,
        engine_factory=factory,
        availability=availability,
    )


def test_run_completes_on_background_thread(tmp_path: Path) -> None:
    factory = FactoryRecorder(FakeStore(pending=("a.md",)), FakeInvoker())
    runner = _runner(tmp_path, factory)

    handle = runner.start("Build it")

    assert handle.join(timeout=10)
    assert handle.current_phase() == Completed()
    assert handle.snapshot().is_running is False
    assert runner.active is None
    assert factory.calls == 1


def test_empty_task_is_rejected(tmp_path: Path) -> None:
    factory = FactoryRecorder(FakeStore(), FakeInvoker())

    with pytest.raises(ValueError):
        _runner(tmp_path, factory).start("   \n")
    assert factory.calls == 0


def test_unavailable_model_fails_before_the_run(tmp_path: Path) -> None:
    factory = FactoryRecorder(FakeStore(), FakeInvoker())
    runner = _runner(tmp_path, factory, availability=lambda agent: agent.key != "gemini")

    with pytest.raises(ConfigurationError, match="Gemini"):
        runner.start("task", no_wait_settings(execution_model="gemini"))
    assert factory.calls == 0
    assert runner.active is None


def test_second_start_while_running_is_busy(tmp_path: Path) -> None:
    release = threading.Event()

    def blocked(_mode, cancel_event):
        release.wait(timeout=10)
        return "ok"

    factory = FactoryRecorder(FakeStore(), FakeInvoker([blocked]))
    runner = _runner(tmp_path, factory)
    handle = runner.start("first")

    try:
        with pytest.raises(RunnerBusyError):
            runner.start("second")
    finally:
        release.set()
    assert handle.join(timeout=10)
    assert handle.current_phase() == NoTodoFiles()
    assert factory.calls == 1


def test_cancel_returns_run_to_idle(tmp_path: Path) -> None:
    entered = threading.Event()

    def wait_for_cancel(_mode, cancel_event):
        entered.set()
        cancel_event.wait(timeout=10)
        return "fail"

    factory = FactoryRecorder(FakeStore(pending=("a.md",)), FakeInvoker([wait_for_cancel]))
    runner = _runner(tmp_path, factory)
    handle = runner.start("task")

    assert entered.wait(timeout=10)
    runner.cancel()

    assert handle.join(timeout=10)
    assert handle.current_phase() == Idle()
    assert handle.buffer.snapshot()[-1].text == "Flow cancelled"


def test_engine_crash_is_reported_as_failed(tmp_path: Path) -> None:
    def boom(_mode, _cancel):
        raise RuntimeError("unexpected")

    factory = FactoryRecorder(FakeStore(), FakeInvoker([boom]))
    handle = _runner(tmp_path, factory).start("task")

    assert handle.join(timeout=10)
    phase = handle.current_phase()
    assert isinstance(phase, Failed)
    assert "internal error: unexpected" in phase.reason
    assert handle.snapshot().is_running is False


def test_buffer_is_reset_for_each_run(tmp_path: Path) -> None:
    buffer = OutputBuffer()
    buffer.append(OutputLine.info("stale"))
    factory = FactoryRecorder(FakeStore(), FakeInvoker())
    runner = _runner(tmp_path, factory, buffer=buffer)

    first = runner.start("one")
    first.join(timeout=10)
    second = runner.start("two")
    second.join(timeout=10)

    texts = [line.text for line in buffer.snapshot()]
    assert "stale" not in texts
    assert texts[0] == "Using entered task text (3 bytes)"
    assert factory.calls == 2


def test_wait_for_update_sees_progress(tmp_path: Path) -> None:
    factory = FactoryRecorder(FakeStore(), FakeInvoker())
    handle = _runner(tmp_path, factory).start("task")

    seen = handle.wait_for_update(0, timeout=10)
    handle.join(timeout=10)

    assert seen > 0
    assert handle.wait_for_update(seen, timeout=0.01) >= seen


def test_engine_writes_into_the_callers_empty_buffer(tmp_path: Path) -> None:
    buffer = OutputBuffer()
    factory = FactoryRecorder(FakeStore(), FakeInvoker())
    runner = _runner(tmp_path, factory, buffer=buffer)

    handle = runner.start("task")
    handle.join(timeout=10)

    assert runner.buffer is buffer
    assert handle.buffer is buffer
    assert buffer.snapshot()[0].text == "Using entered task text (4 bytes)"
