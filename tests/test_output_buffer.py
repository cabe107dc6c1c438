from __future__ import annotations

import threading

from flow_commander.core.output import MAX_OUTPUT_LINES, OutputBuffer, OutputKind, OutputLine


def _fill(buffer: OutputBuffer, count: int) -> None:
    for i in range(count):
        buffer.append(OutputLine.stdout(f"line {i}"))


def test_keeps_all_lines_up_to_capacity() -> None:
    buffer = OutputBuffer()
    _fill(buffer, MAX_OUTPUT_LINES)

    lines = buffer.snapshot()
    assert len(lines) == 5000
    assert lines[0].text == "line 0"
    assert lines[-1].text == "line 4999"
    assert buffer.truncated is False


def test_overflow_evicts_oldest_and_sets_truncated() -> None:
    buffer = OutputBuffer()
    _fill(buffer, MAX_OUTPUT_LINES + 25)

    lines = buffer.snapshot()
    assert len(lines) == 5000
    assert lines[0].text == "line 25"
    assert lines[-1].text == "line 5024"
    assert buffer.truncated is True


def test_truncated_flag_stays_set_until_reset() -> None:
    buffer = OutputBuffer(capacity=2)
    _fill(buffer, 3)
    assert buffer.truncated

    buffer.append(OutputLine.info("more"))
    assert buffer.truncated

    buffer.reset()
    assert buffer.truncated is False
    assert buffer.snapshot() == ()
    assert buffer.total_appended == 0


def test_line_prefixes() -> None:
    assert OutputLine.info("x").display == "  x"
    assert OutputLine.success("x").display == "+ x"
    assert OutputLine.warning("x").display == "! x"
    assert OutputLine.error("x").display == "x x"
    assert OutputLine.running("x").display == "> x"
    assert OutputLine.stderr("x").display == "x"
    assert OutputLine.stderr("x").kind is OutputKind.STDERR


def test_lines_since_returns_only_new_lines() -> None:
    buffer = OutputBuffer()
    _fill(buffer, 3)

    first, seen = buffer.lines_since(0)
    assert [line.text for line in first] == ["line 0", "line 1", "line 2"]

    buffer.append(OutputLine.info("next"))
    second, seen = buffer.lines_since(seen)
    assert [line.text for line in second] == ["next"]

    empty, _ = buffer.lines_since(seen)
    assert empty == ()


def test_lines_since_skips_evicted_lines() -> None:
    buffer = OutputBuffer(capacity=3)
    _fill(buffer, 10)

    lines, seen = buffer.lines_since(2)

    assert [line.text for line in lines] == ["line 7", "line 8", "line 9"]
    assert seen == 10


def test_lines_since_after_reset_starts_over() -> None:
    buffer = OutputBuffer()
    _fill(buffer, 5)
    buffer.reset()
    buffer.append(OutputLine.info("fresh"))

    lines, seen = buffer.lines_since(5)

    assert [line.text for line in lines] == ["fresh"]
    assert seen == 1


def test_listener_sees_each_line_and_can_unsubscribe() -> None:
    buffer = OutputBuffer()
    seen: list[str] = []
    remove = buffer.add_listener(lambda line: seen.append(line.text))

    buffer.append(OutputLine.info("a"))
    remove()
    buffer.append(OutputLine.info("b"))

    assert seen == ["a"]


def test_snapshots_are_consistent_during_concurrent_appends() -> None:
    buffer = OutputBuffer(capacity=500)
    done = threading.Event()

    def writer() -> None:
        for i in range(20000):
            buffer.append(OutputLine.stdout(str(i)))
        done.set()

    thread = threading.Thread(target=writer)
    thread.start()
    while not done.is_set():
        numbers = [int(line.text) for line in buffer.snapshot()]
        assert len(numbers) <= 500
        if numbers:
            assert numbers == list(range(numbers[0], numbers[0] + len(numbers)))
    thread.join()
    assert len(buffer) == 500
