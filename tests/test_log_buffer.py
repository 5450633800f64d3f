from datetime import datetime

import pytest

from node_keeper.log_buffer import DEFAULT_CAPACITY, LogBuffer


def test_default_capacity_is_1000():
    assert LogBuffer().capacity == DEFAULT_CAPACITY == 1000


def test_1001st_line_evicts_the_oldest():
    buf = LogBuffer()
    for i in range(1001):
        buf.append(f"line {i}")

    lines = buf.lines()
    assert len(lines) == 1000
    assert lines[0].text == "line 1"
    assert lines[-1].text == "line 1000"


def test_clear_empties_regardless_of_size():
    buf = LogBuffer(capacity=5)
    for i in range(12):
        buf.append(str(i))
    buf.clear()

    assert len(buf) == 0
    assert buf.text() == ""


def test_lines_keep_insertion_order_and_timestamp():
    buf = LogBuffer()
    stamp = datetime(2024, 5, 1, 12, 30, 0)
    buf.append("first", timestamp=stamp)
    buf.append("second\n")

    first, second = buf.lines()
    assert first.timestamp == stamp
    assert second.text == "second"
    assert second.timestamp.tzinfo is not None


def test_text_renders_one_line_per_entry():
    buf = LogBuffer()
    buf.append("STDOUT: ready", timestamp=datetime(2024, 5, 1, 12, 30, 0))

    assert buf.text() == "[2024-05-01 12:30:00] STDOUT: ready\n"


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        LogBuffer(capacity=0)
