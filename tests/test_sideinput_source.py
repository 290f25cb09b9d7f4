import threading
from datetime import timedelta

from numaudf.sideinput_source import SideInputSource
from numaudf.sourcer import AckRequest, ReadRequest, default_partitions


def _request(count, seconds=1.0):
    return ReadRequest(count=count, timeout=timedelta(seconds=seconds))


def _read_in_thread(source, request):
    result = {}

    def run():
        result["messages"] = source.read(request)

    thread = threading.Thread(target=run)
    thread.start()
    return thread, result


def test_read_ack_contract():
    source = SideInputSource()

    thread, result = _read_in_thread(source, _request(2))
    source.push("test_data_1")
    source.push("test_data_2")
    thread.join(timeout=5)
    first = result["messages"]
    assert len(first) == 2

    # Unacked batch blocks further reads.
    assert source.read(_request(4)) == []

    assert first[0].value == b"test_data_1"
    assert first[1].value == b"test_data_2"
    source.ack(AckRequest(offsets=[first[0].offset, first[1].offset]))

    thread, result = _read_in_thread(source, _request(6))
    for i in range(1, 7):
        source.push(f"test_data_{i}")
    thread.join(timeout=5)
    second = result["messages"]
    assert len(second) == 6
    assert [m.value for m in second] == [f"test_data_{i}".encode() for i in range(1, 7)]

    source.ack(AckRequest(offsets=[m.offset for m in second]))
    assert source.read(_request(1, seconds=0.05)) == []


def test_values_pushed_before_read_are_delivered():
    source = SideInputSource()
    source.push("a")
    source.push("b")
    messages = source.read(_request(5, seconds=0.1))
    assert [m.value for m in messages] == [b"a", b"b"]


def test_timeout_without_values_returns_empty():
    source = SideInputSource()
    assert source.read(_request(3, seconds=0.05)) == []


def test_offsets_are_sequential_in_partition_zero():
    source = SideInputSource()
    for value in ("x", "y", "z"):
        source.push(value)
    messages = source.read(_request(3))
    assert [m.offset.value for m in messages] == [b"0", b"1", b"2"]
    assert {m.offset.partition_id for m in messages} == {0}


def test_pending_and_partitions():
    source = SideInputSource()
    source.push("v")
    source.read(_request(1))
    assert source.pending() == 0
    assert source.partitions() == default_partitions()