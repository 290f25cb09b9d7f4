from datetime import timedelta

from numaudf.simple_source import SimpleSource
from numaudf.sourcer import AckRequest, ReadRequest, default_partitions


def _read(source, count, seconds=1.0):
    return source.read(ReadRequest(count=count, timeout=timedelta(seconds=seconds)))


def test_read_ack_contract():
    source = SimpleSource()

    first = _read(source, 2)
    assert len(first) == 2

    # The previous batch is not acked, so nothing more is read.
    assert _read(source, 4) == []

    source.ack(AckRequest(offsets=[m.offset for m in first]))

    second = _read(source, 6)
    assert len(second) == 6

    source.ack(AckRequest(offsets=[m.offset for m in second]))
    assert source.pending() == 0


def test_values_follow_read_index():
    source = SimpleSource()
    first = _read(source, 2)
    assert [m.value for m in first] == [b"0", b"1"]
    source.ack(AckRequest(offsets=[m.offset for m in first]))
    second = _read(source, 3)
    assert [m.value for m in second] == [b"2", b"3", b"4"]


def test_pending_counts_unacked_messages():
    source = SimpleSource()
    messages = _read(source, 3)
    assert source.pending() == 3
    source.ack(AckRequest(offsets=[messages[0].offset]))
    assert source.pending() == 2


def test_offsets_use_default_partition_and_match_values():
    source = SimpleSource()
    for message in _read(source, 3):
        assert message.offset.partition_id == default_partitions()[0]
        assert message.offset.value == message.value


def test_headers_carry_distinct_transaction_ids():
    source = SimpleSource()
    ids = [m.headers["x-txn-id"] for m in _read(source, 4)]
    assert len(set(ids)) == 4


def test_zero_timeout_reads_nothing():
    source = SimpleSource()
    assert _read(source, 5, seconds=0) == []
    assert source.pending() == 0


def test_partitions_are_default():
    assert SimpleSource().partitions() == default_partitions()