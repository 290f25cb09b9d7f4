from datetime import datetime, timedelta, timezone

import pytest

from numaudf.sourcer import (
    ADDRESS,
    DEFAULT_MAX_MESSAGE_SIZE,
    SERVER_INFO_FILE_PATH,
    AckFnRequest,
    AckFnResponse,
    AckRequest,
    Message,
    Offset,
    Options,
    PartitionsResponse,
    PendingResponse,
    ReadFnRequest,
    ReadFnResponse,
    ReadRequest,
    ReadResult,
    ReadStatus,
    ReadyResponse,
    Service,
    Sourcer,
    StatusCode,
    default_options,
    default_partitions,
    new_offset_with_default_partition_id,
)
from numaudf.streaming import EndOfStream, Handshake

TEST_EVENT_TIME = datetime(2021, 1, 1, tzinfo=timezone.utc)
TEST_KEY = "test-key"
TEST_PENDING = 123
TEST_PARTITIONS = [1, 3, 5]


class _TestSource(Sourcer):
    def __init__(self):
        self.acked = []
        self.read_requests = []

    def read(self, request):
        self.read_requests.append(request)
        msg = Message(b"test", Offset(), TEST_EVENT_TIME).with_headers(
            {"x-txn-id": "test-txn-id"}
        )
        yield msg.with_keys([TEST_KEY])

    def ack(self, request):
        self.acked.append(request)

    def pending(self):
        return TEST_PENDING

    def partitions(self):
        return TEST_PARTITIONS


class _BrokenSource(Sourcer):
    def read(self, request):
        raise RuntimeError("boom")

    def ack(self, request):
        raise RuntimeError("boom")

    def pending(self):
        raise RuntimeError("boom")

    def partitions(self):
        raise RuntimeError("boom")


class _ListStream:
    def __init__(self, requests):
        self._requests = list(requests)
        self.sent = []

    def recv(self):
        if not self._requests:
            raise EndOfStream()
        item = self._requests.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def send(self, response):
        self.sent.append(response)


class _ErrStream:
    def recv(self):
        raise RuntimeError("recv error")

    def send(self, response):
        raise RuntimeError("send error")


def test_with_max_message_size():
    opts = Options(max_message_size=DEFAULT_MAX_MESSAGE_SIZE)
    opts.max_message_size = 1024 * 1024 * 10
    assert opts.max_message_size == 1024 * 1024 * 10


def test_with_sock_addr():
    opts = Options(sock_addr=ADDRESS)
    opts.sock_addr = "test-socket-address"
    assert opts.sock_addr == "test-socket-address"


def test_with_server_info_file_path():
    opts = Options(server_info_file_path="test-server-info-file-path")
    assert opts.server_info_file_path == "test-server-info-file-path"


def test_default_options():
    opts = default_options()
    assert opts == Options(
        sock_addr="/var/run/numaflow/source.sock",
        max_message_size=64 * 1024 * 1024,
        server_info_file_path=SERVER_INFO_FILE_PATH,
    )


def test_default_partition_offset_matches_default_partitions():
    offset = new_offset_with_default_partition_id(b"7")
    assert offset.value == b"7"
    assert default_partitions() == [offset.partition_id]


def test_message_builders_return_copies():
    base = Message(b"v", Offset(b"1", 2), TEST_EVENT_TIME)
    keyed = base.with_keys(["a"]).with_headers({"h": "x"})
    assert keyed.keys == ["a"]
    assert keyed.headers == {"h": "x"}
    assert base.keys == []
    assert keyed.offset == Offset(b"1", 2)


def test_is_ready():
    assert Service(None).is_ready() == ReadyResponse(ready=True)


def test_read_fn_read_msg():
    source = _TestSource()
    stream = _ListStream(
        [
            ReadFnRequest(handshake=Handshake(sot=True)),
            ReadFnRequest(num_records=1, timeout_in_ms=1000),
        ]
    )
    Service(source).read_fn(stream)
    assert stream.sent == [
        ReadFnResponse(
            status=ReadStatus(eot=False, code=StatusCode.SUCCESS),
            handshake=Handshake(sot=True),
        ),
        ReadFnResponse(
            result=ReadResult(
                payload=b"test",
                offset=Offset(),
                event_time=TEST_EVENT_TIME,
                keys=[TEST_KEY],
                headers={"x-txn-id": "test-txn-id"},
            ),
            status=ReadStatus(eot=False, code=StatusCode.SUCCESS),
        ),
        ReadFnResponse(status=ReadStatus(eot=True, code=StatusCode.SUCCESS)),
    ]
    assert source.read_requests == [ReadRequest(count=1, timeout=timedelta(seconds=1))]


def test_read_fn_err():
    with pytest.raises(RuntimeError, match="recv error"):
        Service(_TestSource()).read_fn(_ErrStream())


def test_read_fn_rejects_missing_handshake():
    stream = _ListStream([ReadFnRequest(num_records=1)])
    with pytest.raises(ValueError, match="expected handshake message"):
        Service(_TestSource()).read_fn(stream)
    assert stream.sent == []


def test_read_fn_receive_error_signals_shutdown():
    service = Service(_TestSource())
    stream = _ListStream([ReadFnRequest(handshake=Handshake(sot=True)), OSError("lost")])
    with pytest.raises(OSError, match="lost"):
        service.read_fn(stream)
    assert service.shutdown.is_set()


def test_ack_fn():
    source = _TestSource()
    stream = _ListStream(
        [
            AckFnRequest(handshake=Handshake(sot=True)),
            AckFnRequest(offsets=[Offset(value=b"test", partition_id=0)]),
        ]
    )
    Service(source).ack_fn(stream)
    assert stream.sent == [
        AckFnResponse(success=True, handshake=Handshake(sot=True)),
        AckFnResponse(success=True),
    ]
    assert source.acked == [AckRequest(offsets=[Offset(b"test", 0)])]


def test_ack_fn_source_failure_signals_shutdown():
    service = Service(_BrokenSource())
    stream = _ListStream(
        [AckFnRequest(handshake=Handshake(sot=True)), AckFnRequest(offsets=[Offset(b"1")])]
    )
    with pytest.raises(RuntimeError, match="panic inside source handler"):
        service.ack_fn(stream)
    assert service.shutdown.is_set()


def test_pending_fn():
    assert Service(_TestSource()).pending_fn() == PendingResponse(count=TEST_PENDING)


def test_partitions_fn():
    assert Service(_TestSource()).partitions_fn() == PartitionsResponse(
        partitions=TEST_PARTITIONS
    )


def test_unary_failures_signal_shutdown():
    service = Service(_BrokenSource())
    assert service.pending_fn() is None
    assert service.shutdown.is_set()
    other = Service(_BrokenSource())
    assert other.partitions_fn() is None
    assert other.shutdown.is_set()