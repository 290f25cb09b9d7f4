"""User-defined sources: messages, offsets, the sourcer interface and the service."""

from __future__ import annotations

import enum
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from numaudf import sideinput
from numaudf.sideinput import DEFAULT_MAX_MESSAGE_SIZE as DEFAULT_MAX_MESSAGE_SIZE
from numaudf.sideinput import UDS as UDS
from numaudf.sideinput import _BaseService
from numaudf.streaming import CancelledError, EndOfStream, Handshake, ServerStream, receive

logger = logging.getLogger(__name__)

ADDRESS = "/var/run/numaflow/source.sock"
SERVER_INFO_FILE_PATH = "/var/run/numaflow/sourcer-server-info"
ENV_REPLICA = "NUMAFLOW_REPLICA"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _parse_replica(raw: Optional[str]) -> int:
    """Parse the replica index strictly as a decimal integer, defaulting to 0."""
    if raw is None or not re.fullmatch(r"[+-]?[0-9]+", raw):
        return 0
    return int(raw)


_DEFAULT_PARTITION_ID = _parse_replica(os.environ.get(ENV_REPLICA))


@dataclass(frozen=True)
class Offset:
    """Position of a message within a partition of the source."""

    value: bytes = b""
    partition_id: int = 0


def default_partitions() -> list[int]:
    """Partitions of a source without partitions: the pod replica index alone."""
    return [_DEFAULT_PARTITION_ID]


def new_offset_with_default_partition_id(value: bytes) -> Offset:
    """An offset in the default partition."""
    return Offset(value=value, partition_id=default_partitions()[0])


@dataclass(frozen=True)
class Message:
    """One message produced by a source."""

    value: bytes
    offset: Offset
    event_time: datetime
    keys: list[str] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)

    def with_keys(self, keys: list[str]) -> Message:
        """A copy of the message carrying ``keys``."""
        return replace(self, keys=keys)

    def with_headers(self, headers: dict[str, str]) -> Message:
        """A copy of the message carrying ``headers``."""
        return replace(self, headers=headers)


@dataclass(frozen=True)
class ReadRequest:
    """How many records to read and how long to wait for them."""

    count: int
    timeout: timedelta


@dataclass(frozen=True)
class AckRequest:
    """Offsets to acknowledge."""

    offsets: list[Offset] = field(default_factory=list)


class Sourcer(ABC):
    """A data source that can be read, acknowledged and inspected."""

    @abstractmethod
    def read(self, request: ReadRequest) -> Iterable[Message]:
        """Yield up to ``request.count`` messages, giving up after the timeout."""

    @abstractmethod
    def ack(self, request: AckRequest) -> None:
        """Acknowledge the offsets of the request."""

    @abstractmethod
    def pending(self) -> int:
        """Number of pending messages; negative when unknown."""

    @abstractmethod
    def partitions(self) -> list[int]:
        """Partitions the source reads from."""


class StatusCode(enum.IntEnum):
    SUCCESS = 0
    FAILURE = 1


@dataclass(frozen=True)
class ReadStatus:
    eot: bool = False
    code: StatusCode = StatusCode.SUCCESS


@dataclass(frozen=True)
class ReadResult:
    payload: bytes
    offset: Offset
    event_time: datetime = _EPOCH
    keys: list[str] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ReadFnRequest:
    num_records: int = 0
    timeout_in_ms: int = 0
    handshake: Optional[Handshake] = None


@dataclass(frozen=True)
class ReadFnResponse:
    result: Optional[ReadResult] = None
    status: Optional[ReadStatus] = None
    handshake: Optional[Handshake] = None


@dataclass(frozen=True)
class AckFnRequest:
    offsets: list[Offset] = field(default_factory=list)
    handshake: Optional[Handshake] = None


@dataclass(frozen=True)
class AckFnResponse:
    success: bool = True
    handshake: Optional[Handshake] = None


@dataclass(frozen=True)
class PendingResponse:
    count: int


@dataclass(frozen=True)
class PartitionsResponse:
    partitions: list[int]


@dataclass(frozen=True)
class ReadyResponse:
    ready: bool


@dataclass
class Options(sideinput.Options):
    """Source server settings."""

    sock_addr: str = ADDRESS
    server_info_file_path: str = SERVER_INFO_FILE_PATH


def default_options() -> Options:
    """Return the source server's default settings."""
    return Options()


def _receive_request(
    stream: ServerStream, cancelled: Optional[threading.Event], kind: str
) -> Any:
    """Receive the next request, logging how the ``kind`` stream ended if it did."""
    try:
        return receive(stream, cancelled)
    except EndOfStream:
        logger.info("end of %s stream", kind)
        raise
    except Exception as exc:
        logger.error("error receiving from %s stream: %s", kind, exc)
        raise


class Service(_BaseService):
    """Serves read, ack, pending and partitions requests for a source."""

    def __init__(
        self,
        source: Optional[Sourcer],
        shutdown: Optional[threading.Event] = None,
    ) -> None:
        super().__init__(shutdown)
        self.source = source

    def is_ready(self) -> ReadyResponse:
        """Report that the service is ready."""
        return ReadyResponse(ready=True)

    # -- read -------------------------------------------------------------

    def read_fn(self, stream: ServerStream) -> None:
        """Handshake, then answer read requests until the client closes the stream.

        Failures other than the end of the stream signal shutdown and are
        raised again.
        """
        self._accept_handshake(
            stream,
            ReadFnResponse(
                status=ReadStatus(eot=False, code=StatusCode.SUCCESS),
                handshake=Handshake(sot=True),
            ),
        )
        cancelled = getattr(stream, "cancelled", None)
        while True:
            try:
                self._handle_read_request(stream, cancelled)
            except EndOfStream:
                return
            except Exception as exc:
                logger.error("error processing requests: %s", exc)
                self.shutdown.set()
                raise

    def _handle_read_request(
        self, stream: ServerStream, cancelled: Optional[threading.Event]
    ) -> None:
        request = _receive_request(stream, cancelled, "read")
        read_request = ReadRequest(
            count=request.num_records,
            timeout=timedelta(milliseconds=request.timeout_in_ms),
        )
        messages = iter(self.source.read(read_request))
        while True:
            try:
                message = next(messages)
            except StopIteration:
                break
            except Exception as exc:
                logger.exception("panic inside source handler")
                raise RuntimeError(f"panic inside source handler: {exc}") from exc
            if cancelled is not None and cancelled.is_set():
                raise CancelledError("read cancelled")
            stream.send(
                ReadFnResponse(
                    result=ReadResult(
                        payload=message.value,
                        offset=message.offset,
                        event_time=message.event_time,
                        keys=message.keys,
                        headers=message.headers,
                    ),
                    status=ReadStatus(eot=False, code=StatusCode.SUCCESS),
                )
            )
        stream.send(ReadFnResponse(status=ReadStatus(eot=True, code=StatusCode.SUCCESS)))

    # -- ack --------------------------------------------------------------

    def ack_fn(self, stream: ServerStream) -> None:
        """Handshake, then acknowledge offsets until the client closes the stream."""
        self._accept_handshake(stream, AckFnResponse(success=True, handshake=Handshake(sot=True)))
        cancelled = getattr(stream, "cancelled", None)
        while True:
            try:
                self._handle_ack_request(stream, cancelled)
            except EndOfStream:
                return

    def _handle_ack_request(
        self, stream: ServerStream, cancelled: Optional[threading.Event]
    ) -> None:
        request = _receive_request(stream, cancelled, "ack")
        offsets = [
            Offset(value=offset.value, partition_id=offset.partition_id)
            for offset in request.offsets
        ]
        try:
            self.source.ack(AckRequest(offsets=offsets))
        except Exception as exc:
            logger.exception("panic inside source handler")
            self.shutdown.set()
            raise RuntimeError(f"panic inside source handler: {exc}") from exc

        try:
            stream.send(AckFnResponse(success=True))
        except Exception as exc:
            logger.error("error sending ack response: %s", exc)
            raise

    # -- unary ------------------------------------------------------------

    def pending_fn(self) -> Optional[PendingResponse]:
        """Number of pending messages; ``None`` and shutdown if the source fails."""
        try:
            return PendingResponse(count=self.source.pending())
        except Exception:
            logger.exception("panic inside sourcer handler")
            self.shutdown.set()
            return None

    def partitions_fn(self) -> Optional[PartitionsResponse]:
        """Partitions of the source; ``None`` and shutdown if the source fails."""
        try:
            return PartitionsResponse(partitions=self.source.partitions())
        except Exception:
            logger.exception("panic inside source handler")
            self.shutdown.set()
            return None