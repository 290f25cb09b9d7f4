"""User-defined sinks: datum, responses, the sinker interface and the service."""

from __future__ import annotations

import enum
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Optional, Union

from numaudf import sideinput
from numaudf.sideinput import DEFAULT_MAX_MESSAGE_SIZE as DEFAULT_MAX_MESSAGE_SIZE
from numaudf.sideinput import UDS as UDS
from numaudf.sideinput import _BaseService
from numaudf.streaming import EndOfStream, Handshake, ServerStream, receive

logger = logging.getLogger(__name__)

ADDRESS = "/var/run/numaflow/sink.sock"
FB_ADDRESS = "/var/run/numaflow/fb-sink.sock"
SERVER_INFO_FILE_PATH = "/var/run/numaflow/sinker-server-info"
FB_SERVER_INFO_FILE_PATH = "/var/run/numaflow/fb-sinker-server-info"
ENV_UD_CONTAINER_TYPE = "NUMAFLOW_UD_CONTAINER_TYPE"
UD_CONTAINER_FALLBACK_SINK = "fb-udsink"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Datum:
    """One incoming message handed to the sink."""

    id: str
    value: bytes
    keys: list[str] = field(default_factory=list)
    event_time: datetime = _EPOCH
    watermark: datetime = _EPOCH
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Response:
    """Processing result for one datum."""

    id: str
    success: bool = False
    err: str = ""
    fallback: bool = False


def response_ok(id: str) -> Response:
    """A successful response for the given datum id."""
    return Response(id=id, success=True)


def response_failure(id: str, err_msg: str) -> Response:
    """A failed response carrying an error message."""
    return Response(id=id, success=False, err=err_msg)


def response_fallback(id: str) -> Response:
    """A response routing the datum to the fallback sink."""
    return Response(id=id, fallback=True)


class Sinker(ABC):
    """Writes a batch of datums somewhere and reports per-datum results."""

    @abstractmethod
    def sink(self, datums: Iterable[Datum]) -> list[Response]:
        """Consume the datums of one batch and return their responses."""


SinkerLike = Union[Sinker, Callable[[Iterable[Datum]], Iterable[Response]]]


class Status(enum.IntEnum):
    SUCCESS = 0
    FAILURE = 1
    FALLBACK = 2


@dataclass(frozen=True)
class SinkDatumRequest:
    id: str = ""
    keys: list[str] = field(default_factory=list)
    value: bytes = b""
    event_time: datetime = _EPOCH
    watermark: datetime = _EPOCH
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TransmissionStatus:
    eot: bool = False


@dataclass(frozen=True)
class SinkRequest:
    request: Optional[SinkDatumRequest] = None
    status: Optional[TransmissionStatus] = None
    handshake: Optional[Handshake] = None


@dataclass(frozen=True)
class SinkResult:
    id: str
    status: Status
    err_msg: str = ""


@dataclass(frozen=True)
class SinkResponse:
    results: list[SinkResult] = field(default_factory=list)
    handshake: Optional[Handshake] = None
    status: Optional[TransmissionStatus] = None


@dataclass(frozen=True)
class ReadyResponse:
    ready: bool


@dataclass
class Options(sideinput.Options):
    """Sink server settings."""

    sock_addr: str = ADDRESS
    server_info_file_path: str = SERVER_INFO_FILE_PATH


def default_options() -> Options:
    """Return default settings; a fallback sink container gets its own paths."""
    if os.environ.get(ENV_UD_CONTAINER_TYPE) == UD_CONTAINER_FALLBACK_SINK:
        return Options(sock_addr=FB_ADDRESS, server_info_file_path=FB_SERVER_INFO_FILE_PATH)
    return Options()


def _to_datum(request: Optional[SinkDatumRequest]) -> Datum:
    payload = request if request is not None else SinkDatumRequest()
    return Datum(
        id=payload.id,
        value=payload.value,
        keys=payload.keys,
        event_time=payload.event_time,
        watermark=payload.watermark,
        headers=payload.headers,
    )


def _to_result(response: Response) -> SinkResult:
    if response.fallback:
        return SinkResult(id=response.id, status=Status.FALLBACK)
    if response.success:
        return SinkResult(id=response.id, status=Status.SUCCESS)
    return SinkResult(id=response.id, status=Status.FAILURE, err_msg=response.err)


class _Batch:
    """Datums of one batch, read lazily from the stream until end of transmission."""

    def __init__(self, stream: ServerStream, cancelled: Optional[threading.Event]) -> None:
        self._stream = stream
        self._cancelled = cancelled
        self._done = False
        self.error: Optional[Exception] = None

    def __iter__(self) -> Iterator[Datum]:
        while not self._done:
            try:
                request = receive(self._stream, self._cancelled)
            except Exception as exc:
                if isinstance(exc, EndOfStream):
                    logger.info("end of sink stream")
                else:
                    logger.error("error receiving from sink stream: %s", exc)
                self.error = exc
                self._done = True
                return
            if request.status is not None and request.status.eot:
                self._done = True
                return
            yield _to_datum(request.request)

    def drain(self) -> int:
        """Consume the datums the sink left unread; return how many were skipped."""
        skipped = sum(1 for _ in self)
        if skipped:
            logger.warning("sink left %d datums of the batch unread", skipped)
        return skipped


class Service(_BaseService):
    """Runs the sink over a bidirectional stream of batches."""

    def __init__(
        self,
        sinker: Optional[SinkerLike],
        shutdown: Optional[threading.Event] = None,
    ) -> None:
        super().__init__(shutdown)
        self.sinker = sinker

    def is_ready(self) -> ReadyResponse:
        """Report that the service is ready."""
        return ReadyResponse(ready=True)

    def sink_fn(self, stream: ServerStream) -> None:
        """Handshake, then process batches until the client closes the stream.

        Any failure other than the end of the stream signals shutdown and is
        raised again.
        """
        self._accept_handshake(stream, SinkResponse(handshake=Handshake(sot=True)))
        cancelled = getattr(stream, "cancelled", None)
        try:
            while self._process_batch(stream, cancelled):
                pass
        except Exception as exc:
            logger.error("Stopping the SinkFn with err, %s", exc)
            self.shutdown.set()
            raise
        logger.info("Stopping the SinkFn")

    def _process_batch(self, stream: ServerStream, cancelled: Optional[threading.Event]) -> bool:
        """Handle one batch; return False once the stream has ended."""
        batch = _Batch(stream, cancelled)
        sink = getattr(self.sinker, "sink", self.sinker)
        try:
            responses = list(sink(batch))
        except Exception as exc:
            logger.exception("panic inside sink handler")
            raise RuntimeError(f"panic inside sink handler: {exc}") from exc
        batch.drain()
        if batch.error is not None and not isinstance(batch.error, EndOfStream):
            raise batch.error

        try:
            stream.send(SinkResponse(results=[_to_result(r) for r in responses]))
        except Exception as exc:
            logger.error("error sending sink response: %s", exc)
            raise
        if batch.error is not None:
            return False
        try:
            stream.send(SinkResponse(status=TransmissionStatus(eot=True)))
        except Exception as exc:
            logger.error("error sending end of transmission message: %s", exc)
            raise
        return True