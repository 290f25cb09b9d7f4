"""Source transformers: assign new event times and transform messages at the source.

A transform combines a map with event-time assignment. The incoming datum
already carries an event time and a watermark; the transformer decides
whether to use them when producing new event times.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union

from numaudf.streaming import CancelledError, EndOfStream, Handshake, ServerStream, receive

logger = logging.getLogger(__name__)

UDS = "unix"
DEFAULT_MAX_MESSAGE_SIZE = 1024 * 1024 * 64
ADDRESS = "/var/run/numaflow/sourcetransform.sock"
SERVER_INFO_FILE_PATH = "/var/run/numaflow/sourcetransformer-server-info"

DROP = "U+005C__DROP__"
ERR_TRANSFORMER_PANIC = "transformer function panicked"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_RESPONSE_BUFFER = 500
_POLL_INTERVAL = 0.01
_STOP = object()


@dataclass(frozen=True)
class Datum:
    """Payload handed to the transformer."""

    value: bytes
    event_time: datetime = _EPOCH
    watermark: datetime = _EPOCH
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """One output of a transform, with the event time it is assigned."""

    value: bytes
    event_time: datetime
    keys: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def with_keys(self, keys: list[str]) -> Message:
        """A copy of the message carrying ``keys``."""
        return replace(self, keys=keys)

    def with_tags(self, tags: list[str]) -> Message:
        """A copy of the message carrying ``tags``, used for conditional forwarding."""
        return replace(self, tags=tags)


def message_to_drop(event_time: datetime) -> Message:
    """A message to be dropped.

    The event time is still required: a dropped message counts as processed,
    so the watermark moves on with it.
    """
    return Message(value=b"", event_time=event_time, tags=[DROP])


class SourceTransformer(ABC):
    """Transforms each incoming message into zero or more messages."""

    @abstractmethod
    def transform(self, keys: list[str], datum: Datum) -> list[Message]:
        """Return the messages produced for one datum."""


TransformerLike = Union[SourceTransformer, Callable[[list[str], Datum], Iterable[Message]]]


class StatusCode(enum.IntEnum):
    OK = 0
    INVALID_ARGUMENT = 3
    INTERNAL = 13


class TransformError(Exception):
    """Failure of the transform stream, carrying a status code."""

    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class TransformRequestPayload:
    keys: list[str] = field(default_factory=list)
    value: bytes = b""
    event_time: datetime = _EPOCH
    watermark: datetime = _EPOCH
    headers: dict[str, str] = field(default_factory=dict)
    id: str = ""


@dataclass(frozen=True)
class TransformRequest:
    request: Optional[TransformRequestPayload] = None
    handshake: Optional[Handshake] = None


@dataclass(frozen=True)
class TransformResult:
    keys: list[str]
    value: bytes
    tags: list[str]
    event_time: datetime


@dataclass(frozen=True)
class TransformResponse:
    results: list[TransformResult] = field(default_factory=list)
    id: str = ""
    handshake: Optional[Handshake] = None


@dataclass(frozen=True)
class ReadyResponse:
    ready: bool


@dataclass
class Options:
    """Server settings."""

    sock_addr: str = ADDRESS
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    server_info_file_path: str = SERVER_INFO_FILE_PATH


def default_options() -> Options:
    """Return the default server settings."""
    return Options()


class _Group:
    """Shared cancellation and first-error record for the workers of one stream."""

    def __init__(self) -> None:
        self.cancelled = threading.Event()
        self.error: Optional[BaseException] = None
        self._lock = threading.Lock()

    def fail(self, exc: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = exc
        self.cancelled.set()


class Service:
    """Runs the transformer over a bidirectional stream of requests."""

    def __init__(
        self,
        transformer: Optional[TransformerLike],
        shutdown: Optional[threading.Event] = None,
    ) -> None:
        self.transformer = transformer
        self.shutdown = shutdown if shutdown is not None else threading.Event()

    def is_ready(self) -> ReadyResponse:
        """Report that the service is ready."""
        return ReadyResponse(ready=True)

    def source_transform_fn(self, stream: ServerStream) -> None:
        """Handshake, then transform every request concurrently until the stream ends.

        Responses are sent as their transforms finish, so their order may
        differ from that of the requests. Failures are raised as
        ``TransformError``.
        """
        self._perform_handshake(stream)

        outer = getattr(stream, "cancelled", None)
        group = _Group()
        responses: queue.Queue = queue.Queue(maxsize=_RESPONSE_BUFFER)
        sender = threading.Thread(
            target=self._send_responses, args=(stream, responses, group, outer), daemon=True
        )
        sender.start()

        read_error: Optional[Exception] = None
        with ThreadPoolExecutor() as pool:
            while True:
                try:
                    request = receive(stream, group.cancelled)
                except CancelledError:
                    logger.info("Context cancelled, stopping the SourceTransformFn")
                    break
                except EndOfStream:
                    logger.info("EOF received, stopping the SourceTransformFn")
                    break
                except Exception as exc:
                    logger.error("Failed to receive request: %s", exc)
                    read_error = exc
                    group.cancelled.set()
                    break
                pool.submit(self._run_request, request, responses, group)

        if not group.cancelled.is_set():
            responses.put(_STOP)
        sender.join()

        if group.error is not None:
            logger.error("Stopping the SourceTransformFn with err, %s", group.error)
            self.shutdown.set()
            raise TransformError(StatusCode.INTERNAL, str(group.error)) from group.error
        if read_error is not None:
            raise TransformError(StatusCode.INTERNAL, str(read_error)) from read_error

    def _perform_handshake(self, stream: ServerStream) -> None:
        try:
            request = stream.recv()
        except Exception as exc:
            raise TransformError(
                StatusCode.INTERNAL, f"failed to receive handshake: {exc}"
            ) from exc
        handshake = getattr(request, "handshake", None)
        if handshake is None or not handshake.sot:
            raise TransformError(StatusCode.INVALID_ARGUMENT, "invalid handshake")
        try:
            stream.send(TransformResponse(handshake=Handshake(sot=True)))
        except Exception as exc:
            raise RuntimeError(
                f"sending handshake response to client over stream: {exc}"
            ) from exc

    @staticmethod
    def _send_responses(
        stream: ServerStream,
        responses: queue.Queue,
        group: _Group,
        outer: Optional[threading.Event],
    ) -> None:
        while True:
            try:
                item = responses.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if group.cancelled.is_set():
                    return
                if outer is not None and outer.is_set():
                    group.fail(CancelledError("context canceled"))
                    return
                continue
            if item is _STOP:
                return
            try:
                stream.send(item)
            except Exception as exc:
                logger.error("Failed to send response: %s", exc)
                group.fail(RuntimeError(f"failed to send response to client: {exc}"))
                return

    def _run_request(
        self, request: TransformRequest, responses: queue.Queue, group: _Group
    ) -> None:
        try:
            self._handle_request(request, responses, group)
        except Exception as exc:
            group.fail(exc)

    def _handle_request(
        self, request: TransformRequest, responses: queue.Queue, group: _Group
    ) -> None:
        payload = request.request if request.request is not None else TransformRequestPayload()
        datum = Datum(
            value=payload.value,
            event_time=payload.event_time,
            watermark=payload.watermark,
            headers=payload.headers,
        )
        transform = getattr(self.transformer, "transform", self.transformer)
        try:
            messages = list(transform(payload.keys, datum))
        except Exception:
            logger.exception("panic inside handler")
            raise RuntimeError(ERR_TRANSFORMER_PANIC) from None

        response = TransformResponse(
            results=[
                TransformResult(
                    keys=m.keys, value=m.value, tags=m.tags, event_time=m.event_time
                )
                for m in messages
            ],
            id=payload.id,
        )
        while True:
            try:
                responses.put(response, timeout=_POLL_INTERVAL)
                return
            except queue.Full:
                if group.cancelled.is_set():
                    raise CancelledError("context canceled") from None