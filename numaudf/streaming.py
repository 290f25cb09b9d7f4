"""Blocking bidirectional stream primitives shared by the streaming services."""

from __future__ import annotations

import queue
import threading
from concurrent.futures import CancelledError
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

__all__ = ["CancelledError", "EndOfStream", "Handshake", "ServerStream", "receive"]

_POLL_INTERVAL = 0.01


class EndOfStream(Exception):
    """Raised by ``ServerStream.recv`` when the client has closed its side."""


@dataclass(frozen=True)
class Handshake:
    """Start-of-transmission marker exchanged before any data flows."""

    sot: bool = False


@runtime_checkable
class ServerStream(Protocol):
    """Server side of a bidirectional stream.

    A stream may also carry a ``cancelled`` attribute holding a
    ``threading.Event``; the services stop receiving once it is set.
    """

    def recv(self) -> Any:
        """Return the next request, raising ``EndOfStream`` when none remain."""
        ...

    def send(self, response: Any) -> None:
        """Deliver one response to the client."""
        ...


def receive(stream: ServerStream, cancelled: threading.Event | None = None) -> Any:
    """Receive one request from ``stream``, giving up once ``cancelled`` is set.

    Without an event this is a plain ``stream.recv()``. With one, the receive
    runs on a helper thread and ``CancelledError`` is raised as soon as the
    event is set, even while the stream is still blocked.
    """
    if cancelled is None:
        return stream.recv()
    if cancelled.is_set():
        raise CancelledError("receive cancelled")

    outcome: queue.Queue[tuple[bool, Any]] = queue.Queue(maxsize=1)

    def worker() -> None:
        try:
            outcome.put((True, stream.recv()))
        except BaseException as exc:  # handed back to the caller below
            outcome.put((False, exc))

    threading.Thread(target=worker, daemon=True).start()
    while True:
        try:
            ok, value = outcome.get(timeout=_POLL_INTERVAL)
        except queue.Empty:
            if cancelled.is_set():
                raise CancelledError("receive cancelled") from None
            continue
        if ok:
            return value
        raise value