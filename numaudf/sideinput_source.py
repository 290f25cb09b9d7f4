"""A source whose messages are the side input values pushed to it."""

from __future__ import annotations

import queue
import threading
import time
from datetime import datetime, timezone

from numaudf.sourcer import (
    AckRequest,
    Message,
    Offset,
    ReadRequest,
    Sourcer,
    default_partitions,
)

__all__ = ["SideInputSource"]


def _serialize_offset(index: int) -> bytes:
    return str(index).encode()


def _deserialize_offset(offset: bytes) -> int:
    try:
        return int(offset.decode())
    except (UnicodeDecodeError, ValueError):
        return 0


class SideInputSource(Sourcer):
    """Emits side input contents as they arrive, one message per value."""

    def __init__(self) -> None:
        self._values: queue.Queue[str] = queue.Queue()
        self._read_index = 0
        self._to_ack: set[int] = set()
        self._lock = threading.Lock()

    def push(self, value: str) -> None:
        """Hand a new side input value to the source."""
        self._values.put(value)

    def pending(self) -> int:
        """Always zero: no pending information is kept."""
        return 0

    def read(self, request: ReadRequest) -> list[Message]:
        """Read up to ``request.count`` pushed values within ``request.timeout``.

        Nothing is read while an earlier batch is still unacknowledged.
        """
        deadline = time.monotonic() + request.timeout.total_seconds()
        messages: list[Message] = []
        with self._lock:
            if self._to_ack:
                return messages
        for _ in range(request.count):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                value = self._values.get(timeout=remaining)
            except queue.Empty:
                break
            with self._lock:
                index = self._read_index
                messages.append(
                    Message(
                        value=value.encode(),
                        offset=Offset(value=_serialize_offset(index), partition_id=0),
                        event_time=datetime.now(timezone.utc),
                    )
                )
                self._to_ack.add(index)
                self._read_index += 1
        return messages

    def ack(self, request: AckRequest) -> None:
        """Mark the offsets of the request as acknowledged."""
        with self._lock:
            for offset in request.offsets:
                self._to_ack.discard(_deserialize_offset(offset.value))

    def partitions(self) -> list[int]:
        """The default partitions."""
        return default_partitions()