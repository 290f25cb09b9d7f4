"""A source that counts upwards and refuses new reads until earlier ones are acked."""

from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timezone

from numaudf.sourcer import (
    AckRequest,
    Message,
    ReadRequest,
    Sourcer,
    default_partitions,
    new_offset_with_default_partition_id,
)

__all__ = ["SimpleSource"]


def _serialize_offset(index: int) -> bytes:
    return str(index).encode()


def _deserialize_offset(offset: bytes) -> int:
    try:
        return int(offset.decode())
    except (UnicodeDecodeError, ValueError):
        return 0


class SimpleSource(Sourcer):
    """Produces the read index as payload, one message per index."""

    def __init__(self) -> None:
        self._read_index = 0
        self._to_ack: set[int] = set()
        self._lock = threading.Lock()

    def pending(self) -> int:
        """Number of messages read but not yet acknowledged."""
        with self._lock:
            return len(self._to_ack)

    def read(self, request: ReadRequest) -> list[Message]:
        """Read up to ``request.count`` messages within ``request.timeout``.

        Nothing is read while an earlier batch is still unacknowledged.
        """
        deadline = time.monotonic() + request.timeout.total_seconds()
        messages: list[Message] = []
        with self._lock:
            if self._to_ack:
                return messages
        for _ in range(request.count):
            if time.monotonic() >= deadline:
                break
            with self._lock:
                index = self._read_index
                messages.append(
                    Message(
                        value=str(index).encode(),
                        offset=new_offset_with_default_partition_id(_serialize_offset(index)),
                        event_time=datetime.now(timezone.utc),
                    ).with_headers({"x-txn-id": str(uuid.uuid4())})
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