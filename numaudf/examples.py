"""Small ready-made sinks, side input retrievers and transformers."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from numaudf.sideinput import (
    Message as SideInputMessage,
    SideInputRetriever,
    broadcast_message,
    no_broadcast_message,
)
from numaudf.sinker import Datum as SinkDatum
from numaudf.sinker import Response, Sinker, response_fallback, response_ok
from numaudf.sourcetransformer import Datum as TransformDatum
from numaudf.sourcetransformer import Message as TransformMessage
from numaudf.sourcetransformer import SourceTransformer

__all__ = [
    "AssignEventTime",
    "CounterRetriever",
    "E2EEvenOddRetriever",
    "EvenOddRetriever",
    "FallbackSink",
    "LogSink",
    "TimestampRetriever",
]

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _text(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class LogSink(Sinker):
    """Prints each datum to standard output and reports it as written."""

    def sink(self, datums: Iterable[SinkDatum]) -> list[Response]:
        responses = []
        for datum in datums:
            print("User Defined Sink:", _text(datum.value))
            responses.append(response_ok(datum.id))
        return responses


class FallbackSink(Sinker):
    """Routes every datum to the fallback sink."""

    def sink(self, datums: Iterable[SinkDatum]) -> list[Response]:
        responses = []
        for datum in datums:
            print("Primary sink under maintenance, writing to fallback sink - ", _text(datum.value))
            responses.append(response_fallback(datum.id))
        return responses


class _Counting:
    def __init__(self, modulus: Optional[int] = None) -> None:
        self._counter = 0
        self._modulus = modulus
        self._lock = threading.Lock()

    def _next(self) -> int:
        with self._lock:
            self._counter += 1
            if self._modulus is not None:
                self._counter %= self._modulus
            return self._counter


class EvenOddRetriever(_Counting, SideInputRetriever):
    """Broadcasts "odd" and "even" in turn."""

    def retrieve_side_input(self) -> SideInputMessage:
        if self._next() % 2 == 0:
            return broadcast_message(b"even")
        return broadcast_message(b"odd")


class CounterRetriever(_Counting, SideInputRetriever):
    """Broadcasts the number of retrievals so far."""

    def retrieve_side_input(self) -> SideInputMessage:
        return broadcast_message(str(self._next()).encode())


class E2EEvenOddRetriever(_Counting, SideInputRetriever):
    """Broadcasts "e2e-odd" and "e2e-even" in turn."""

    def __init__(self) -> None:
        super().__init__(modulus=10)

    def retrieve_side_input(self) -> SideInputMessage:
        if self._next() % 2 == 0:
            return broadcast_message(b"e2e-even")
        return broadcast_message(b"e2e-odd")


class TimestampRetriever(_Counting, SideInputRetriever):
    """Broadcasts the current time on every other retrieval and drops the rest."""

    def __init__(self, clock: Clock = _local_now) -> None:
        super().__init__(modulus=10)
        self._clock = clock

    def retrieve_side_input(self) -> SideInputMessage:
        value = "an example: " + str(self._clock())
        if self._next() % 2 == 0:
            return no_broadcast_message()
        return broadcast_message(value.encode())


class AssignEventTime(SourceTransformer):
    """Sets the event time of every message to the current time."""

    def __init__(self, clock: Clock = _utc_now) -> None:
        self._clock = clock

    def transform(self, keys: list[str], datum: TransformDatum) -> list[TransformMessage]:
        event_time = self._clock()
        logger.info(
            "AssignEventTime: Assigning event time %s to message %s",
            event_time,
            _text(datum.value),
        )
        return [TransformMessage(value=datum.value, event_time=event_time).with_keys(keys)]