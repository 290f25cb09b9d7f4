"""Transform that drops old messages and snaps event times to the start of a year."""

from __future__ import annotations

from datetime import datetime, timezone

from numaudf.sourcetransformer import Datum, Message, message_to_drop

__all__ = ["filter_event_time"]

_JAN_FIRST_2022 = datetime(2022, 1, 1, tzinfo=timezone.utc)
_JAN_FIRST_2023 = datetime(2023, 1, 1, tzinfo=timezone.utc)


def filter_event_time(keys: list[str], datum: Datum) -> list[Message]:
    """Drop data before 2022; tag and re-time data from 2022 and from later years."""
    if datum.event_time < _JAN_FIRST_2022:
        return [message_to_drop(datum.event_time)]
    if datum.event_time < _JAN_FIRST_2023:
        return [Message(value=datum.value, event_time=_JAN_FIRST_2022).with_tags(["within_year_2022"])]
    return [Message(value=datum.value, event_time=_JAN_FIRST_2023).with_tags(["after_year_2022"])]