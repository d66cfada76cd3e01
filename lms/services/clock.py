from __future__ import annotations

import datetime
from collections.abc import Callable

Clock = Callable[[], int]


def utc_now() -> int:
    """Current time as integer epoch seconds, the timestamp unit of every row."""
    return int(datetime.datetime.now(datetime.UTC).timestamp())
