"""Clock abstraction for testable time.

WallClock: real wall-clock time
FixedClock: pinned time for tests and replays

Handlers never call datetime.now() directly; they use an injected clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class IClock(Protocol):
    """Clock interface used by all time-dependent code."""

    def now(self) -> datetime:
        """Current time as timezone-aware UTC datetime."""
        ...

    def epoch_seconds(self) -> int:
        """Current time as whole seconds since epoch."""
        ...


class WallClock:
    """Real wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def epoch_seconds(self) -> int:
        return int(self.now().timestamp())


class FixedClock:
    """Clock pinned to a given instant.

    Time advances only when explicitly moved.
    """

    def __init__(self, start: datetime | int | None = None) -> None:
        if isinstance(start, int):
            start = datetime.fromtimestamp(start, tz=timezone.utc)
        self._time = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def epoch_seconds(self) -> int:
        return int(self._time.timestamp())

    def set_time(self, t: datetime) -> None:
        self._time = t

    def advance(self, seconds: int) -> None:
        self._time = self._time + timedelta(seconds=seconds)
