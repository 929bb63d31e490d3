"""In-memory access counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Records are kept for the lifetime of the process; there is no retention.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable

from ipgate.adapters.counter_store.base import AbstractCounterStore, WindowCount


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping access timestamps per identity in a dict.

    Intended for local development and tests. It honors the same contract as
    the Postgres backend, including the atomic count-and-append option.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source returning aware datetimes; acts as the store clock.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, list[datetime]] = {}

    def now(self) -> datetime:
        return self._clock()

    def _window(self, identity: str, window_start: datetime) -> WindowCount:
        in_window = [t for t in self._records.get(identity, ()) if t > window_start]
        return WindowCount(
            count=len(in_window),
            reference_time=min(in_window) if in_window else None,
        )

    def count_since(self, identity: str, window_start: datetime) -> WindowCount:
        with self._lock:
            return self._window(identity, window_start)

    def append(self, identity: str, timestamp: datetime) -> None:
        with self._lock:
            self._records.setdefault(identity, []).append(timestamp)

    def count_and_append(
        self,
        identity: str,
        timestamp: datetime,
        window_start: datetime,
        limit: int,
    ) -> WindowCount:
        with self._lock:
            window = self._window(identity, window_start)
            if window.count < limit:
                self._records.setdefault(identity, []).append(timestamp)
            return window

    def records_for(self, identity: str) -> list[datetime]:
        """Return a copy of every record stored for identity, oldest first."""
        with self._lock:
            return sorted(self._records.get(identity, ()))
