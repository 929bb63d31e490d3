"""Counter store interfaces.

The decision engine should depend on this abstraction (not a concrete
database binding) so it can be exercised against an in-memory store and run
against Postgres in production.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class WindowCount:
    """Access history of one identity inside a trailing window.

    Attributes:
        count: Number of access records newer than the window start.
        reference_time: Timestamp of the oldest record in the window, used to
            estimate when the next slot frees up. None when the window is empty.
    """

    count: int
    reference_time: datetime | None


class AbstractCounterStore(ABC):
    """Interface for persistent access counters.

    Implementations surface every backend failure as ``StoreAppError``.
    """

    @abstractmethod
    def count_since(self, identity: str, window_start: datetime) -> WindowCount:
        """Count access records for identity newer than window_start.

        The count and the reference timestamp must come from a single read so
        they describe the same snapshot.

        Args:
            identity: Client address the limit is scoped to.
            window_start: Exclusive lower bound of the window.

        Returns:
            WindowCount for the window.
        """
        raise NotImplementedError

    @abstractmethod
    def append(self, identity: str, timestamp: datetime) -> None:
        """Record one access. Duplicate calls create duplicate records."""
        raise NotImplementedError

    def now(self) -> datetime:
        """Return the store's notion of the current time (aware, UTC)."""
        return datetime.now(timezone.utc)

    def count_and_append(
        self,
        identity: str,
        timestamp: datetime,
        window_start: datetime,
        limit: int,
    ) -> WindowCount:
        """Count and, when below limit, record an access as one atomic step.

        Returns the pre-write WindowCount; the access was recorded iff
        ``count < limit``. Backends that cannot do this atomically do not
        override it, and the gate refuses atomic mode for them.
        """
        raise NotImplementedError(f"{type(self).__name__} has no atomic count-and-append")

    def close(self) -> None:
        """Release backend resources. Safe to call more than once."""
