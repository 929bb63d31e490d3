"""Rate decision engine.

Evaluates one client's recent access history against the configured policy
and records the access when there is room for it.

Each evaluation:
1. anchors a trailing window ``(now - timespan, now]`` on the store clock;
2. counts the identity's records in that window;
3. rejects when ``count >= limit`` (the pending request would be the
   ``limit + 1``-th), estimating the wait from the oldest in-window record;
4. otherwise admits and appends a record stamped ``now``.

Store failures on the count fail closed (rejected, wait = timespan). Failures
on the append are returned with the admitted verdict so the caller decides.

Count and append are two independent round trips: concurrent evaluations for
the same identity can all observe room and all write, overshooting the limit
by up to the number of racing requests. ``atomic=True`` switches to the
store's ``count_and_append`` for backends that support it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from ipgate.adapters.counter_store.base import AbstractCounterStore, WindowCount
from ipgate.core.errors import AppError, StoreAppError

NO_WAIT = timedelta(0)


@dataclass(frozen=True)
class Policy:
    """Global limit applied to every identity.

    Attributes:
        limit: Maximum accesses admitted per trailing window.
        timespan: Length of the trailing window.
    """

    limit: int
    timespan: timedelta


@dataclass(frozen=True)
class Verdict:
    """Outcome of one evaluation.

    Attributes:
        rejected: Whether the request must be turned away.
        wait_hint: How long the client should wait before retrying.
        error: Store failure observed during the evaluation, if any.
    """

    rejected: bool
    wait_hint: timedelta = NO_WAIT
    error: AppError | None = None

    @property
    def retry_after_seconds(self) -> int:
        """Wait hint rounded up to whole seconds (for Retry-After)."""
        return max(0, int(math.ceil(self.wait_hint.total_seconds())))


class RateDecisionEngine:
    """Stateless evaluator over a counter store and a policy."""

    def __init__(
        self,
        store: AbstractCounterStore,
        policy: Policy,
        *,
        clock: Callable[[], datetime] | None = None,
        atomic: bool = False,
    ) -> None:
        self._store = store
        self._policy = policy
        self._clock = clock or store.now
        self._atomic = atomic

    @property
    def policy(self) -> Policy:
        return self._policy

    def evaluate(self, identity: str) -> Verdict:
        timespan = self._policy.timespan
        try:
            now = self._clock()
            window_start = now - timespan
            if self._atomic:
                window = self._store.count_and_append(
                    identity, now, window_start, self._policy.limit
                )
            else:
                window = self._store.count_since(identity, window_start)
        except StoreAppError as exc:
            return Verdict(rejected=True, wait_hint=timespan, error=exc)

        if window.count >= self._policy.limit:
            return Verdict(rejected=True, wait_hint=self._wait_hint(window, now))

        if not self._atomic:
            try:
                self._store.append(identity, now)
            except StoreAppError as exc:
                return Verdict(rejected=False, error=exc)

        return Verdict(rejected=False)

    def _wait_hint(self, window: WindowCount, now: datetime) -> timedelta:
        # Time until the oldest in-window record ages out.
        if window.reference_time is None:
            return NO_WAIT
        remaining = self._policy.timespan - (now - window.reference_time)
        return max(remaining, NO_WAIT)
