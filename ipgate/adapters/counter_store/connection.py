"""Connection lifecycle for counter store backends.

The manager owns the single live handle to the backing store and keeps trying
to obtain one for as long as the process runs:

- Attempts are grouped in bursts of ``retry`` tries, ``retry_interval``
  seconds apart.
- Between bursts it sleeps a randomized backoff of
  ``retry * randint(0, 9) * backoff_unit`` seconds.
- A freshly opened handle only counts once the health probe succeeds.
- ``shutdown()`` interrupts any sleep and makes the loop raise
  ``ConnectionCancelledError``.

Callers never see "not connected yet"; they see latency.
"""

from __future__ import annotations

import enum
import logging
import random
import threading
from typing import Callable, Generic, TypeVar

from ipgate.core.errors import ConfigurationAppError, ConnectionCancelledError

logger = logging.getLogger(__name__)

HandleT = TypeVar("HandleT")

DEFAULT_RETRY = 5
MAX_BACKOFF_FACTOR = 9


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionManager(Generic[HandleT]):
    """Lazily opens, probes and, on failure, keeps reopening a store handle.

    Args:
        target: Store location (e.g., a DSN). Only checked for presence and
            passed to ``opener``.
        opener: Opens a new handle for ``target``. May raise anything.
        probe: Verifies a handle is actually serving (e.g., ``SELECT 1``).
        closer: Closes a handle that is being discarded.
        retry: Attempts per burst. 0 is corrected to ``DEFAULT_RETRY``.
        retry_interval: Seconds between attempts inside a burst.
        backoff_unit: Seconds per unit of randomized backoff between bursts.
        rng: Random source for the backoff factor.

    Raises:
        ConfigurationAppError: If target is missing or retry is negative.
    """

    def __init__(
        self,
        *,
        target: str | None,
        opener: Callable[[str], HandleT],
        probe: Callable[[HandleT], object],
        closer: Callable[[HandleT], object] | None = None,
        retry: int = 1,
        retry_interval: float = 1.0,
        backoff_unit: float = 1.0,
        rng: random.Random | None = None,
    ) -> None:
        if not target:
            raise ConfigurationAppError(
                code="store_target_missing",
                message="No datastore URI configured",
                details={"field": "store.uri"},
            )
        if retry < 0:
            raise ConfigurationAppError(
                code="store_retry_invalid",
                message="retry must be >= 0",
                details={"field": "store.retry"},
            )
        if retry == 0:
            logger.warning(
                "store.retry_corrected",
                extra={"configured": retry, "retry": DEFAULT_RETRY},
            )
            retry = DEFAULT_RETRY

        self._target = target
        self._opener = opener
        self._probe = probe
        self._closer = closer
        self.retry = retry
        self.retry_interval = retry_interval
        self.backoff_unit = backoff_unit
        self._rng = rng or random.Random()

        self._handle: HandleT | None = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.Lock()
        self._stop = threading.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def ensure_connected(self) -> HandleT:
        """Return the live handle, connecting first if there is none.

        Blocks until a handle passes the health probe. There is no attempt
        limit; the only way out without a handle is ``shutdown()``.

        Raises:
            ConnectionCancelledError: If shutdown was requested.
        """

        self._raise_if_stopped()
        handle = self._handle
        if handle is not None:
            return handle

        with self._lock:
            # Another caller may have connected while we waited for the lock.
            if self._handle is not None:
                return self._handle
            handle = self._connect()
            if self._stop.is_set():
                # shutdown() ran while the last attempt was in flight.
                self._close_quietly(handle)
                self._raise_if_stopped()
            self._handle = handle
            return handle

    def invalidate(self, handle: HandleT | None = None) -> None:
        """Drop the current handle so the next call reconnects.

        When ``handle`` is given, only drop it if it is still the current one.
        """

        with self._lock:
            current = self._handle
            if current is None or (handle is not None and handle is not current):
                return
            self._handle = None
            self._state = ConnectionState.DISCONNECTED
        logger.warning("store.connection_invalidated")
        self._close_quietly(current)

    def shutdown(self) -> None:
        """Cancel any reconnect loop and close the current handle."""

        self._stop.set()
        handle, self._handle = self._handle, None
        self._state = ConnectionState.DISCONNECTED
        if handle is not None:
            self._close_quietly(handle)
        logger.info("store.connection_shutdown")

    def _connect(self) -> HandleT:
        self._state = ConnectionState.CONNECTING
        logger.info("store.connecting", extra={"retry": self.retry})
        burst = 0
        while True:
            burst += 1
            last_error: Exception | None = None
            for attempt in range(1, self.retry + 1):
                self._raise_if_stopped()
                try:
                    handle = self._open_and_probe()
                except Exception as exc:
                    last_error = exc
                    logger.warning(
                        "store.connect_failed",
                        extra={
                            "burst": burst,
                            "attempt": attempt,
                            "retry": self.retry,
                            "error_type": type(exc).__name__,
                            "error_msg": str(exc),
                        },
                    )
                    self._sleep(self.retry_interval)
                    continue

                self._state = ConnectionState.CONNECTED
                logger.info(
                    "store.connected",
                    extra={"burst": burst, "attempt": attempt},
                )
                return handle

            backoff = self.retry * self._rng.randint(0, MAX_BACKOFF_FACTOR) * self.backoff_unit
            logger.error(
                "store.backoff",
                extra={
                    "burst": burst,
                    "backoff_s": backoff,
                    "error_type": type(last_error).__name__ if last_error else None,
                    "error_msg": str(last_error) if last_error else None,
                },
            )
            self._sleep(backoff)

    def _open_and_probe(self) -> HandleT:
        handle = self._opener(self._target)
        try:
            self._probe(handle)
        except Exception:
            self._close_quietly(handle)
            raise
        return handle

    def _sleep(self, seconds: float) -> None:
        if seconds > 0 and self._stop.wait(seconds):
            self._raise_if_stopped()

    def _raise_if_stopped(self) -> None:
        if self._stop.is_set():
            self._state = ConnectionState.DISCONNECTED
            raise ConnectionCancelledError(
                code="store_connection_cancelled",
                message="Store connection loop cancelled by shutdown",
            )

    def _close_quietly(self, handle: HandleT) -> None:
        if self._closer is None:
            return
        try:
            self._closer(handle)
        except Exception as exc:
            logger.debug(
                "store.close_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
