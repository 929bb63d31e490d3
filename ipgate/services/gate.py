from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from ipgate.adapters.counter_store.base import AbstractCounterStore
from ipgate.adapters.counter_store.factory import create_counter_store
from ipgate.core.config import Settings, settings as default_settings
from ipgate.core.errors import ConfigurationAppError
from ipgate.services.decision_engine import Policy, RateDecisionEngine, Verdict

logger = logging.getLogger(__name__)


def _supports_atomic(store: AbstractCounterStore) -> bool:
    method = getattr(type(store), "count_and_append", None)
    return method is not None and method is not AbstractCounterStore.count_and_append


class Gate:
    """Admission gate: the single entry point for rate limit checks.

    Built once at startup and shared by every request. Holds no mutable
    per-call state, so concurrent ``check`` calls need no locking here; the
    store is responsible for its own concurrency safety.

    Args:
        store: Counter store backing the access history.
        limit: Maximum accesses per identity within ``timespan``.
        timespan: Trailing window length.
        atomic: Use the store's atomic count-and-append.
        clock: Override the store clock (tests).

    Raises:
        ConfigurationAppError: If any of store, limit, or timespan is missing
            or not positive. Also raised when ``atomic`` is set and the
            store has no atomic count-and-append.
    """

    def __init__(
        self,
        store: AbstractCounterStore | None,
        limit: int | None,
        timespan: timedelta | None,
        *,
        atomic: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if store is None or limit is None or timespan is None:
            raise ConfigurationAppError(
                code="gate_config_missing",
                message="store, limit, and timespan are mandatory fields",
            )
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ConfigurationAppError(
                code="gate_limit_invalid",
                message="limit must be a positive integer",
                details={"field": "gate.limit"},
            )
        if not isinstance(timespan, timedelta) or timespan <= timedelta(0):
            raise ConfigurationAppError(
                code="gate_timespan_invalid",
                message="timespan must be a positive duration",
                details={"field": "gate.timespan"},
            )
        if atomic and not _supports_atomic(store):
            raise ConfigurationAppError(
                code="gate_atomic_unsupported",
                message=f"{type(store).__name__} cannot count and record atomically",
                details={"field": "gate.atomic"},
            )

        self._store = store
        self._engine = RateDecisionEngine(
            store,
            Policy(limit=limit, timespan=timespan),
            clock=clock,
            atomic=atomic,
        )

    @property
    def policy(self) -> Policy:
        return self._engine.policy

    def check(self, identity: str) -> Verdict:
        """Decide whether identity may proceed, recording the access if so."""
        return self._engine.evaluate(identity)

    def close(self) -> None:
        self._store.close()


def create_gate(app_settings: Settings | None = None) -> Gate:
    """Build the store and the gate from configuration.

    Raises:
        ConfigurationAppError: On any misconfiguration, before serving starts.
    """

    cfg = app_settings or default_settings
    store = create_counter_store(cfg.store)
    gate = Gate(store, cfg.gate.limit, cfg.gate.timespan, atomic=cfg.gate.atomic)
    logger.info(
        "gate.created",
        extra={
            "limit": cfg.gate.limit,
            "timespan_s": cfg.gate.timespan.total_seconds(),
            "atomic": cfg.gate.atomic,
            "backend": cfg.store.backend,
        },
    )
    return gate
