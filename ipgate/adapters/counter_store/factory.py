from __future__ import annotations

import logging

from ipgate.adapters.counter_store.base import AbstractCounterStore
from ipgate.adapters.counter_store.in_memory import InMemoryCounterStore
from ipgate.adapters.counter_store.postgres import PostgresCounterStore
from ipgate.core.config import StoreSettings, settings
from ipgate.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)


def create_counter_store(store_settings: StoreSettings | None = None) -> AbstractCounterStore:
    """Factory to build the configured counter store.

    Args:
        store_settings: Optional store settings; defaults to global settings.

    Returns:
        AbstractCounterStore implementation for the configured backend.

    Raises:
        ConfigurationAppError: If the backend is unknown or its target missing.
    """

    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "postgres":
        store = PostgresCounterStore(
            cfg.uri,
            retry=cfg.retry,
            retry_interval=cfg.retry_interval_seconds,
            backoff_unit=cfg.backoff_unit_seconds,
            connect_timeout=cfg.connect_timeout_seconds,
        )
        if cfg.init_schema:
            store.init_schema()
        logger.info("store.created", extra={"backend": backend, "store_uri": cfg.uri})
        return store

    if backend == "memory":
        logger.warning(
            "store.created",
            extra={"backend": backend, "hint": "per-process counters, not for production"},
        )
        return InMemoryCounterStore()

    raise ConfigurationAppError(
        code="store_backend_unsupported",
        message=f"Unsupported counter store backend: {cfg.backend}",
        details={"field": "store.backend", "backend": cfg.backend},
    )
