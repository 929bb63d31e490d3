"""Counter store adapters.

The decision engine depends only on the abstract store so the backing
database (Postgres in production, in-memory for development and tests) can be
swapped without touching the admission logic.
"""

from ipgate.adapters.counter_store.base import AbstractCounterStore, WindowCount

__all__ = ["AbstractCounterStore", "WindowCount"]
