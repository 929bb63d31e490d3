"""Pytest configuration shared across all test modules.

Environment variables are set before anything imports ``ipgate.core.config``
so the global settings object is built for tests: in-memory store, small
policy, client address taken from X-Forwarded-For.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("GATE_LIMIT", "3")
os.environ.setdefault("GATE_TIMESPAN", "60s")
os.environ.setdefault("GATE_TRUST_FORWARDED_FOR", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")
