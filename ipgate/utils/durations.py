from __future__ import annotations

import re
from datetime import timedelta

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_RE = re.compile(r"^(?:\d+(?:\.\d+)?(?:ms|s|m|h))+$")


def parse_compact_duration(value: str) -> timedelta | None:
    """Parse a compact duration such as ``1h``, ``90s`` or ``1h30m``.

    Returns None when the value is not in compact form so callers can fall
    back to other formats (plain seconds, ISO-8601, ``HH:MM:SS``).
    """

    text = value.strip().lower()
    if not text or not _DURATION_RE.match(text):
        return None

    seconds = sum(
        float(amount) * _UNIT_SECONDS[unit]
        for amount, unit in _COMPONENT_RE.findall(text)
    )
    return timedelta(seconds=seconds)


def format_seconds(delta: timedelta) -> str:
    """Render a duration as seconds with millisecond precision."""
    return f"{delta.total_seconds():.3f}"
