"""Rate limiting dependency for FastAPI routes.

This module wires the admission gate into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- The gate is built once at startup and read from ``app.state``.
- The gate call is blocking, so it runs in the threadpool and may be bounded
  by ``GATE_CHECK_TIMEOUT_SECONDS``.

Verdict mapping:
- admitted -> request proceeds (a failed bookkeeping write is logged loudly)
- rejected -> 429 with Retry-After
- store could not count -> 503 with Retry-After
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from ipgate.core.config import settings
from ipgate.core.errors import ConfigurationAppError, ValidationAppError
from ipgate.services.decision_engine import Verdict
from ipgate.services.gate import Gate
from ipgate.utils.durations import format_seconds
from ipgate.utils.ip_tools import normalize_ipv4

logger = logging.getLogger(__name__)


def get_gate(request: Request) -> Gate:
    """Return the gate built during application startup.

    Raises:
        ConfigurationAppError: If the application started without a gate.
    """

    gate = getattr(request.app.state, "gate", None)
    if gate is None:
        raise ConfigurationAppError(
            code="gate_not_configured",
            message="Admission gate is not configured",
        )
    return gate


def client_identity(request: Request) -> str:
    """Extract the client IPv4 address the limit is scoped to.

    Raises:
        ValidationAppError: If the address is missing or not IPv4.
    """

    raw: str | None = None
    if settings.gate.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            raw = forwarded.split(",")[0]
    if raw is None:
        raw = request.client.host if request.client else ""

    try:
        return normalize_ipv4(raw)
    except ValueError as exc:
        raise ValidationAppError(
            code="invalid_client_address",
            message=str(exc),
        ) from exc


def _hash_limiter_key(key: str) -> str:
    """Hash the client address for logging without exposing it."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


async def _run_check(gate: Gate, identity: str) -> Verdict:
    timeout = settings.gate.check_timeout_seconds
    if timeout is None:
        return await run_in_threadpool(gate.check, identity)
    # Executor futures can be abandoned on timeout; the worker thread keeps
    # running until the store answers or the reconnect loop is cancelled.
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(loop.run_in_executor(None, gate.check, identity), timeout)


def _retry_headers(verdict: Verdict) -> dict[str, str] | None:
    if not settings.gate.include_headers:
        return None
    return {"Retry-After": str(verdict.retry_after_seconds)}


async def enforce_rate_limit(
    request: Request,
    gate: Annotated[Gate, Depends(get_gate)],
) -> Verdict:
    """FastAPI dependency enforcing the admission policy.

    Records one access for the caller when admitted. If the caller is over
    the limit, raises HTTP 429; if the store cannot answer, raises HTTP 503.

    Args:
        request: FastAPI request.
        gate: Admission gate from application state.

    Returns:
        Verdict: The admitted verdict.

    Raises:
        HTTPException: 429 when rate limited, 503 when the store is unavailable
            or the check timed out.
    """

    identity = client_identity(request)
    key_hash = _hash_limiter_key(identity)

    try:
        verdict = await _run_check(gate, identity)
    except asyncio.TimeoutError:
        logger.error(
            "rate_limit.check_timeout",
            extra={
                "key_hash": key_hash,
                "timeout_s": settings.gate.check_timeout_seconds,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiter unavailable. Try again later.",
        )

    if verdict.rejected and verdict.error is not None:
        logger.error(
            "rate_limit.store_unavailable",
            extra={
                "key_hash": key_hash,
                "error_code": verdict.error.code,
                "error_message": verdict.error.message,
                "wait_s": format_seconds(verdict.wait_hint),
            },
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiter unavailable. Try again later.",
            headers=_retry_headers(verdict),
        )

    if verdict.rejected:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": key_hash,
                "limit": gate.policy.limit,
                "window_s": gate.policy.timespan.total_seconds(),
                "wait_s": format_seconds(verdict.wait_hint),
            },
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Try again in {verdict.retry_after_seconds} seconds",
            headers=_retry_headers(verdict),
        )

    if verdict.error is not None:
        # Admitted, but this access went unrecorded.
        logger.error(
            "rate_limit.record_failed",
            extra={
                "key_hash": key_hash,
                "error_code": verdict.error.code,
                "error_message": verdict.error.message,
            },
        )
        return verdict

    logger.info(
        "rate_limit.allowed",
        extra={
            "key_hash": key_hash,
            "limit": gate.policy.limit,
            "window_s": gate.policy.timespan.total_seconds(),
        },
    )
    return verdict
