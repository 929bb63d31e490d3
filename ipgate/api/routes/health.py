from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint (never rate limited).

    Does not touch the counter store, so a store outage shows up as latency
    on the gated route rather than as a failing health check.

    Returns:
        dict: Service status.
    """

    return {"status": "ok"}
