"""Application factory for the FastAPI app.

Centralizes app construction (lifespan, middleware, handlers, routers). The
admission gate is built in the lifespan so misconfiguration aborts startup,
and closed on shutdown so a pending reconnect loop is cancelled.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from ipgate.api.routes import gate_router, health_router
from ipgate.core.config import settings
from ipgate.core.exception_handlers import setup_exception_handlers
from ipgate.core.logging import configure_logging
from ipgate.core.middleware import request_id_middleware
from ipgate.services.gate import Gate, create_gate

logger = logging.getLogger(__name__)


def create_app(gate_factory: Callable[[], Gate] = create_gate) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        gate_factory: Builds the gate at startup; tests inject their own.

    Returns:
        Configured FastAPI app.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.gate = gate_factory()
        logger.info("app.started", extra={"app_env": settings.app_env})
        try:
            yield
        finally:
            app.state.gate.close()
            app.state.gate = None
            logger.info("app.stopped")

    app = FastAPI(
        title="ipgate",
        description=(
            "Admission gate limiting each client address to a fixed number of "
            "requests per trailing time window."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(gate_router)

    return app
