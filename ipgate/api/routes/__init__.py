from __future__ import annotations

from ipgate.api.routes.gate import router as gate_router
from ipgate.api.routes.health import router as health_router

__all__ = ["gate_router", "health_router"]
