from __future__ import annotations

from fastapi import APIRouter, Depends

from ipgate.core.rate_limit import enforce_rate_limit
from ipgate.schemas.gate import AdmissionResponse

router = APIRouter(tags=["Gate"])


@router.api_route(
    "/",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    response_model=AdmissionResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
async def admit() -> AdmissionResponse:
    """Rate-limited entry point.

    Requests that reach this handler were admitted by the gate and have had
    their access recorded. Rejections are raised by the dependency as 429/503.
    """

    return AdmissionResponse()
