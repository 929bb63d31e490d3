from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class AdmissionResponse(BaseModel):
    """Response returned to callers the gate let through."""

    status: Literal["admitted"] = Field("admitted", description="Admission outcome")
