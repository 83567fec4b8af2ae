"""Pydantic request/response models for the workload-attestor HTTP server."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class AttestRequestModel(BaseModel):
    """Request body for POST /attest."""

    pid: Optional[int] = None
    credential_meta: dict[str, str] = Field(default_factory=dict)


class AttestResponseModel(BaseModel):
    """Response body for POST /attest."""

    selectors: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = "ok"
    service: str = "workload-attestor"
    version: str = "0.1.0"
    mode: str = ""


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    kind: str = ""
    detail: str = ""


__all__ = [
    "AttestRequestModel",
    "AttestResponseModel",
    "HealthResponse",
    "ErrorResponse",
]
