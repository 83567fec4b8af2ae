"""Route handler functions for the workload-attestor HTTP server.

Each function accepts parsed request data plus the engine to use and
returns a tuple of (status_code, response_dict). The HTTP handler in
app.py calls these functions and serializes the results to JSON.
"""
from __future__ import annotations

from pydantic import ValidationError

from workload_attestor import __version__
from workload_attestor.resolution.engine import AttestationRequest, ResolutionEngine
from workload_attestor.resolution.errors import ErrorKind, ResolutionError
from workload_attestor.server.models import (
    AttestRequestModel,
    AttestResponseModel,
    ErrorResponse,
    HealthResponse,
)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_CREDENTIAL: 400,
    ErrorKind.CREDENTIAL_REJECTED: 401,
    ErrorKind.AMBIGUOUS_IDENTITY: 409,
    ErrorKind.CLAIM_EXTRACTION_FAILED: 422,
    ErrorKind.CANCELED: 503,
    ErrorKind.NOT_FOUND_TRANSIENT: 504,
    ErrorKind.NOT_FOUND_EXHAUSTED: 504,
}


def handle_attest(
    engine: ResolutionEngine,
    body: dict[str, object],
    timeout: float | None = None,
) -> tuple[int, dict[str, object]]:
    """Handle POST /attest.

    Parameters
    ----------
    engine:
        Engine that resolves the request.
    body:
        Parsed JSON request body.
    timeout:
        Optional bound on resolution time in seconds.

    Returns
    -------
    tuple[int, dict[str, object]]
        HTTP status code and response dictionary.
    """
    try:
        model = AttestRequestModel.model_validate(body)
    except ValidationError as exc:
        return 422, ErrorResponse(error="Validation error", detail=str(exc)).model_dump()

    request = AttestationRequest(pid=model.pid, credential_meta=dict(model.credential_meta))
    try:
        selectors = engine.resolve(request, timeout=timeout)
    except ResolutionError as exc:
        return STATUS_BY_KIND[exc.kind], ErrorResponse(
            error="Attestation failed", kind=exc.kind.value, detail=str(exc)
        ).model_dump()

    return 200, AttestResponseModel(selectors=selectors.as_list()).model_dump()


def handle_health(engine: ResolutionEngine) -> tuple[int, dict[str, object]]:
    """Handle GET /health."""
    return 200, HealthResponse(version=__version__, mode=engine.strategy.name).model_dump()
