"""workload-attestor — resolve a process or service-account token to pod selectors.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import workload_attestor
>>> workload_attestor.__version__
'0.1.0'

Quick start
-----------
::

    from workload_attestor import (
        AttestationRequest, AttestorConfig, build_engine,
    )

    engine = build_engine(AttestorConfig(mode="credential-lookup"))
    selectors = engine.resolve(
        AttestationRequest(credential_meta={"token": service_account_token})
    )
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ------------------------------------------------------------------
# Configuration and audit
# ------------------------------------------------------------------
from workload_attestor.audit import AttestationAuditLogger, AuditEvent
from workload_attestor.config import (
    AttestorConfig,
    ClusterConnectionConfig,
    ConfigError,
    ResolutionMode,
    load_config,
)

# ------------------------------------------------------------------
# Resolution
# ------------------------------------------------------------------
from workload_attestor.resolution import (
    AmbiguousIdentityError,
    AttestationRequest,
    ByCredential,
    ByDiscriminantScan,
    ClaimExtractionError,
    CredentialRejectedError,
    ErrorKind,
    InMemoryPodDirectory,
    InvalidCredentialError,
    NotFoundExhaustedError,
    PodRecord,
    ResolutionCanceledError,
    ResolutionEngine,
    ResolutionError,
    SelectorSet,
    StaticTokenReviewer,
    TokenReview,
    TokenValidator,
    WorkloadDescriptor,
    WorkloadNotFoundError,
    build_selectors,
)

# ------------------------------------------------------------------
# Cluster wiring
# ------------------------------------------------------------------
from workload_attestor.convenience import build_engine

__all__ = [
    # version
    "__version__",
    # config / audit
    "AttestationAuditLogger",
    "AttestorConfig",
    "AuditEvent",
    "ClusterConnectionConfig",
    "ConfigError",
    "ResolutionMode",
    "load_config",
    # resolution
    "AmbiguousIdentityError",
    "AttestationRequest",
    "ByCredential",
    "ByDiscriminantScan",
    "ClaimExtractionError",
    "CredentialRejectedError",
    "ErrorKind",
    "InMemoryPodDirectory",
    "InvalidCredentialError",
    "NotFoundExhaustedError",
    "PodRecord",
    "ResolutionCanceledError",
    "ResolutionEngine",
    "ResolutionError",
    "SelectorSet",
    "StaticTokenReviewer",
    "TokenReview",
    "TokenValidator",
    "WorkloadDescriptor",
    "WorkloadNotFoundError",
    "build_selectors",
    # wiring
    "build_engine",
]
