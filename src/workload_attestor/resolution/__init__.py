"""resolution — turn an attestation request into a workload's selectors.

Public API
----------
``ResolutionEngine``
    Bounded-retry loop; delegates each attempt to a strategy.
``ByDiscriminantScan`` / ``ByCredential``
    The two strategies: scan all pods for a process's container, or
    review a bearer token and look its pod up by name.
``TokenValidator``
    Review, claim extraction and targeted lookup for bearer tokens.
``find_by_discriminant`` / ``get_by_name``
    Pod matching with ambiguity detection.
``build_selectors``
    Pure mapping from a :class:`WorkloadDescriptor` to a :class:`SelectorSet`.
"""
from __future__ import annotations

from workload_attestor.resolution.descriptor import (
    ContainerStatus,
    OwnerReference,
    PodRecord,
    WorkloadDescriptor,
)
from workload_attestor.resolution.directory import (
    InMemoryPodDirectory,
    PodDirectory,
    StaticTokenReviewer,
    TokenReview,
    TokenReviewer,
)
from workload_attestor.resolution.engine import (
    AttestationRequest,
    ByCredential,
    ByDiscriminantScan,
    Clock,
    ResolutionAttempt,
    ResolutionEngine,
    ResolutionStrategy,
    SystemClock,
)
from workload_attestor.resolution.errors import (
    AmbiguousIdentityError,
    ClaimExtractionError,
    ClaimMismatchError,
    CredentialRejectedError,
    DirectoryUnavailableError,
    ErrorKind,
    InvalidCredentialError,
    NotFoundExhaustedError,
    ResolutionCanceledError,
    ResolutionError,
    WorkloadNotFoundError,
)
from workload_attestor.resolution.resolver import (
    MatchResult,
    ProcessMatcher,
    find_by_discriminant,
    get_by_name,
    known_pod,
)
from workload_attestor.resolution.selectors import SelectorSet, build_selectors
from workload_attestor.resolution.token import TokenValidator

__all__ = [
    "AmbiguousIdentityError",
    "AttestationRequest",
    "ByCredential",
    "ByDiscriminantScan",
    "ClaimExtractionError",
    "ClaimMismatchError",
    "Clock",
    "ContainerStatus",
    "CredentialRejectedError",
    "DirectoryUnavailableError",
    "ErrorKind",
    "InMemoryPodDirectory",
    "InvalidCredentialError",
    "MatchResult",
    "NotFoundExhaustedError",
    "OwnerReference",
    "PodDirectory",
    "PodRecord",
    "ProcessMatcher",
    "ResolutionAttempt",
    "ResolutionCanceledError",
    "ResolutionEngine",
    "ResolutionError",
    "ResolutionStrategy",
    "SelectorSet",
    "StaticTokenReviewer",
    "SystemClock",
    "TokenReview",
    "TokenReviewer",
    "TokenValidator",
    "WorkloadDescriptor",
    "WorkloadNotFoundError",
    "build_selectors",
    "find_by_discriminant",
    "get_by_name",
    "known_pod",
]
