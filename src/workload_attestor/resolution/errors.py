"""Resolution errors — one exception class per failure kind.

Every failure raised by the resolution engine carries an :class:`ErrorKind`
so that the hosting layer can map it onto its own transport status codes.
Only :attr:`ErrorKind.NOT_FOUND_TRANSIENT` is retryable; every other kind
ends the attempt loop immediately.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a resolution failure."""

    INVALID_CREDENTIAL = "invalid_credential"
    CREDENTIAL_REJECTED = "credential_rejected"
    CLAIM_EXTRACTION_FAILED = "claim_extraction_failed"
    AMBIGUOUS_IDENTITY = "ambiguous_identity"
    NOT_FOUND_TRANSIENT = "not_found_transient"
    NOT_FOUND_EXHAUSTED = "not_found_exhausted"
    CANCELED = "canceled"


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class ResolutionError(Exception):
    """Base class for all resolution failures."""

    kind: ErrorKind = ErrorKind.NOT_FOUND_EXHAUSTED

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)

    @property
    def retryable(self) -> bool:
        """True only for transient not-found failures."""
        return self.kind == ErrorKind.NOT_FOUND_TRANSIENT


# ---------------------------------------------------------------------------
# Credential failures
# ---------------------------------------------------------------------------


class InvalidCredentialError(ResolutionError):
    """Raised when a credential is empty or structurally malformed."""

    kind = ErrorKind.INVALID_CREDENTIAL

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid credential: {reason}")


class CredentialRejectedError(ResolutionError):
    """Raised when token introspection reports the credential unauthenticated."""

    kind = ErrorKind.CREDENTIAL_REJECTED

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        message = "Credential rejected by token review"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ClaimExtractionError(ResolutionError):
    """Raised when a required identity claim is missing from a reviewed token."""

    kind = ErrorKind.CLAIM_EXTRACTION_FAILED

    def __init__(self, claim: str, reason: str = "claim not present") -> None:
        self.claim = claim
        super().__init__(f"Could not extract claim {claim!r}: {reason}")


class ClaimMismatchError(ResolutionError):
    """Raised when a targeted lookup returns a pod other than the one claimed."""

    kind = ErrorKind.CLAIM_EXTRACTION_FAILED

    def __init__(self, claimed: str, found: str) -> None:
        self.claimed = claimed
        self.found = found
        super().__init__(f"Claimed pod {claimed!r} resolved to {found!r}")


# ---------------------------------------------------------------------------
# Lookup failures
# ---------------------------------------------------------------------------


class AmbiguousIdentityError(ResolutionError):
    """Raised when two or more distinct pods match the same discriminant."""

    kind = ErrorKind.AMBIGUOUS_IDENTITY

    def __init__(self, candidates: list[str]) -> None:
        self.candidates = list(candidates)
        super().__init__(
            f"{len(self.candidates)} distinct pods match the same workload: "
            + ", ".join(self.candidates)
        )


class WorkloadNotFoundError(ResolutionError):
    """Raised when no pod matches yet; the cluster view may still catch up."""

    kind = ErrorKind.NOT_FOUND_TRANSIENT


class DirectoryUnavailableError(WorkloadNotFoundError):
    """Raised when a cluster call fails for transport reasons."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {reason}")


class NotFoundExhaustedError(ResolutionError):
    """Raised when no match was found after the final attempt."""

    kind = ErrorKind.NOT_FOUND_EXHAUSTED

    def __init__(self, attempts: int, last_failure: str) -> None:
        self.attempts = attempts
        self.last_failure = last_failure
        super().__init__(
            f"No selectors found after {attempts} attempt(s): {last_failure}"
        )


class ResolutionCanceledError(ResolutionError):
    """Raised when the caller cancels or the overall timeout elapses."""

    kind = ErrorKind.CANCELED

    def __init__(self, attempts: int, reason: str = "canceled by caller") -> None:
        self.attempts = attempts
        super().__init__(f"No selectors found: {reason} after {attempts} attempt(s)")
