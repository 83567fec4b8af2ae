"""TokenValidator — resolve a service-account bearer token to its pod.

Resolution runs in a fixed order:

1. Shape check. Empty or non-JWT strings are rejected before any
   network call.
2. Token review. The reviewer decides whether the token is authentic. A
   negative answer is final; it is never retried.
3. Claim extraction. The pod name comes from the review's extra claims;
   the namespace comes from the token's own payload.
4. Targeted pod lookup by namespace and name.

The token payload in step 3 is decoded *without* verifying its
signature. That is only sound because step 2 already established
authenticity, so :func:`reviewed_token_claims` refuses to decode a token
whose review was not positive.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import jwt

from workload_attestor.resolution.descriptor import WorkloadDescriptor
from workload_attestor.resolution.directory import PodDirectory, TokenReview, TokenReviewer
from workload_attestor.resolution.errors import (
    ClaimExtractionError,
    CredentialRejectedError,
    InvalidCredentialError,
)
from workload_attestor.resolution.resolver import get_by_name

logger = logging.getLogger(__name__)

NAMESPACE_CLAIM = "namespace"

# Projected tokens nest pod claims under "kubernetes.io"; legacy secret-based
# tokens carry a flat namespace claim.
_PROJECTED_CLAIMS_KEY = "kubernetes.io"
_LEGACY_NAMESPACE_KEY = "kubernetes.io/serviceaccount/namespace"


def check_token_shape(token: str) -> None:
    """Reject *token* unless it looks like a compact JWS.

    Raises
    ------
    InvalidCredentialError
        When the token is empty, does not have three non-empty segments,
        or its header does not decode.
    """
    if not token or not token.strip():
        raise InvalidCredentialError("token is empty")
    parts = token.strip().split(".")
    if len(parts) != 3 or not all(parts):
        raise InvalidCredentialError(
            f"expected 3 non-empty dot-separated parts, got {len(parts)}"
        )
    try:
        jwt.get_unverified_header(token.strip())
    except jwt.InvalidTokenError as exc:
        raise InvalidCredentialError(f"header does not decode: {exc}") from exc


def reviewed_token_claims(token: str, review: TokenReview) -> dict[str, Any]:
    """Decode the claims of a token that has passed review.

    The signature is not checked here. Authenticity comes from *review*.

    Raises
    ------
    CredentialRejectedError
        When *review* is not positive; the payload is not decoded.
    ClaimExtractionError
        When the payload cannot be decoded.
    """
    if not review.authenticated:
        raise CredentialRejectedError(review.error)
    try:
        return jwt.decode(token.strip(), options={"verify_signature": False})
    except jwt.InvalidTokenError as exc:
        raise ClaimExtractionError(NAMESPACE_CLAIM, f"payload does not decode: {exc}") from exc


def namespace_from_claims(claims: dict[str, Any]) -> Optional[str]:
    """Return the namespace claim of a service-account token, if present.

    Looked up in order: the projected ``kubernetes.io.namespace``, the
    legacy ``kubernetes.io/serviceaccount/namespace``, then a top-level
    ``namespace`` claim.
    """
    projected = claims.get(_PROJECTED_CLAIMS_KEY)
    if isinstance(projected, dict):
        namespace = projected.get(NAMESPACE_CLAIM)
        if isinstance(namespace, str) and namespace:
            return namespace
    for key in (_LEGACY_NAMESPACE_KEY, NAMESPACE_CLAIM):
        flat = claims.get(key)
        if isinstance(flat, str) and flat:
            return flat
    return None


def pod_name_from_extra(extra_claims: dict[str, list[str]], claim: str) -> Optional[str]:
    """Return the single pod name carried in the review's extra claims.

    A key matches when it equals *claim* or ends with ``"/" + claim``
    (e.g. ``authentication.kubernetes.io/pod-name``). Anything other than
    exactly one non-empty value across matching keys yields ``None``.
    """
    values: list[str] = []
    for key, raw in extra_claims.items():
        if key == claim or key.endswith("/" + claim):
            values.extend(v for v in raw if v)
    distinct = set(values)
    if len(distinct) != 1:
        return None
    return distinct.pop()


class TokenValidator:
    """Resolve bearer tokens to workloads via review plus pod lookup.

    Parameters
    ----------
    reviewer:
        Authority that decides whether a token is authentic.
    directory:
        Pod directory used for the final targeted lookup.
    pod_name_claim:
        Extra-claim name that carries the pod name.
    """

    def __init__(
        self,
        reviewer: TokenReviewer,
        directory: PodDirectory,
        pod_name_claim: str = "pod-name",
    ) -> None:
        self._reviewer = reviewer
        self._directory = directory
        self._pod_name_claim = pod_name_claim

    def validate(self, token: str) -> WorkloadDescriptor:
        """Resolve *token* to the workload it was issued to.

        Raises
        ------
        InvalidCredentialError
            Malformed token; no review is requested.
        CredentialRejectedError
            The reviewer does not vouch for the token.
        ClaimExtractionError
            Pod name or namespace claim missing.
        WorkloadNotFoundError
            The named pod is not (yet) visible. Retryable.
        """
        check_token_shape(token)

        review = self._reviewer.review(token.strip())
        if not review.authenticated:
            logger.warning("Token review rejected credential: %s", review.error or "unauthenticated")
            raise CredentialRejectedError(review.error)

        name = pod_name_from_extra(review.extra_claims, self._pod_name_claim)
        if name is None:
            raise ClaimExtractionError(self._pod_name_claim)
        namespace = namespace_from_claims(reviewed_token_claims(token, review))
        if namespace is None:
            raise ClaimExtractionError(NAMESPACE_CLAIM)

        logger.debug("Token claims name pod %s/%s", namespace, name)
        return get_by_name(self._directory, namespace, name)
