"""Capabilities the resolver consumes — pod directory and token reviewer.

The resolution engine never talks to the cluster directly. It is handed a
:class:`PodDirectory` (pod listing and targeted lookup) and, in
credential mode, a :class:`TokenReviewer` (external trust decision on a
bearer token). :mod:`workload_attestor.kube` provides cluster-backed
implementations; this module provides the protocols plus in-memory
implementations used by tests, local runs and the CLI's offline mode.

Extension points
----------------
Any object with the same ``list_pods`` / ``get_pod`` or ``review``
methods can be passed in; no base class is required.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol

from workload_attestor.resolution.descriptor import PodRecord


@dataclass(frozen=True)
class TokenReview:
    """Outcome of reviewing a bearer token.

    Parameters
    ----------
    authenticated:
        ``True`` when the reviewer vouches for the token.
    extra_claims:
        Additional attributes attached to the authenticated user, keyed by
        claim name. Values are lists, as the cluster reports them.
    error:
        Reviewer-supplied explanation when ``authenticated`` is ``False``.
    """

    authenticated: bool
    extra_claims: dict[str, list[str]] = field(default_factory=dict)
    error: str = ""


class PodDirectory(Protocol):
    """Pod listing and lookup."""

    def list_pods(self, namespace: str = "") -> list[PodRecord]:
        """Return pods in *namespace*, or in every namespace when empty."""
        ...

    def get_pod(self, namespace: str, name: str) -> Optional[PodRecord]:
        """Return the named pod, or ``None`` when it does not exist."""
        ...


class TokenReviewer(Protocol):
    """External authenticity check for bearer tokens."""

    def review(self, token: str) -> TokenReview:
        ...


class InMemoryPodDirectory:
    """Thread-safe, insertion-ordered in-memory pod directory.

    Adding a pod with the same namespace and name as an existing one
    replaces it, which mirrors a pod being recreated.
    """

    def __init__(self, pods: Optional[list[PodRecord]] = None) -> None:
        self._pods: dict[tuple[str, str], PodRecord] = {}
        self._lock = threading.Lock()
        self.list_calls = 0
        self.get_calls = 0
        for pod in pods or []:
            self.add(pod)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, pod: PodRecord) -> None:
        with self._lock:
            self._pods[(pod.namespace, pod.name)] = pod

    def remove(self, namespace: str, name: str) -> bool:
        """Remove a pod; returns ``True`` when it existed."""
        with self._lock:
            return self._pods.pop((namespace, name), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._pods.clear()

    # ------------------------------------------------------------------
    # PodDirectory
    # ------------------------------------------------------------------

    def list_pods(self, namespace: str = "") -> list[PodRecord]:
        with self._lock:
            self.list_calls += 1
            return [
                pod for pod in self._pods.values() if not namespace or pod.namespace == namespace
            ]

    def get_pod(self, namespace: str, name: str) -> Optional[PodRecord]:
        with self._lock:
            self.get_calls += 1
            return self._pods.get((namespace, name))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._pods)

    def __contains__(self, key: object) -> bool:
        """Support ``("ns", "name") in directory``."""
        return key in self._pods


class StaticTokenReviewer:
    """Token reviewer backed by a fixed token → review table.

    Unknown tokens are reported as unauthenticated.
    """

    def __init__(self, reviews: Optional[dict[str, TokenReview]] = None) -> None:
        self._reviews: dict[str, TokenReview] = dict(reviews or {})
        self._lock = threading.Lock()
        self.calls = 0

    def register(self, token: str, review: TokenReview) -> None:
        with self._lock:
            self._reviews[token] = review

    def review(self, token: str) -> TokenReview:
        with self._lock:
            self.calls += 1
            return self._reviews.get(
                token, TokenReview(authenticated=False, error="unknown token")
            )
