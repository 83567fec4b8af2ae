#!/usr/bin/env python3
"""Example: Offline selector preview

Resolves a service-account token against an in-memory pod directory and a
static token reviewer, then prints the selectors. No cluster is needed.

Usage:
    python examples/01_offline_selectors.py

Requirements:
    pip install workload-attestor
"""
from __future__ import annotations

import jwt

import workload_attestor
from workload_attestor import (
    AttestationRequest,
    AttestorConfig,
    InMemoryPodDirectory,
    PodRecord,
    ResolutionEngine,
    StaticTokenReviewer,
    TokenReview,
)

POD = {
    "metadata": {
        "name": "web-7",
        "namespace": "prod",
        "uid": "7f9c2a10-0000-4000-8000-000000000001",
        "labels": {"app": "web"},
        "ownerReferences": [{"kind": "ReplicaSet", "name": "web-5d9", "uid": "rs-1"}],
    },
    "spec": {"serviceAccountName": "web-sa", "nodeName": "node-1"},
    "status": {
        "containerStatuses": [
            {"name": "main", "image": "registry.local/web:1.0", "imageID": "registry.local/web@sha256:01"}
        ]
    },
}


def main() -> None:
    print(f"workload-attestor version: {workload_attestor.__version__}")

    # Step 1: A token as the kubelet would project it into the pod
    token = jwt.encode({"kubernetes.io": {"namespace": "prod"}}, "example-key", algorithm="HS256")

    # Step 2: The reviewer vouches for the token and names the pod
    reviewer = StaticTokenReviewer(
        {
            token: TokenReview(
                authenticated=True,
                extra_claims={"authentication.kubernetes.io/pod-name": ["web-7"]},
            )
        }
    )
    directory = InMemoryPodDirectory([PodRecord.from_dict(POD)])

    # Step 3: Build the engine from configuration and resolve
    config = AttestorConfig(mode="credential-lookup", max_attempts=3)
    engine = ResolutionEngine.from_config(config, directory, reviewer=reviewer)
    selectors = engine.resolve(AttestationRequest(credential_meta={"token": token}))

    for selector in selectors:
        print(f"  {selector}")

    print("\nOffline resolution complete.")


if __name__ == "__main__":
    main()
