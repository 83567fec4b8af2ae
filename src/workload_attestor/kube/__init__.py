"""kube — cluster API adapters for the resolution capabilities."""
from __future__ import annotations

from workload_attestor.kube.client import (
    ClusterClientFactory,
    KubePodDirectory,
    KubeTokenReviewer,
    load_api_client,
    pod_record_from_kube,
)

__all__ = [
    "ClusterClientFactory",
    "KubePodDirectory",
    "KubeTokenReviewer",
    "load_api_client",
    "pod_record_from_kube",
]
