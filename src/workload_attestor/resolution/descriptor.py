"""Pod records and resolved workload descriptors.

:class:`PodRecord` is the raw view of a pod as a directory returns it.
:class:`WorkloadDescriptor` is the normalized identity of exactly one
workload, produced only by a successful resolution step and consumed by
:func:`~workload_attestor.resolution.selectors.build_selectors`.

``PodRecord.from_dict`` accepts the cluster's own JSON representation of a
pod (camelCase keys, as printed by ``kubectl get pod -o json``).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


def _mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


@dataclass(frozen=True)
class ContainerStatus:
    """Status of one container (or init container) of a pod.

    Parameters
    ----------
    name:
        Container name within the pod spec.
    image:
        Tag-qualified image reference (e.g. ``"envoy-alpine:v1.16.0"``).
    image_id:
        Digest-qualified image reference; empty until the image is pulled.
    container_id:
        Runtime container ID including its scheme prefix
        (e.g. ``"containerd://3f2a..."``); empty until the container starts.
    """

    name: str
    image: str = ""
    image_id: str = ""
    container_id: str = ""

    def image_identifiers(self) -> list[str]:
        """Return the non-empty image references, tag form first."""
        return [ref for ref in (self.image, self.image_id) if ref]

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "image": self.image,
            "imageID": self.image_id,
            "containerID": self.container_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContainerStatus":
        return cls(
            name=str(data.get("name", "")),
            image=str(data.get("image") or ""),
            image_id=str(data.get("imageID") or data.get("image_id") or ""),
            container_id=str(data.get("containerID") or data.get("container_id") or ""),
        )


@dataclass(frozen=True)
class OwnerReference:
    """Controller or owner object of a pod (ReplicaSet, Job, ...)."""

    kind: str
    name: str
    uid: str

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "name": self.name, "uid": self.uid}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OwnerReference":
        return cls(
            kind=str(data.get("kind", "")),
            name=str(data.get("name", "")),
            uid=str(data.get("uid", "")),
        )


@dataclass(frozen=True)
class WorkloadDescriptor:
    """Resolved identity of exactly one workload.

    Parameters
    ----------
    namespace:
        Namespace the pod runs in.
    name:
        Pod name.
    uid:
        Cluster-assigned stable identifier of the pod.
    service_account:
        Service-account name the pod runs as.
    node_name:
        Node the pod is scheduled on; empty when not yet scheduled.
    containers:
        Statuses of the regular containers, in pod order.
    init_containers:
        Statuses of the init containers, in pod order.
    labels:
        Label pairs sorted by key.
    owners:
        Owner references in pod order.
    container:
        The workload container whose runtime ID matched the attested
        process, when resolution was by process ID.
    """

    namespace: str
    name: str
    uid: str
    service_account: str
    node_name: str = ""
    containers: tuple[ContainerStatus, ...] = ()
    init_containers: tuple[ContainerStatus, ...] = ()
    labels: tuple[tuple[str, str], ...] = ()
    owners: tuple[OwnerReference, ...] = ()
    container: Optional[ContainerStatus] = None

    @property
    def qualified_name(self) -> str:
        """Return ``"<namespace>/<name>"``."""
        return f"{self.namespace}/{self.name}"

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary."""
        return {
            "namespace": self.namespace,
            "name": self.name,
            "uid": self.uid,
            "service_account": self.service_account,
            "node_name": self.node_name,
            "containers": [c.to_dict() for c in self.containers],
            "init_containers": [c.to_dict() for c in self.init_containers],
            "labels": dict(self.labels),
            "owners": [o.to_dict() for o in self.owners],
            "container": self.container.to_dict() if self.container else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkloadDescriptor":
        """Rebuild a descriptor from the output of :meth:`to_dict`."""
        container = data.get("container")
        return cls(
            namespace=str(data.get("namespace", "")),
            name=str(data.get("name", "")),
            uid=str(data.get("uid", "")),
            service_account=str(data.get("service_account", "")),
            node_name=str(data.get("node_name", "")),
            containers=tuple(ContainerStatus.from_dict(c) for c in data.get("containers") or []),
            init_containers=tuple(
                ContainerStatus.from_dict(c) for c in data.get("init_containers") or []
            ),
            labels=tuple(sorted((str(k), str(v)) for k, v in (data.get("labels") or {}).items())),
            owners=tuple(OwnerReference.from_dict(o) for o in data.get("owners") or []),
            container=ContainerStatus.from_dict(container) if container else None,
        )


@dataclass(frozen=True)
class PodRecord:
    """A pod as listed or fetched from a pod directory."""

    namespace: str
    name: str
    uid: str = ""
    service_account: str = ""
    node_name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    owners: tuple[OwnerReference, ...] = ()
    containers: tuple[ContainerStatus, ...] = ()
    init_containers: tuple[ContainerStatus, ...] = ()
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def known(self) -> bool:
        """True once the control plane has assigned the pod a UID."""
        return bool(self.uid)

    def to_descriptor(self, container: Optional[ContainerStatus] = None) -> WorkloadDescriptor:
        """Normalize this record into a :class:`WorkloadDescriptor`."""
        return WorkloadDescriptor(
            namespace=self.namespace,
            name=self.name,
            uid=self.uid,
            service_account=self.service_account,
            node_name=self.node_name,
            containers=tuple(self.containers),
            init_containers=tuple(self.init_containers),
            labels=tuple(sorted(self.labels.items())),
            owners=tuple(self.owners),
            container=container,
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, object]:
        """Serialize using the cluster's JSON pod layout."""
        return {
            "metadata": {
                "namespace": self.namespace,
                "name": self.name,
                "uid": self.uid,
                "labels": dict(self.labels),
                "annotations": dict(self.annotations),
                "ownerReferences": [o.to_dict() for o in self.owners],
            },
            "spec": {
                "serviceAccountName": self.service_account,
                "nodeName": self.node_name,
            },
            "status": {
                "containerStatuses": [c.to_dict() for c in self.containers],
                "initContainerStatuses": [c.to_dict() for c in self.init_containers],
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PodRecord":
        """Build a record from the cluster's JSON pod representation.

        Missing sections are treated as empty, so a freshly created pod
        without a status still parses.
        """
        metadata = _mapping(data.get("metadata"))
        spec = _mapping(data.get("spec"))
        status = _mapping(data.get("status"))
        return cls(
            namespace=str(metadata.get("namespace") or ""),
            name=str(metadata.get("name") or ""),
            uid=str(metadata.get("uid") or ""),
            service_account=str(
                spec.get("serviceAccountName") or spec.get("serviceAccount") or ""
            ),
            node_name=str(spec.get("nodeName") or ""),
            labels={str(k): str(v) for k, v in _mapping(metadata.get("labels")).items()},
            owners=tuple(
                OwnerReference.from_dict(ref) for ref in metadata.get("ownerReferences") or []
            ),
            containers=tuple(
                ContainerStatus.from_dict(s) for s in status.get("containerStatuses") or []
            ),
            init_containers=tuple(
                ContainerStatus.from_dict(s) for s in status.get("initContainerStatuses") or []
            ),
            annotations={
                str(k): str(v) for k, v in _mapping(metadata.get("annotations")).items()
            },
        )
