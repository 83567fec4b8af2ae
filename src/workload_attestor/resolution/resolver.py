"""Pod matching — scan a pod listing or look up one pod by name.

Two strategies locate the pod behind an attestation request:

- :func:`find_by_discriminant` scans a full listing and applies a
  candidacy predicate to every pod. It is the only option when the
  discriminant is a process ID, which the control plane cannot address.
- :func:`get_by_name` fetches one pod by namespace and name, used once a
  trusted claim has already named the pod.

A scan that finds two or more distinct candidates reports the match as
ambiguous and returns no descriptor. Picking one would hand one
workload's identity to another.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from workload_attestor.resolution.descriptor import ContainerStatus, PodRecord, WorkloadDescriptor
from workload_attestor.resolution.directory import PodDirectory
from workload_attestor.resolution.errors import ClaimMismatchError, WorkloadNotFoundError

logger = logging.getLogger(__name__)

CandidatePredicate = Callable[[PodRecord], Optional[WorkloadDescriptor]]

_CONTAINER_ID_PATTERN = re.compile(r"([0-9a-f]{64})")


@dataclass
class MatchResult:
    """Outcome of scanning a pod listing.

    Parameters
    ----------
    descriptor:
        The unique matching workload, or ``None`` when nothing matched or
        the match was ambiguous.
    ambiguous:
        ``True`` when two or more distinct pods matched.
    candidates:
        Qualified names of the distinct pods that matched.
    """

    descriptor: Optional[WorkloadDescriptor] = None
    ambiguous: bool = False
    candidates: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.descriptor is not None


def known_pod(pod: PodRecord) -> Optional[WorkloadDescriptor]:
    """Candidacy rule: any pod the control plane has assigned a UID."""
    if not pod.known:
        return None
    return pod.to_descriptor()


def find_by_discriminant(
    pods: Iterable[PodRecord],
    predicate: CandidatePredicate = known_pod,
) -> MatchResult:
    """Scan *pods* and return the single pod accepted by *predicate*.

    Parameters
    ----------
    pods:
        The listing to scan.
    predicate:
        Returns a descriptor for a candidate pod and ``None`` otherwise.

    Returns
    -------
    MatchResult
        Listing the same pod twice (same UID) is one candidate; a second
        distinct UID aborts the scan with ``ambiguous=True``.
    """
    match: Optional[WorkloadDescriptor] = None
    for pod in pods:
        descriptor = predicate(pod)
        if descriptor is None:
            continue
        if match is None:
            match = descriptor
            continue
        if descriptor.uid != match.uid:
            candidates = [match.qualified_name, descriptor.qualified_name]
            logger.warning("Two pods match the same workload: %s", ", ".join(candidates))
            return MatchResult(ambiguous=True, candidates=candidates)
    if match is None:
        return MatchResult()
    return MatchResult(descriptor=match, candidates=[match.qualified_name])


# ---------------------------------------------------------------------------
# Process-based candidacy
# ---------------------------------------------------------------------------


def container_id_from_cgroup(text: str) -> Optional[str]:
    """Return the runtime container ID embedded in a cgroup listing.

    Handles both cgroup v1 (``.../kubepods/.../<id>``) and the systemd
    driver layout (``.../cri-containerd-<id>.scope``). The last ID on the
    last matching line wins.
    """
    found: Optional[str] = None
    for line in text.splitlines():
        ids = _CONTAINER_ID_PATTERN.findall(line.rsplit(":", 1)[-1])
        if ids:
            found = ids[-1]
    return found


def _runtime_id(container_id: str) -> str:
    """Strip the ``<runtime>://`` scheme from a status container ID."""
    return container_id.rsplit("/", 1)[-1]


class ProcessMatcher:
    """Candidacy predicate matching a node-local process to its pod.

    The process's cgroup names the container it runs in; a pod is a
    candidate when one of its container or init-container statuses
    carries that container ID. The matched status is attached to the
    descriptor so container selectors can be emitted.

    Parameters
    ----------
    pid:
        Process ID local to the node.
    proc_root:
        Mount point of the host's procfs.
    """

    def __init__(self, pid: int, proc_root: Path | str = "/proc") -> None:
        self.pid = pid
        self.proc_root = Path(proc_root)
        self.container_id = self._read_container_id()

    def _read_container_id(self) -> Optional[str]:
        cgroup_path = self.proc_root / str(self.pid) / "cgroup"
        try:
            text = cgroup_path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.debug("Cannot read %s: %s", cgroup_path, exc)
            return None
        return container_id_from_cgroup(text)

    def find_container(self, pod: PodRecord) -> Optional[ContainerStatus]:
        if self.container_id is None:
            return None
        for status in (*pod.containers, *pod.init_containers):
            if status.container_id and _runtime_id(status.container_id) == self.container_id:
                return status
        return None

    def __call__(self, pod: PodRecord) -> Optional[WorkloadDescriptor]:
        if not pod.known:
            return None
        status = self.find_container(pod)
        if status is None:
            return None
        return pod.to_descriptor(container=status)


# ---------------------------------------------------------------------------
# Targeted lookup
# ---------------------------------------------------------------------------


def get_by_name(directory: PodDirectory, namespace: str, name: str) -> WorkloadDescriptor:
    """Fetch the pod *namespace*/*name* and normalize it.

    Raises
    ------
    WorkloadNotFoundError
        When the directory does not (yet) know the pod. Retryable.
    ClaimMismatchError
        When the directory answers with a different pod. Not retryable.
    """
    claimed = f"{namespace}/{name}"
    pod = directory.get_pod(namespace, name)
    if pod is None:
        raise WorkloadNotFoundError(f"pod {claimed} not found")
    if pod.namespace != namespace or pod.name != name:
        raise ClaimMismatchError(claimed=claimed, found=pod.qualified_name)
    if not pod.known:
        raise WorkloadNotFoundError(f"pod {claimed} has no UID yet")
    return pod.to_descriptor()
