"""Shared fixtures and builders for workload_attestor tests."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

import jwt
import pytest

from workload_attestor.resolution.descriptor import ContainerStatus, OwnerReference, PodRecord

SIGNING_KEY = "test-signing-key-that-is-long-enough-for-hs256"

CONTAINER_ID_WEB = "a" * 64
CONTAINER_ID_DB = "b" * 64


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_pod(
    name: str = "web-7",
    namespace: str = "prod",
    uid: str = "uid-web-7",
    service_account: str = "web-sa",
    node_name: str = "node-1",
    labels: Optional[dict[str, str]] = None,
    container_id: str = "",
    image: str = "registry.local/web:1.0",
    image_id: str = "registry.local/web@sha256:0123",
    init_images: tuple[str, ...] = (),
    owners: tuple[OwnerReference, ...] = (),
) -> PodRecord:
    """Return a PodRecord with one workload container."""
    return PodRecord(
        namespace=namespace,
        name=name,
        uid=uid,
        service_account=service_account,
        node_name=node_name,
        labels=dict(labels if labels is not None else {"app": "web"}),
        owners=owners,
        containers=(
            ContainerStatus(
                name="main",
                image=image,
                image_id=image_id,
                container_id=f"containerd://{container_id}" if container_id else "",
            ),
        ),
        init_containers=tuple(
            ContainerStatus(name=f"init-{i}", image=ref) for i, ref in enumerate(init_images)
        ),
    )


def make_token(claims: Optional[dict[str, object]] = None) -> str:
    """Return a signed compact JWT carrying *claims*."""
    payload: dict[str, object] = {"sub": "system:serviceaccount:prod:web-sa"}
    if claims is not None:
        payload.update(claims)
    return jwt.encode(payload, SIGNING_KEY, algorithm="HS256")


def write_cgroup(proc_root: Path, pid: int, container_id: str) -> None:
    """Create ``<proc_root>/<pid>/cgroup`` naming *container_id*."""
    pid_dir = proc_root / str(pid)
    pid_dir.mkdir(parents=True, exist_ok=True)
    (pid_dir / "cgroup").write_text(
        "0::/kubepods.slice/kubepods-besteffort.slice/"
        f"kubepods-besteffort-pod1234.slice/cri-containerd-{container_id}.scope\n",
        encoding="utf-8",
    )


class FakeClock:
    """Deterministic clock; waits advance time instantly.

    ``on_wait`` is called with the 1-based wait number and the cancel
    event before the wait returns, so tests can cancel mid-loop.
    """

    def __init__(self, on_wait: Optional[Callable[[int, threading.Event], None]] = None) -> None:
        self.now = 0.0
        self.waits: list[float] = []
        self._on_wait = on_wait

    def monotonic(self) -> float:
        return self.now

    def wait(self, seconds: float, cancel: threading.Event) -> bool:
        self.waits.append(seconds)
        self.now += seconds
        if self._on_wait is not None:
            self._on_wait(len(self.waits), cancel)
        return cancel.is_set()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def proc_root(tmp_path: Path) -> Path:
    root = tmp_path / "proc"
    root.mkdir()
    return root
