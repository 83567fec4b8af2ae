"""Convenience API for workload-attestor — wire config to a ready engine.

Example
-------
::

    from workload_attestor import AttestationRequest, build_engine, load_config
    engine = build_engine(load_config("attestor.json"))
    selectors = engine.resolve(AttestationRequest(pid=4242))

"""
from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

from workload_attestor.audit import AttestationAuditLogger
from workload_attestor.config import AttestorConfig, ResolutionMode
from workload_attestor.kube.client import (
    ApiClientLoader,
    ClusterClientFactory,
    KubePodDirectory,
    KubeTokenReviewer,
    load_api_client,
)
from workload_attestor.resolution.engine import Clock, ResolutionEngine


def build_audit_logger(config: AttestorConfig) -> AttestationAuditLogger:
    """Return a file-backed audit logger when configured, else an in-memory one."""
    path = Path(config.audit_log_path) if config.audit_log_path else None
    return AttestationAuditLogger(log_path=path)


def build_engine(
    config: AttestorConfig,
    environ: Optional[Mapping[str, str]] = None,
    loader: ApiClientLoader = load_api_client,
    clock: Optional[Clock] = None,
) -> ResolutionEngine:
    """Build a cluster-backed :class:`ResolutionEngine` for *config*.

    The API client is not created here; the first attestation creates it.

    Parameters
    ----------
    config:
        Attestor configuration.
    environ:
        Environment for cluster discovery (defaults to ``os.environ``).
    loader:
        API client loader; replaceable in tests.
    clock:
        Time source for the retry loop.
    """
    factory = ClusterClientFactory(config.cluster, environ=environ, loader=loader)
    directory = KubePodDirectory(factory)
    reviewer = (
        KubeTokenReviewer(factory) if config.mode == ResolutionMode.CREDENTIAL_LOOKUP else None
    )
    return ResolutionEngine.from_config(
        config,
        directory,
        reviewer=reviewer,
        clock=clock,
        audit=build_audit_logger(config),
    )
