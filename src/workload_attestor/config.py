"""Attestor configuration — immutable pydantic models loaded once at startup.

:class:`AttestorConfig` is built explicitly (from a mapping or a JSON
file) and passed to whatever needs it. Nothing here reads flags or keeps
process-wide state; environment lookups take the environment as an
argument.

Example
-------
::

    {
      "mode": "credential-lookup",
      "max_attempts": 30,
      "retry_interval_seconds": 2,
      "cluster": {"kubeconfig": "/etc/attestor/kubeconfig"}
    }
"""
from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class ResolutionMode(str, Enum):
    """How the attestor locates the workload behind a request."""

    PROCESS_LOOKUP = "process-lookup"
    CREDENTIAL_LOOKUP = "credential-lookup"


DEFAULT_MAX_ATTEMPTS = 60
DEFAULT_RETRY_INTERVALS: dict[ResolutionMode, float] = {
    ResolutionMode.PROCESS_LOOKUP: 0.5,
    ResolutionMode.CREDENTIAL_LOOKUP: 1.0,
}


class ConfigError(ValueError):
    """Raised when a configuration file cannot be read or validated."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration {source}: {reason}")


class ClusterConnectionConfig(BaseModel):
    """How to reach the cluster API server."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    in_cluster: Optional[bool] = None
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    audiences: tuple[str, ...] = ()

    def resolve_in_cluster(self, environ: Mapping[str, str]) -> bool:
        """Return the explicit ``in_cluster`` setting, else detect it from *environ*."""
        if self.in_cluster is not None:
            return self.in_cluster
        return "KUBERNETES_PORT" in environ

    def resolve_kubeconfig(self, environ: Mapping[str, str]) -> Optional[str]:
        """Return the kubeconfig path to use for an out-of-cluster connection.

        Order: explicit setting, ``KUBECONFIG``, then ``.kube/config`` under
        ``HOME`` (``USERPROFILE`` on Windows).
        """
        if self.kubeconfig:
            return self.kubeconfig
        if environ.get("KUBECONFIG"):
            return environ["KUBECONFIG"]
        home = environ.get("HOME") or environ.get("USERPROFILE")
        if home:
            return os.path.join(home, ".kube", "config")
        return None


class AttestorConfig(BaseModel):
    """Configuration consumed by the resolution engine and its adapters."""

    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=False)

    mode: ResolutionMode = ResolutionMode.PROCESS_LOOKUP
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    retry_interval_seconds: Optional[float] = Field(default=None, gt=0)
    token_meta_key: str = Field(default="token", min_length=1)
    pod_name_claim: str = Field(default="pod-name", min_length=1)
    allow_fallback_token: bool = False
    fallback_token: Optional[str] = None
    proc_root: str = "/proc"
    audit_log_path: Optional[str] = None
    cluster: ClusterConnectionConfig = Field(default_factory=ClusterConnectionConfig)

    @model_validator(mode="after")
    def _check_fallback_token(self) -> "AttestorConfig":
        if self.allow_fallback_token and not self.fallback_token:
            raise ValueError("allow_fallback_token requires fallback_token to be set")
        return self

    @property
    def retry_interval(self) -> float:
        """Seconds between attempts; defaults depend on :attr:`mode`."""
        if self.retry_interval_seconds is not None:
            return self.retry_interval_seconds
        return DEFAULT_RETRY_INTERVALS[self.mode]

    @property
    def effective_fallback_token(self) -> Optional[str]:
        """The fallback token, only when explicitly allowed."""
        return self.fallback_token if self.allow_fallback_token else None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], source: str = "<mapping>") -> "AttestorConfig":
        """Validate *data*, raising :class:`ConfigError` on failure."""
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ConfigError(source, str(exc)) from exc


def load_config(path: Path | str | None = None) -> AttestorConfig:
    """Load an :class:`AttestorConfig` from a JSON file.

    Parameters
    ----------
    path:
        JSON file to read. ``None`` returns the defaults.

    Raises
    ------
    ConfigError
        When the file is unreadable, not JSON, or fails validation.
    """
    if path is None:
        return AttestorConfig()
    source = str(path)
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(source, str(exc)) from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(source, f"not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(source, "top-level value must be a JSON object")
    return AttestorConfig.from_mapping(data, source=source)
