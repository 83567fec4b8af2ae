"""HTTP server mode for workload-attestor.

Exposes ``POST /attest`` and ``GET /health`` on top of a
:class:`~workload_attestor.resolution.engine.ResolutionEngine` using only
the stdlib HTTP server.
"""
from __future__ import annotations

from workload_attestor.server.app import AttestorHandler, AttestorHTTPServer, create_server, run_server

__all__ = ["AttestorHandler", "AttestorHTTPServer", "create_server", "run_server"]
