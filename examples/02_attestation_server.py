#!/usr/bin/env python3
"""Example: Attestation server against a live cluster

Builds a cluster-backed engine from a JSON configuration file and serves
``POST /attest`` and ``GET /health``.

Usage:
    python examples/02_attestation_server.py attestor.json

    curl -s localhost:8080/attest -d '{"credential_meta": {"token": "..."}}'

Requirements:
    pip install workload-attestor
    A kubeconfig (or in-cluster service account) allowed to list pods and
    create TokenReviews.
"""
from __future__ import annotations

import logging
import sys

from workload_attestor import build_engine, load_config
from workload_attestor.server import run_server


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    config = load_config(sys.argv[1] if len(sys.argv) > 1 else None)
    print(f"Mode: {config.mode.value}, max attempts: {config.max_attempts}")
    run_server(build_engine(config), host="127.0.0.1", port=8080, request_timeout=30.0)


if __name__ == "__main__":
    main()
