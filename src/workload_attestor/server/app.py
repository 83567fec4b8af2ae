"""HTTP server for workload-attestor using stdlib http.server.

Routes:
    POST   /attest   — resolve a process ID or credential to selectors
    GET    /health   — health check

Each request is served on its own thread, so concurrent attestations run
independent retry loops against the shared engine.

Usage:
    python -m workload_attestor.server.app --config attestor.json --port 8080
"""
from __future__ import annotations

import argparse
import json
import logging
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from workload_attestor.resolution.engine import ResolutionEngine
from workload_attestor.server import routes

logger = logging.getLogger(__name__)


class AttestorHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server that carries the engine its handlers use."""

    daemon_threads = True

    def __init__(
        self,
        server_address: tuple[str, int],
        engine: ResolutionEngine,
        request_timeout: float | None = None,
    ) -> None:
        self.engine = engine
        self.request_timeout = request_timeout
        super().__init__(server_address, AttestorHandler)


class AttestorHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the workload-attestor server."""

    server: AttestorHTTPServer

    def log_message(self, format: str, *args: object) -> None:
        """Override to route access logs through the Python logging system."""
        logger.debug(format, *args)

    # ── GET ───────────────────────────────────────────────────────────────────

    def do_GET(self) -> None:
        """Handle all GET requests by routing on the URL path."""
        path = urllib.parse.urlparse(self.path).path.rstrip("/")

        if path == "/health":
            status, data = routes.handle_health(self.server.engine)
            self._send_json(status, data)
        else:
            self._send_json(404, {"error": "Not found", "detail": f"No route for GET {path}"})

    # ── POST ──────────────────────────────────────────────────────────────────

    def do_POST(self) -> None:
        """Handle all POST requests by routing on the URL path."""
        path = urllib.parse.urlparse(self.path).path.rstrip("/")

        body = self._read_json_body()
        if body is None:
            return

        if path == "/attest":
            status, data = routes.handle_attest(
                self.server.engine, body, timeout=self.server.request_timeout
            )
            self._send_json(status, data)
        else:
            self._send_json(404, {"error": "Not found", "detail": f"No route for POST {path}"})

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _send_json(self, status: int, data: dict[str, object]) -> None:
        """Serialize *data* to JSON and send an HTTP response with *status*."""
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_json_body(self) -> dict[str, object] | None:
        """Read and parse the JSON request body.

        Returns None (and sends a 400 error response) if parsing fails.
        """
        content_length = int(self.headers.get("Content-Length", 0))
        if content_length == 0:
            return {}

        raw = self.rfile.read(content_length)
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            self._send_json(400, {"error": "Invalid JSON", "detail": str(exc)})
            return None
        if not isinstance(parsed, dict):
            self._send_json(400, {"error": "Invalid JSON", "detail": "body must be an object"})
            return None
        return parsed


def create_server(
    engine: ResolutionEngine,
    host: str = "127.0.0.1",
    port: int = 8080,
    request_timeout: float | None = None,
) -> AttestorHTTPServer:
    """Create (but do not start) the workload-attestor HTTP server.

    Parameters
    ----------
    engine:
        Engine used for every attestation.
    host:
        Bind address.
    port:
        TCP port to listen on; 0 picks a free port.
    request_timeout:
        Optional bound on each attestation in seconds.
    """
    server = AttestorHTTPServer((host, port), engine, request_timeout=request_timeout)
    logger.info("workload-attestor server created at http://%s:%d", host, server.server_port)
    return server


def run_server(
    engine: ResolutionEngine,
    host: str = "127.0.0.1",
    port: int = 8080,
    request_timeout: float | None = None,
) -> None:
    """Create and run the workload-attestor HTTP server (blocking)."""
    server = create_server(engine, host=host, port=port, request_timeout=request_timeout)
    logger.info("Serving workload-attestor on http://%s:%d, press Ctrl-C to stop", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down workload-attestor server.")
    finally:
        server.server_close()


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="workload-attestor HTTP server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=Path, default=None, help="JSON configuration file")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8080, help="TCP port")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


if __name__ == "__main__":
    from workload_attestor.convenience import build_engine
    from workload_attestor.config import load_config

    args = _build_arg_parser().parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level))
    run_server(build_engine(load_config(args.config)), host=args.host, port=args.port)
