#!/usr/bin/env python3
"""
Minimal read-only HTTP status API.

- GET /status      per-module summary
- GET /api/health  liveness
"""

from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any


class _Handler(BaseHTTPRequestHandler):  # pylint: disable=invalid-name
    """HTTP handler for the status API."""
    server_version = "DevantechBridgeStatusAPI/0.1"

    def _send_json(self, status: int, payload: dict[str, Any]) -> None:
        """Send a JSON response with the given HTTP status."""
        raw = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(raw)))
        self.send_header("X-Content-Type-Options", "nosniff")
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self) -> None:  # pylint: disable=invalid-name
        """Serve /status and /api/health."""
        bridge = self.server.bridge  # type: ignore[attr-defined]
        path = self.path.rstrip("/")
        if path == "/status":
            self._send_json(200, bridge.get_status())
            return
        if path == "/api/health":
            self._send_json(200, bridge.get_health())
            return
        self._send_json(404, {"error": "not_found"})

    def log_message(self, _fmt: str, *args: Any) -> None:  # pylint: disable=arguments-differ
        """Keep stdout clean; bridge logs are elsewhere."""


class StatusAPIServer:
    """Thin wrapper around ThreadingHTTPServer with the status handler."""

    def __init__(self, *, host: str, port: int, bridge: Any):
        self.host = host
        self.port = port
        self.bridge = bridge
        self._thread: threading.Thread | None = None
        self._httpd: ThreadingHTTPServer | None = None

    @property
    def bound_port(self) -> int | None:
        if self._httpd is None:
            return None
        return int(self._httpd.server_address[1])

    def start(self) -> None:
        """Run the HTTP server in a background thread."""
        httpd = ThreadingHTTPServer((self.host, self.port), _Handler)
        httpd.bridge = self.bridge  # type: ignore[attr-defined]
        self._httpd = httpd

        t = threading.Thread(
            target=httpd.serve_forever,
            name="devantech-status-api",
            daemon=True)
        t.start()
        self._thread = t

    def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
