# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring,protected-access
# pylint: disable=unused-argument,too-few-public-methods,no-member,use-implicit-booleaness-not-comparison,line-too-long
# pylint: disable=invalid-name,too-many-statements,too-many-instance-attributes,wrong-import-position,wrong-import-order
# pylint: disable=deprecated-module,too-many-locals,too-many-lines,attribute-defined-outside-init,unexpected-keyword-arg
# pylint: disable=duplicate-code
import io
import json
from types import SimpleNamespace
from unittest.mock import patch

from status_api import StatusAPIServer, _Handler


class DummyBridge:
    def get_status(self):
        return {
            "192168001005": {
                "address": "192.168.1.5",
                "relayCount": 32,
                "switchCount": 8,
                "connected": True,
            }
        }

    def get_health(self):
        return {"ok": True, "modules": 1, "mqtt": False}


class _TestHandler(_Handler):
    def __init__(self, request_bytes: bytes, server):
        # pylint: disable=super-init-not-called
        # BaseRequestHandler.__init__ requires a real socket; tests use in-memory streams.
        self.rfile = io.BytesIO(request_bytes)
        self.wfile = io.BytesIO()
        self.raw_requestline = self.rfile.readline()
        self.error_code = self.error_message = None
        self.server = server
        self.request_version = "HTTP/1.1"
        self.close_connection = True
        if not self.parse_request():
            return
        if self.command == "GET":
            self.do_GET()


def _request(path: str):
    raw = f"GET {path} HTTP/1.1\r\n\r\n".encode("utf-8")
    server = SimpleNamespace(bridge=DummyBridge())
    handler = _TestHandler(raw, server)
    response = handler.wfile.getvalue()
    header_part, body_part = response.split(b"\r\n\r\n", 1)
    status_line = header_part.split(b"\r\n", 1)[0].decode("utf-8")
    status = int(status_line.split(" ")[1])
    return status, json.loads(body_part.decode("utf-8"))


def test_status_endpoint():
    status, payload = _request("/status")
    assert status == 200
    module = payload["192168001005"]
    assert module["address"] == "192.168.1.5"
    assert module["relayCount"] == 32
    assert module["connected"] is True


def test_status_endpoint_trailing_slash():
    status, _payload = _request("/status/")
    assert status == 200


def test_health_endpoint():
    status, payload = _request("/api/health")
    assert status == 200
    assert payload["ok"] is True


def test_not_found():
    status, payload = _request("/nope")
    assert status == 404
    assert payload["error"] == "not_found"


def test_stop_without_start():
    server = StatusAPIServer(host="127.0.0.1", port=0, bridge=DummyBridge())
    assert server.bound_port is None
    server.stop()


def test_start_and_stop():
    bridge = DummyBridge()
    server = StatusAPIServer(host="127.0.0.1", port=0, bridge=bridge)

    class DummyHTTPD:
        def __init__(self, *_args, **_kwargs):
            self.bridge = None
            self.server_address = ("127.0.0.1", 18080)

        def serve_forever(self):
            return None

        def shutdown(self):
            return None

        def server_close(self):
            return None

    with patch("status_api.ThreadingHTTPServer", DummyHTTPD):
        server.start()
        assert server._httpd.bridge is bridge
        assert server.bound_port == 18080
        server.stop()
        assert server._httpd is None
