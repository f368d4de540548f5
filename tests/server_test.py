"""
HTTP surface: status codes and JSON bodies, header policy, CORS preflight,
cancel-token lifetime, and mirrored asset serving.
"""

import socket
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from proxy.core import EMBEDDING_BLOCKING_HEADERS
from proxy.mirror import AssetMirror
from proxy.pipeline import ProxyPipeline
from proxy.server import ConnectionWatcher, client_disconnected, create_app
from rendering.engine import RenderExecutionError

class ServerTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.cache_dir = Path(self._tmp.name)
        self.renderer = MagicMock(return_value="<html><body>ok</body></html>")
        self.pipeline = ProxyPipeline(
            session_manager=MagicMock(),
            mirror=AssetMirror(cache_dir=self.cache_dir),
            renderer=self.renderer,
        )
        self.app = create_app(self.pipeline)
        self.client = self.app.test_client()

    def tearDown(self):
        self._tmp.cleanup()

class TestProxyRoute(ServerTestCase):
    def test_get_returns_rendered_html(self):
        resp = self.client.get("/?url=https://example.com/", headers={"User-Agent": "CallerAgent/2.0"})

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.content_type.startswith("text/html"))
        body = resp.get_data(as_text=True)
        self.assertTrue(body.startswith("<html><body>ok</body></html>"))
        self.assertIn("unhandledrejection", body)
        self.assertEqual(self.renderer.call_args.args[1].caller_user_agent, "CallerAgent/2.0")

    def test_embedding_headers_blank_and_origin_open(self):
        resp = self.client.get("/?url=https://example.com/")
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")
        for name in EMBEDDING_BLOCKING_HEADERS:
            self.assertEqual(resp.headers.get(name), "")

    def test_non_get_is_405_json(self):
        for call in (self.client.post, self.client.put, self.client.delete):
            resp = call("/?url=https://example.com/")
            self.assertEqual(resp.status_code, 405)
            self.assertEqual(resp.get_json(), {"status": "error", "message": "Only GET requests are allowed."})

    def test_invalid_url_is_400_json(self):
        for path in ("/", "/?url=", "/?url=ftp://example.com/file", "/?url=not-a-url"):
            resp = self.client.get(path)
            self.assertEqual(resp.status_code, 400)
            self.assertEqual(resp.get_json(), {"status": "error", "message": "Invalid URL."})

    def test_render_failure_is_500_json(self):
        self.renderer.side_effect = RenderExecutionError("net::ERR_CONNECTION_REFUSED")
        resp = self.client.get("/?url=https://example.com/")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json(), {
            "status": "error",
            "message": "Failed to load page through proxy",
            "details": "net::ERR_CONNECTION_REFUSED",
        })

    def test_preflight_advertises_get(self):
        resp = self.client.options("/", headers={
            "Origin": "https://embedder.example",
            "Access-Control-Request-Method": "GET",
        })
        self.assertEqual(resp.status_code, 200)
        self.assertIn("GET", resp.headers["Access-Control-Allow-Methods"])
        self.assertIsNotNone(resp.headers.get("Access-Control-Allow-Origin"))

    def test_cancel_token_set_when_request_ends(self):
        self.client.get("/?url=https://example.com/")
        cancel = self.renderer.call_args.args[2]
        self.assertTrue(cancel.is_set())

    def test_error_responses_are_access_logged(self):
        with self.assertLogs("proxy.http", level="WARNING") as logs:
            self.client.post("/?url=https://example.com/")
        self.assertTrue(any('"POST /?url=https://example.com/' in line and " 405 " in line for line in logs.output))

class TestClientDisconnect(ServerTestCase):
    def setUp(self):
        super().setUp()
        self.server_side, self.client_side = socket.socketpair()
        self.addCleanup(self.server_side.close)
        self.addCleanup(self.client_side.close)

    def test_render_sees_cancel_after_client_hangs_up(self):
        observed = {}

        def render(session, target, cancel):
            self.client_side.close()
            observed["cancelled"] = cancel.wait(2)
            return "<html><body>late</body></html>"

        self.renderer.side_effect = render
        self.client.get("/?url=https://example.com/", environ_base={"werkzeug.socket": self.server_side})

        self.assertTrue(observed["cancelled"])

    def test_connected_client_is_not_cancelled(self):
        observed = {}

        def render(session, target, cancel):
            observed["cancelled"] = cancel.wait(0.3)
            return "<html><body>ok</body></html>"

        self.renderer.side_effect = render
        resp = self.client.get("/?url=https://example.com/", environ_base={"werkzeug.socket": self.server_side})

        self.assertEqual(resp.status_code, 200)
        self.assertFalse(observed["cancelled"])

    def test_client_disconnected(self):
        environ = {"werkzeug.socket": self.server_side}
        self.assertFalse(client_disconnected({}))
        self.assertFalse(client_disconnected(environ))

        # Pipelined bytes are not a hang-up
        self.client_side.sendall(b"GET")
        self.assertFalse(client_disconnected(environ))

        self.client_side.close()
        self.server_side.recv(3)
        self.assertTrue(client_disconnected(environ))

    def test_watcher_stops_without_cancelling(self):
        cancel = threading.Event()
        watcher = ConnectionWatcher({"werkzeug.socket": self.server_side}, cancel, interval=0.01)
        watcher.start()
        watcher.stop()
        watcher.join(1)
        self.assertFalse(watcher.is_alive())
        self.assertFalse(cancel.is_set())

class TestAssetRoute(ServerTestCase):
    def test_serves_mirrored_file(self):
        (self.cache_dir / "app.js").write_bytes(b"console.log(1)")
        resp = self.client.get("/assets/app.js")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_data(), b"console.log(1)")
        resp.close()

    def test_nested_path_resolves_by_basename(self):
        (self.cache_dir / "logo.png").write_bytes(b"png")
        resp = self.client.get("/assets/img/logo.png")
        self.assertEqual(resp.status_code, 200)
        resp.close()

    def test_missing_asset_is_404(self):
        self.assertEqual(self.client.get("/assets/nope.css").status_code, 404)

if __name__ == "__main__":
    unittest.main()
