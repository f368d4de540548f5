"""
Flask HTTP surface for the rendering proxy.
GET /?url=<absolute url>   rendered, rewritten page
GET /assets/<name>         a mirrored asset, looked up by basename
"""

import posixpath
import select
import socket
import threading
from datetime import datetime, timezone

from flask import Flask, Response, g, jsonify, request, send_from_directory
from flask_cors import CORS

from proxy.core import LOCAL_ASSET_PREFIX, setup_logger
from proxy.mirror import asset_filename
from proxy.pipeline import ProxyPipeline

logger = setup_logger("proxy.http")

# Only these get an access log line, like morgan's skip: status < 405
ACCESS_LOG_MIN_STATUS = 405

# How often an in-flight request checks whether its client is still there
DISCONNECT_POLL_INTERVAL = 0.1

# WSGI servers that expose the client socket
_SOCKET_ENVIRON_KEYS = ("werkzeug.socket", "gunicorn.socket")


def client_disconnected(environ) -> bool:
    """
    True once the peer has closed the connection: the socket turns readable
    and a peek returns no bytes. Unknown servers never report a disconnect.
    """
    sock = next((environ[k] for k in _SOCKET_ENVIRON_KEYS if environ.get(k) is not None), None)
    if sock is None:
        return False
    try:
        readable, _, _ = select.select([sock], [], [], 0)
        if not readable:
            return False
        return sock.recv(1, socket.MSG_PEEK) == b""
    except (OSError, ValueError):
        return True


class ConnectionWatcher(threading.Thread):
    """
    FLOW: Polls the client socket while a request is being handled ->
    Sets the request's cancel token when the client goes away -> Exits on stop().
    """
    def __init__(self, environ, cancel: threading.Event, interval: float = DISCONNECT_POLL_INTERVAL):
        super().__init__(daemon=True, name="ConnectionWatcher")
        self.environ = environ
        self.cancel = cancel
        self.interval = interval
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self.interval):
            if self.cancel.is_set():
                return
            if client_disconnected(self.environ):
                logger.info("[HTTP] Client disconnected, cancelling in-flight work")
                self.cancel.set()
                return

    def stop(self):
        self._stopped.set()


def create_app(pipeline: ProxyPipeline = None) -> Flask:
    pipeline = pipeline if pipeline is not None else ProxyPipeline()
    cache_dir = pipeline.mirror.cache_dir

    app = Flask(__name__)

    CORS(
        app,
        origins="*",
        methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        supports_credentials=True,
    )

    @app.before_request
    def _bind_cancel_token():
        # Set when the request ends, so abandoned work stops
        g.cancel = threading.Event()

    @app.teardown_request
    def _cancel_outstanding_work(exc):
        cancel = g.pop("cancel", None)
        if cancel is not None:
            cancel.set()

    @app.after_request
    def _access_log(response):
        if response.status_code >= ACCESS_LOG_MIN_STATUS:
            logger.warning(
                f'[HTTP] {request.remote_addr} - - [{datetime.now(timezone.utc):%d/%b/%Y:%H:%M:%S +0000}] '
                f'"{request.method} {request.full_path.rstrip("?")} {request.environ.get("SERVER_PROTOCOL", "HTTP/1.1")}" '
                f'{response.status_code} {response.calculate_content_length() or "-"} '
                f'"{request.referrer or "-"}" "{request.user_agent.string or "-"}"'
            )
        return response

    @app.route("/", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def proxy():
        cancel = g.get("cancel")
        watcher = ConnectionWatcher(request.environ, cancel)
        watcher.start()
        try:
            result = pipeline.handle(
                request.method,
                request.args.get("url"),
                user_agent=request.headers.get("User-Agent"),
                cancel=cancel,
            )
        finally:
            watcher.stop()
        if result.is_html:
            response = Response(result.body, status=result.status, mimetype="text/html")
        else:
            response = jsonify(result.body)
            response.status_code = result.status
        for name, value in result.headers.items():
            response.headers[name] = value
        return response

    @app.route(f"{LOCAL_ASSET_PREFIX}/<path:asset_path>", methods=["GET"])
    def mirrored_asset(asset_path):
        name = asset_filename(posixpath.join("/", asset_path))
        if not name:
            return jsonify({"status": "error", "message": "Asset not found."}), 404
        return send_from_directory(cache_dir, name)

    logger.info(f"[HTTP] Registered routes: {sorted(r.rule for r in app.url_map.iter_rules())}")
    return app
