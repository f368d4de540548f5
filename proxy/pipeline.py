"""
Per-request orchestration of the rendering proxy.

VALIDATE_METHOD -> VALIDATE_URL -> RENDER -> REWRITE_ABSOLUTE -> DISCOVER_ASSETS
-> MIRROR_ALL -> REWRITE_LOCAL -> INJECT_INSTRUMENTATION -> RESPOND

The first failing step decides the response. Asset failures never do.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from proxy.core import EMBEDDING_BLOCKING_HEADERS, LOCAL_ASSET_PREFIX, setup_logger
from proxy.mirror import AssetMirror, RequestCancelledError
from proxy.models import TargetRequest
from proxy.rewriter import inject_instrumentation, rewrite_absolute, rewrite_urls
from proxy.url_utils import is_fetchable, origin_of
from rendering import RenderError, SessionStartupError, get_session_manager, render_page

logger = setup_logger("proxy.pipeline")

METHOD_NOT_ALLOWED_MESSAGE = "Only GET requests are allowed."
INVALID_URL_MESSAGE = "Invalid URL."
PROXY_FAILURE_MESSAGE = "Failed to load page through proxy"
ENGINE_UNAVAILABLE_MESSAGE = "Rendering engine unavailable"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With",
    "Access-Control-Allow-Credentials": "true",
}


def embedding_headers() -> Dict[str, str]:
    """Allow-all CORS plus every embedding-blocking header set to empty."""
    headers = dict(CORS_HEADERS)
    for name in EMBEDDING_BLOCKING_HEADERS:
        headers[name] = ""
    return headers


@dataclass
class ProxyResponse:
    status: int
    body: Union[str, Dict[str, Any]]
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_html(self) -> bool:
        return isinstance(self.body, str)


def _error(status: int, message: str, details: Optional[str] = None, headers=None) -> ProxyResponse:
    body = {"status": "error", "message": message}
    if details is not None:
        body["details"] = details
    return ProxyResponse(status, body, dict(headers or {}))


class ProxyPipeline:
    """
    FLOW: Validates method and URL -> Renders through the shared browser ->
    Rewrites to the target origin and collects assets -> Mirrors assets ->
    Rewrites to the local prefix -> Appends instrumentation -> Builds the response.
    """

    def __init__(self, session_manager=None, mirror: Optional[AssetMirror] = None,
                 renderer=render_page, local_prefix: str = LOCAL_ASSET_PREFIX):
        self._sessions = session_manager if session_manager is not None else get_session_manager()
        self.mirror = mirror if mirror is not None else AssetMirror()
        self._render = renderer
        self._local_prefix = local_prefix

    def handle(self, method: str, url: Optional[str], user_agent: Optional[str] = None,
               cancel: Optional[threading.Event] = None) -> ProxyResponse:
        if method != "GET":
            return _error(405, METHOD_NOT_ALLOWED_MESSAGE)

        if not url or not is_fetchable(url):
            return _error(400, INVALID_URL_MESSAGE)

        target = TargetRequest(url=url, caller_user_agent=user_agent or None)
        headers = embedding_headers()

        try:
            session = self._sessions.acquire()
        except SessionStartupError as e:
            logger.critical(f"[PROXY] Browser session unavailable: {e}")
            return _error(503, ENGINE_UNAVAILABLE_MESSAGE, str(e), headers)

        try:
            html = self._process(session, target, cancel)
        except RenderError as e:
            return _error(500, PROXY_FAILURE_MESSAGE, str(e), headers)
        except RequestCancelledError as e:
            logger.info(f"[PROXY] {target.url}: {e}")
            return _error(500, PROXY_FAILURE_MESSAGE, str(e), headers)
        except Exception as e:
            logger.exception(f"[PROXY] Unexpected failure proxying {target.url}")
            return _error(500, PROXY_FAILURE_MESSAGE, str(e), headers)

        return ProxyResponse(200, html, headers)

    def _process(self, session, target: TargetRequest, cancel: Optional[threading.Event]) -> str:
        origin = origin_of(target.url)

        html = self._render(session, target, cancel)

        # Absolute pass; the references it matched are the assets to mirror
        html, assets = rewrite_absolute(html, origin)

        mirrored = self.mirror.mirror_all(assets, origin, cancel)
        failed = sum(1 for m in mirrored if not m.available)
        logger.info(f"[PROXY] {target.url}: {len(mirrored)} assets, {failed} unavailable")

        # Local pass, exactly once; a second application would double-prefix
        html = rewrite_urls(html, self._local_prefix)

        return inject_instrumentation(html)
