"""
Content fetching through the shared browser.
Opens a page, renders the target with scripts enabled, returns the serialized DOM.
"""

import threading
from typing import Dict, Optional

from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright_stealth import Stealth

from proxy.core import (
    DEFAULT_USER_AGENT,
    NAV_TIMEOUT,
    READY_TIMEOUT,
    RENDER_QUEUE_TIMEOUT,
    setup_logger,
)
from proxy.models import TargetRequest
from proxy.url_utils import origin_of

logger = setup_logger("proxy.rendering")

_STEALTH = Stealth()

# Seconds allowed on top of the navigation and readiness limits for opening,
# patching, serializing and closing the page
PAGE_OVERHEAD = 5

class RenderError(Exception):
    """Base rendering exception."""
    pass

class RenderTimeoutError(RenderError):
    """Raised when navigation or the readiness wait exceeds its limit."""
    pass

class RenderExecutionError(RenderError):
    """Raised on browser, network or DNS failures while rendering."""
    pass

class RenderCancelledError(RenderError):
    """Raised when the owning request was cancelled before the render finished."""
    pass

class SessionStartupError(Exception):
    """
    The shared browser could not be launched, or has already been released.
    Process-level outage, not a per-request failure.
    """
    pass


def build_render_headers(target: TargetRequest) -> Dict[str, str]:
    origin = origin_of(target.url)
    return {
        "Accept-Encoding": "gzip, deflate, br",
        "User-Agent": target.caller_user_agent or DEFAULT_USER_AGENT,
        "Referer": origin,
        "Accept": "*/*",
        "Origin": origin,
    }


def _raise_if_cancelled(cancel: Optional[threading.Event], url: str):
    if cancel is not None and cancel.is_set():
        raise RenderCancelledError(f"render of {url} cancelled")


def render_page(session, target: TargetRequest, cancel: Optional[threading.Event] = None) -> str:
    """
    FLOW: Opens a page on the shared browser -> Applies stealth and outbound headers ->
    Navigates and waits for 'load' -> Waits for <body> -> Returns page.content().
    The page is closed on every path. Any failure raises a RenderError subclass.
    """
    headers = build_render_headers(target)

    def _render(browser, job_cancel):
        _raise_if_cancelled(job_cancel, target.url)
        page = browser.new_page(ignore_https_errors=True, user_agent=headers["User-Agent"])
        try:
            _STEALTH.apply_stealth_sync(page)
            page.set_extra_http_headers(headers)
            page.goto(target.url, wait_until="load", timeout=NAV_TIMEOUT * 1000)
            _raise_if_cancelled(job_cancel, target.url)
            page.wait_for_selector("body", timeout=READY_TIMEOUT * 1000)
            _raise_if_cancelled(job_cancel, target.url)
            return page.content()
        finally:
            page.close()

    # Clock starts when the browser thread picks the job up, not when it is queued
    page_limit = NAV_TIMEOUT + READY_TIMEOUT + PAGE_OVERHEAD
    try:
        html = session.run(_render, timeout=page_limit, cancel=cancel,
                           queue_timeout=RENDER_QUEUE_TIMEOUT)
    except RenderError:
        raise
    except PlaywrightTimeoutError as e:
        logger.warning(f"[RENDER] Timeout rendering {target.url}: {e}")
        raise RenderTimeoutError(str(e)) from e
    except Exception as e:
        logger.warning(f"[RENDER] Failed rendering {target.url}: {e}")
        raise RenderExecutionError(str(e)) from e

    logger.info(f"[RENDER] Rendered {target.url} ({len(html)} chars)")
    return html
