"""
Process-wide browser session.
Playwright's sync API is bound to the thread that started it, so the browser
lives on one DEDICATED THREAD and request threads hand it RenderJobs through
a queue. Launch happens at most once, under a lock.
"""

import queue
import threading
import time
from typing import Optional

from playwright.sync_api import sync_playwright

from proxy.core import BROWSER_ARGS, BROWSER_LAUNCH_TIMEOUT, RENDER_QUEUE_TIMEOUT, setup_logger
from rendering.engine import RenderCancelledError, RenderTimeoutError, SessionStartupError
from rendering.models import RenderJob, SessionState

logger = setup_logger("proxy.session")

# How often a waiting request thread re-checks its cancel token
_POLL_INTERVAL = 0.1


class BrowserSession:
    """
    FLOW: Spawns the browser thread -> Thread starts Playwright and launches headless Chromium ->
    Serves RenderJobs from the queue until a poison pill -> Closes browser and Playwright.
    """

    def __init__(self, playwright_factory=sync_playwright, launch_args=None,
                 launch_timeout: float = BROWSER_LAUNCH_TIMEOUT):
        self._factory = playwright_factory
        self._launch_args = list(launch_args if launch_args is not None else BROWSER_ARGS)
        self._launch_timeout = launch_timeout
        self._jobs: "queue.Queue[Optional[RenderJob]]" = queue.Queue()
        self._ready = threading.Event()
        self._launch_error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None
        self.browser = None
        # Jobs submitted but not yet finished
        self._pending = 0
        self._pending_lock = threading.Lock()

    def start(self):
        self._thread = threading.Thread(target=self._run, daemon=True, name="BrowserSession")
        self._thread.start()
        if not self._ready.wait(timeout=self._launch_timeout):
            self._jobs.put(None)
            raise SessionStartupError(f"browser did not start within {self._launch_timeout}s")
        if self._launch_error is not None:
            raise SessionStartupError(str(self._launch_error)) from self._launch_error

    def _run(self):
        try:
            playwright = self._factory().start()
            try:
                browser = playwright.chromium.launch(headless=True, args=self._launch_args)
            except Exception:
                playwright.stop()
                raise
        except Exception as e:
            logger.critical(f"[SESSION] Browser launch failed: {e}")
            self._launch_error = e
            self._ready.set()
            return

        self.browser = browser
        logger.info("[SESSION] Headless browser started.")
        self._ready.set()

        try:
            while True:
                job = self._jobs.get()
                if job is None:  # Poison pill
                    break
                self._execute(job, browser)
        finally:
            try:
                browser.close()
                playwright.stop()
            except Exception as e:
                logger.error(f"[SESSION] Error while closing browser: {e}")
            logger.info("[SESSION] Headless browser stopped.")

    def _execute(self, job: RenderJob, browser):
        job.started.set()
        try:
            if job.cancel.is_set():
                raise RenderCancelledError("render cancelled before it started")
            job.result = job.fn(browser, job.cancel)
        except Exception as e:
            job.error = e
        finally:
            with self._pending_lock:
                self._pending -= 1
            job.done.set()

    @staticmethod
    def _wait_for(job: RenderJob, event: threading.Event, deadline: float, on_expiry: str):
        while not event.wait(_POLL_INTERVAL):
            if job.cancel.is_set():
                raise RenderCancelledError("request cancelled while waiting for the browser")
            if time.monotonic() >= deadline:
                job.cancel.set()
                raise RenderTimeoutError(on_expiry)

    def run(self, fn, timeout: float, cancel: Optional[threading.Event] = None,
            queue_timeout: float = RENDER_QUEUE_TIMEOUT):
        """
        Runs fn(browser, cancel) on the browser thread and blocks until it returns.

        timeout bounds the job itself and starts when the browser thread picks
        it up. While queued, the wait is bounded by queue_timeout plus one
        timeout for every job already ahead of this one, so a request is not
        failed for time spent behind renders that stayed within their own limit.
        Stops waiting, and cancels the job, when a bound expires or cancel is set.
        """
        with self._pending_lock:
            ahead = self._pending
            self._pending += 1
        job = RenderJob(fn, cancel)
        self._jobs.put(job)

        queue_limit = queue_timeout + ahead * timeout
        self._wait_for(job, job.started, time.monotonic() + queue_limit,
                       f"render job was not started within {queue_limit}s")
        self._wait_for(job, job.done, time.monotonic() + timeout,
                       f"render job did not finish within {timeout}s")

        if job.error is not None:
            raise job.error
        return job.result

    def close(self, timeout: float = 10):
        self._jobs.put(None)
        if self._thread is not None:
            self._thread.join(timeout=timeout)


class BrowserSessionManager:
    """
    Owns the one BrowserSession of the process.
    UNINITIALIZED -> READY on first acquire(); FAILED if the launch fails;
    SHUT_DOWN after release(). Only the transitions take the lock.
    """

    def __init__(self, session_factory=BrowserSession):
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self._state = SessionState.UNINITIALIZED
        self._session: Optional[BrowserSession] = None
        self._startup_error: Optional[SessionStartupError] = None

    @property
    def state(self) -> SessionState:
        return self._state

    def acquire(self) -> BrowserSession:
        if self._state is SessionState.READY:
            return self._session

        with self._lock:
            if self._state is SessionState.READY:
                return self._session
            if self._state is SessionState.FAILED:
                raise SessionStartupError(f"browser unavailable: {self._startup_error}")
            if self._state is SessionState.SHUT_DOWN:
                raise SessionStartupError("browser session has been released")

            session = self._session_factory()
            try:
                session.start()
            except SessionStartupError as e:
                self._startup_error = e
                self._state = SessionState.FAILED
                raise
            except Exception as e:
                self._startup_error = SessionStartupError(str(e))
                self._state = SessionState.FAILED
                raise self._startup_error from e

            self._session = session
            self._state = SessionState.READY
            return session

    def release(self):
        """Stops the browser. Meant for process shutdown only."""
        with self._lock:
            if self._session is not None:
                self._session.close()
                self._session = None
            self._state = SessionState.SHUT_DOWN

    def reset(self):
        """Operator hook: forget a failed launch so the next acquire() retries."""
        with self._lock:
            if self._state is SessionState.FAILED:
                self._startup_error = None
                self._state = SessionState.UNINITIALIZED


_default_manager = BrowserSessionManager()

def get_session_manager() -> BrowserSessionManager:
    return _default_manager
