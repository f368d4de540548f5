import threading
from enum import Enum
from typing import Any, Callable, Optional

class SessionState(Enum):
    UNINITIALIZED = "UNINITIALIZED"
    READY = "READY"
    FAILED = "FAILED"
    SHUT_DOWN = "SHUT_DOWN"

class RenderJob:
    """
    One unit of work handed to the browser thread.
    fn(browser, cancel) runs on that thread; the submitting thread waits on done.
    """
    def __init__(self, fn: Callable[[Any, threading.Event], Any], cancel: Optional[threading.Event] = None):
        self.fn = fn
        self.cancel = cancel if cancel is not None else threading.Event()
        self.started = threading.Event()
        self.done = threading.Event()
        self.result = None
        self.error: Optional[BaseException] = None
