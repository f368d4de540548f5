"""
FILE DESCRIPTION: Foundational module for global configuration and logging.
KEY FUNCTIONS/CLASSES: configure_logging, setup_logger, ProxyFormatter, configuration constants
"""

import logging
import sys
import time
import os
import tempfile
from pathlib import Path
from dotenv import load_dotenv

# === CONFIGURATION SECTION ===

# Load .env from the repository root
load_dotenv(Path(__file__).resolve().parents[1] / '.env')

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3000))

# Outbound User-Agent when the caller does not send one
DEFAULT_USER_AGENT = os.getenv(
    "PROXY_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
)

# Playwright / JS Rendering Waiting Periods (seconds)
NAV_TIMEOUT = int(os.getenv("NAV_TIMEOUT", 30))
READY_TIMEOUT = int(os.getenv("READY_TIMEOUT", 10))
RENDER_QUEUE_TIMEOUT = int(os.getenv("RENDER_QUEUE_TIMEOUT", 30))
BROWSER_LAUNCH_TIMEOUT = int(os.getenv("BROWSER_LAUNCH_TIMEOUT", 60))

# Chromium flags for restricted hosting environments (containers, no setuid)
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-web-security",
]

# Asset mirroring
ASSET_TIMEOUT = float(os.getenv("ASSET_TIMEOUT", 15))
ASSET_CACHE_DIR = Path(os.getenv("ASSET_CACHE_DIR", Path(tempfile.gettempdir()) / "render-proxy-assets"))
LOCAL_ASSET_PREFIX = "/assets"

# Response headers that stop a page from being framed by the caller
EMBEDDING_BLOCKING_HEADERS = [
    "X-Frame-Options",
    "Content-Security-Policy",
    "Permissions-Policy",
    "Strict-Transport-Security",
    "X-Content-Type-Options",
    "Feature-Policy",
    "Referrer-Policy",
]

LOG_FILE = os.getenv("LOG_FILE")


# === LOGGING SECTION ===

ROOT_LOGGER = "proxy"


class ProxyFormatter(logging.Formatter):
    """
    [ Tue Jan 06 05:32:41 AM UTC 2026 ] : LEVEL : component : message
    The component is the logger name below "proxy", or an explicit
    `context` passed through `extra`.
    """
    converter = time.gmtime

    def __init__(self):
        super().__init__(datefmt="%a %b %d %I:%M:%S %p UTC %Y")

    def format(self, record):
        context = getattr(record, "context", None)
        if context is None:
            context = record.name.partition(".")[2] or record.name
        message = f"[ {self.formatTime(record, self.datefmt)} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def configure_logging(level=logging.INFO, log_file=None) -> logging.Logger:
    """
    Sets the level of the whole "proxy" tree and makes sure it writes to stdout,
    and to log_file when one is given. Safe to call again: handlers that are
    already attached are not duplicated.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    formatter = ProxyFormatter()

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if log_file:
        path = os.path.abspath(log_file)
        if not any(isinstance(h, logging.FileHandler) and h.baseFilename == path for h in root.handlers):
            file_handler = logging.FileHandler(path)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    return root


def setup_logger(name=ROOT_LOGGER) -> logging.Logger:
    """Logger for one component. Children carry no handlers or level of their own."""
    if not logging.getLogger(ROOT_LOGGER).handlers:
        configure_logging(log_file=LOG_FILE)
    return logging.getLogger(name)


logger = setup_logger()
