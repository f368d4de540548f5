from rendering.models import RenderJob, SessionState
from rendering.engine import (
    render_page,
    RenderError,
    RenderTimeoutError,
    RenderExecutionError,
    RenderCancelledError,
    SessionStartupError,
)
from rendering.session import BrowserSession, BrowserSessionManager, get_session_manager
