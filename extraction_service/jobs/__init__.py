"""Session orchestration: models, retry, normalization, delivery and scheduling."""

from .manager import SessionManager, get_session_manager
from .models import ExtractionOptions, ExtractionSession, SearchParams, SessionStatus, TaskKind, TaskStatus

__all__ = [
    "SessionManager",
    "get_session_manager",
    "ExtractionOptions",
    "ExtractionSession",
    "SearchParams",
    "SessionStatus",
    "TaskKind",
    "TaskStatus",
]
