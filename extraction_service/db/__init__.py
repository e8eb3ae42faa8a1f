"""Database package."""

from .models import Base, ExtractionAttemptRow, ExtractionSessionRow, ExtractionTaskRow
from .session import dispose_engine, get_engine, get_sessionmaker, init_db, session_scope

__all__ = [
    "Base",
    "ExtractionAttemptRow",
    "ExtractionSessionRow",
    "ExtractionTaskRow",
    "dispose_engine",
    "get_engine",
    "get_sessionmaker",
    "init_db",
    "session_scope",
]
