"""Durable session state.

A session is saved as a JSON snapshot plus queryable columns; tasks and
attempts also get their own rows so an operator can inspect them with SQL.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.models import ExtractionAttemptRow, ExtractionSessionRow, ExtractionTaskRow
from ..db.session import session_scope
from .models import ExtractionSession, SessionStatus
from .retry import AttemptEvent

logger = logging.getLogger(__name__)

_ACTIVE = (SessionStatus.CREATED.value, SessionStatus.RUNNING.value)


class SessionStore(ABC):
    @abstractmethod
    async def save(self, session: ExtractionSession) -> None:
        ...

    @abstractmethod
    async def load(self, session_id: str) -> Optional[ExtractionSession]:
        ...

    @abstractmethod
    async def find_active(self, fingerprint: str) -> Optional[str]:
        """Session id of a non-terminal session with this fingerprint, if any."""

    @abstractmethod
    async def list_active(self) -> List[ExtractionSession]:
        ...

    @abstractmethod
    async def record_attempt(self, session_id: str, event: AttemptEvent) -> None:
        ...


class MemorySessionStore(SessionStore):
    """Process-local store; snapshots are deep copies so callers cannot mutate saved state."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ExtractionSession] = {}
        self.attempts: List[tuple] = []

    async def save(self, session: ExtractionSession) -> None:
        self._sessions[session.session_id] = copy.deepcopy(session)

    async def load(self, session_id: str) -> Optional[ExtractionSession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def find_active(self, fingerprint: str) -> Optional[str]:
        for session in self._sessions.values():
            if session.status.value in _ACTIVE and session.fingerprint == fingerprint:
                return session.session_id
        return None

    async def list_active(self) -> List[ExtractionSession]:
        return [copy.deepcopy(s) for s in self._sessions.values() if s.status.value in _ACTIVE]

    async def record_attempt(self, session_id: str, event: AttemptEvent) -> None:
        self.attempts.append((session_id, event))


class SqlSessionStore(SessionStore):
    def __init__(self, factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._factory = factory

    async def _row(self, db: AsyncSession, session_id: str) -> Optional[ExtractionSessionRow]:
        return await db.scalar(select(ExtractionSessionRow).where(ExtractionSessionRow.session_id == session_id))

    async def save(self, session: ExtractionSession) -> None:
        async with session_scope(self._factory) as db:
            row = await self._row(db, session.session_id)
            if row is None:
                row = ExtractionSessionRow(
                    session_id=session.session_id,
                    trip_id=session.trip_id,
                    site=session.site.value,
                    kind=session.kind.value,
                    fingerprint=session.fingerprint,
                    created_at=session.created_at,
                )
                db.add(row)
            row.status = session.status.value
            row.counters = session.counters.to_dict()
            row.payload = session.to_dict()
            row.updated_at = session.updated_at

            existing = {task_row.task_id: task_row for task_row in row.tasks}
            for task in session.tasks:
                task_row = existing.get(task.task_id)
                if task_row is None:
                    task_row = ExtractionTaskRow(task_id=task.task_id, kind=task.kind.value)
                    row.tasks.append(task_row)
                task_row.target = task.target
                task_row.rank = task.rank
                task_row.status = task.status.value
                task_row.attempts = task.attempts
                task_row.last_error_class = task.last_error_class.value if task.last_error_class else None
                task_row.last_error = task.last_error[:5000] if task.last_error else None
                task_row.updated_at = task.updated_at

    async def load(self, session_id: str) -> Optional[ExtractionSession]:
        async with session_scope(self._factory) as db:
            row = await self._row(db, session_id)
            if row is None:
                return None
            return ExtractionSession.from_dict(row.payload)

    async def find_active(self, fingerprint: str) -> Optional[str]:
        async with session_scope(self._factory) as db:
            return await db.scalar(
                select(ExtractionSessionRow.session_id)
                .where(ExtractionSessionRow.fingerprint == fingerprint)
                .where(ExtractionSessionRow.status.in_(_ACTIVE))
                .limit(1)
            )

    async def list_active(self) -> List[ExtractionSession]:
        async with session_scope(self._factory) as db:
            result = await db.execute(
                select(ExtractionSessionRow)
                .where(ExtractionSessionRow.status.in_(_ACTIVE))
                .order_by(ExtractionSessionRow.created_at)
            )
            return [ExtractionSession.from_dict(row.payload) for row in result.scalars()]

    async def record_attempt(self, session_id: str, event: AttemptEvent) -> None:
        async with session_scope(self._factory) as db:
            db.add(
                ExtractionAttemptRow(
                    session_id=session_id,
                    task_id=event.task_id,
                    attempt=event.attempt,
                    error_class=event.error_class.value if event.error_class else None,
                    error=event.error[:5000] if event.error else None,
                    next_delay=event.next_delay,
                )
            )

    async def list_attempts(self, session_id: str) -> List[ExtractionAttemptRow]:
        async with session_scope(self._factory) as db:
            result = await db.execute(
                select(ExtractionAttemptRow)
                .where(ExtractionAttemptRow.session_id == session_id)
                .order_by(ExtractionAttemptRow.id)
            )
            return list(result.scalars())


__all__ = ["SessionStore", "MemorySessionStore", "SqlSessionStore"]
