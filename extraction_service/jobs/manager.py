"""Session lifecycle and task scheduling."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from hotel_rates.mappers import MapContext
from hotel_rates.schema import HotelOption, RecordKind, Site, hotel_key

from ..adapters.base import collect_rows
from ..adapters.registry import AdapterRegistry, get_adapter_registry
from ..config import Settings, get_settings
from ..errors import DuplicateActiveSession, ErrorClass, SessionNotFound, SessionNotResumable
from ..monitoring.metrics import EXTRACTION_ATTEMPTS_TOTAL, SESSIONS_FINISHED_TOTAL, TASK_LATENCY, TASKS_IN_PROGRESS
from ..sinks.base import IngestSink
from ..sinks.http import build_sink
from .models import (
    RESUMABLE_STATUSES,
    ExtractionOptions,
    ExtractionSession,
    ExtractionTask,
    RecordError,
    SearchParams,
    SessionStatus,
    TaskKind,
    TaskOutcome,
    TaskStatus,
)
from .pipeline import NormalizationPipeline
from .retry import AttemptEvent, RetryCoordinator, RetryPolicy
from .store import SessionStore, SqlSessionStore
from .uploader import BatchUploader, FlushResult

logger = logging.getLogger(__name__)

SINK_REJECTED = "records not acknowledged by the ingest sink"
INTERRUPTED = "interrupted by process shutdown"


class SessionManager:
    """Creates, runs, resumes and reports extraction sessions.

    All mutation of a session happens under its own lock; ``progress`` reads
    without it. Tasks of the same site share a semaphore across sessions.
    """

    def __init__(
        self,
        store: SessionStore,
        adapters: AdapterRegistry,
        sink: IngestSink,
        *,
        settings: Optional[Settings] = None,
        pipeline: Optional[NormalizationPipeline] = None,
        retry: Optional[RetryCoordinator] = None,
        uploader: Optional[BatchUploader] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.adapters = adapters
        self.sink = sink
        sleep = sleep or asyncio.sleep
        policy = RetryPolicy.from_settings(self.settings)
        self.pipeline = pipeline or NormalizationPipeline(self.settings.commission_rates)
        self.retry = retry or RetryCoordinator(policy, sleep=sleep, on_attempt=self._on_attempt)
        self.uploader = uploader or BatchUploader(
            sink, RetryCoordinator(policy, sleep=sleep), self.settings.upload_batch_size
        )
        self._site_semaphores: Dict[Site, asyncio.Semaphore] = defaultdict(
            lambda: asyncio.Semaphore(self.settings.per_site_concurrency)
        )
        self._registry: Dict[str, str] = {}
        self._sessions: Dict[str, ExtractionSession] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._task_owners: Dict[str, Tuple[str, Site]] = {}

    # -- lifecycle --------------------------------------------------------

    async def _claim(self, session: ExtractionSession) -> None:
        """Register ``session`` as the active owner of its fingerprint.

        The in-process registry is checked and updated before the first await,
        so concurrent callers with the same fingerprint cannot both pass.
        """

        fingerprint = session.fingerprint
        existing = self._registry.get(fingerprint)
        if existing is not None or session.session_id in self._sessions:
            raise DuplicateActiveSession(fingerprint, existing or session.session_id)
        self._register(session)
        try:
            existing = await self.store.find_active(fingerprint)
            if existing and existing != session.session_id:
                raise DuplicateActiveSession(fingerprint, existing)
        except BaseException:
            self._release(session)
            raise

    async def create(
        self,
        trip_id: str,
        site: Union[Site, str],
        params: SearchParams,
        options: Optional[ExtractionOptions] = None,
        kind: TaskKind = TaskKind.SEARCH,
    ) -> ExtractionSession:
        site = Site(site)
        self.adapters.get(site)
        session = ExtractionSession.create(trip_id, site, params, options or ExtractionOptions(), kind)
        await self._claim(session)
        try:
            await self.store.save(session)
        except BaseException:
            self._release(session)
            raise
        logger.info(
            "Created extraction session",
            extra={"session_id": session.session_id, "trip_id": trip_id, "site": site.value, "kind": kind.value},
        )
        return session

    def _register(self, session: ExtractionSession) -> None:
        self._registry[session.fingerprint] = session.session_id
        self._sessions[session.session_id] = session

    def _release(self, session: ExtractionSession) -> None:
        if self._registry.get(session.fingerprint) == session.session_id:
            del self._registry[session.fingerprint]
        self._sessions.pop(session.session_id, None)

    def _archive(self, session: ExtractionSession) -> None:
        self._release(session)
        self._locks.pop(session.session_id, None)
        self.uploader.discard(session.session_id)
        for task in session.tasks:
            self._task_owners.pop(task.task_id, None)

    async def run(self, session: ExtractionSession) -> ExtractionSession:
        """Drive every pending task to an outcome and close the session."""

        lock = self._locks[session.session_id]
        self._sessions.setdefault(session.session_id, session)
        try:
            async with lock:
                if session.status is SessionStatus.CREATED:
                    session.transition(SessionStatus.RUNNING)
                await self.store.save(session)

            await self._drive(session, lock)

            async with lock:
                await self._flush(session)
                status = self._final_status(session)
                session.transition(status)
                await self.store.save(session)
            SESSIONS_FINISHED_TOTAL.labels(site=session.site.value, status=status.value).inc()
            logger.info(
                "Extraction session finished",
                extra={"session_id": session.session_id, "status": status.value, **session.counters.to_dict()},
            )
        finally:
            self._archive(session)
        return session

    async def reopen(self, session_id: str) -> ExtractionSession:
        """Put a partial or failed session back into ``RUNNING`` with its failed tasks re-queued."""

        session = await self.get(session_id)
        if session.status not in RESUMABLE_STATUSES:
            raise SessionNotResumable(session_id, session.status.value)
        await self._claim(session)

        requeued = 0
        for task in session.tasks_with(TaskStatus.FAILED, TaskStatus.EXHAUSTED):
            task.status = TaskStatus.PENDING
            task.attempts = 0
            requeued += 1
        session.cancel_requested = False
        session.transition(SessionStatus.RUNNING, resume=True)
        await self.store.save(session)
        logger.info("Resuming extraction session", extra={"session_id": session_id, "requeued": requeued})
        return session

    async def resume(self, session_id: str) -> ExtractionSession:
        return await self.run(await self.reopen(session_id))

    async def get(self, session_id: str) -> ExtractionSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = await self.store.load(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def progress(self, session_id: str) -> Dict[str, Any]:
        session = await self.get(session_id)
        tasks: Dict[str, int] = defaultdict(int)
        for task in session.tasks:
            tasks[task.status.value] += 1
        return {
            "session_id": session.session_id,
            "status": session.status.value,
            **session.counters.to_dict(),
            "tasks": dict(tasks),
        }

    async def cancel(self, session_id: str) -> ExtractionSession:
        session = await self.get(session_id)
        if session.session_id in self._sessions and not session.is_terminal:
            session.cancel_requested = True
            logger.info("Cancellation requested", extra={"session_id": session_id})
        return session

    async def recover_interrupted(self) -> List[ExtractionSession]:
        """Close sessions a previous process left running so they can be resumed."""

        recovered = []
        for session in await self.store.list_active():
            if session.session_id in self._sessions:
                continue
            for task in session.tasks_with(TaskStatus.IN_PROGRESS):
                self._fail_task(task, ErrorClass.TRANSIENT, INTERRUPTED)
            undelivered = self._undelivered_keys(session)
            if undelivered:
                producing = {outcome.task_id for outcome in session.outcomes if outcome.records}
                for task in session.tasks_with(TaskStatus.SUCCEEDED):
                    if task.task_id in producing:
                        self._fail_task(task, ErrorClass.TRANSIENT, INTERRUPTED)
            if session.status is SessionStatus.CREATED:
                session.transition(SessionStatus.RUNNING)
            session.transition(self._final_status(session))
            await self.store.save(session)
            recovered.append(session)
            logger.warning(
                "Recovered interrupted session",
                extra={"session_id": session.session_id, "status": session.status.value},
            )
        return recovered

    # -- execution --------------------------------------------------------

    async def _drive(self, session: ExtractionSession, lock: asyncio.Lock) -> None:
        adapter = self.adapters.get(session.site)
        started: set = set()
        while not session.cancel_requested:
            pending = [t for t in session.tasks_with(TaskStatus.PENDING) if t.task_id not in started]
            if not pending:
                break
            started.update(task.task_id for task in pending)
            await asyncio.gather(*(self._run_task(session, task, adapter, lock) for task in pending))

    async def _run_task(self, session: ExtractionSession, task: ExtractionTask, adapter, lock: asyncio.Lock) -> None:
        async with self._site_semaphores[session.site]:
            if session.cancel_requested:
                return
            async with lock:
                task.status = TaskStatus.IN_PROGRESS
                task.updated_at = datetime.utcnow()
            self._task_owners[task.task_id] = (session.session_id, session.site)

            rows: List[Dict[str, Any]] = []

            async def _call() -> List[Dict[str, Any]]:
                rows.clear()
                if task.kind is TaskKind.SEARCH:
                    result = adapter.search(session.params)
                else:
                    result = adapter.room_rates(task.target, session.params)
                return await collect_rows(result, rows)

            gauge = TASKS_IN_PROGRESS.labels(site=session.site.value)
            gauge.inc()
            started = time.perf_counter()
            try:
                outcome = await self.retry.execute(task, _call)
            finally:
                gauge.dec()
                TASK_LATENCY.labels(kind=task.kind.value).observe(time.perf_counter() - started)

        if task.kind is TaskKind.SEARCH:
            kind, context = RecordKind.HOTEL, MapContext(session.params.destination, session.params.nights)
            accept = session.options.accepts
        else:
            kind = RecordKind.ROOM
            context = MapContext(session.params.destination, session.params.nights, task.target)
            accept = None
        batch = self.pipeline.normalize_batch(
            session.site,
            kind,
            rows,
            context,
            task_id=task.task_id,
            known_keys=session.ingested_keys,
            accept=accept,
        )

        async with lock:
            task.attempts = outcome.attempts
            session.counters.attempts_made += outcome.attempts
            if outcome.ok:
                task.status = TaskStatus.SUCCEEDED
                task.last_error_class = None
                task.last_error = None
                task.updated_at = datetime.utcnow()
            else:
                self._fail_task(task, outcome.error_class, outcome.error, TaskStatus.EXHAUSTED)
                session.counters.errors_encountered += 1
                logger.warning(
                    "Task exhausted",
                    extra={
                        "session_id": session.session_id,
                        "task_id": task.task_id,
                        "error_class": outcome.error_class.value if outcome.error_class else None,
                        "attempts": outcome.attempts,
                    },
                )

            session.errors.extend(batch.rejected)
            session.counters.errors_encountered += len(batch.rejected)
            for record in batch.records:
                if isinstance(record, HotelOption):
                    if record.site_id not in session.hotel_ids:
                        session.hotel_ids.append(record.site_id)
                else:
                    session.room_keys.add(record.key)
            session.counters.hotels_found = len(session.hotel_ids)
            session.counters.rooms_extracted = len(session.room_keys)
            self.uploader.enqueue(session.session_id, batch.records, task.task_id)

            if task.kind is TaskKind.SEARCH and outcome.ok and session.options.fetch_rooms:
                self._schedule_room_tasks(session)

            session.outcomes.append(
                TaskOutcome(
                    task_id=task.task_id,
                    status=task.status,
                    attempts=outcome.attempts,
                    records=len(batch.records),
                    error_class=outcome.error_class,
                    error=outcome.error,
                )
            )
            session.touch()
            if self.uploader.pending(session.session_id) >= self.uploader.batch_size:
                await self._flush(session)
            await self.store.save(session)

    def _schedule_room_tasks(self, session: ExtractionSession) -> None:
        limit = session.options.max_hotels
        if limit is None:
            limit = self.settings.max_room_hotels
        planned = {task.target for task in session.tasks if task.kind is TaskKind.ROOM_RATES}
        for rank, hotel_id in enumerate(session.hotel_ids[:limit]):
            if hotel_id in planned:
                continue
            session.tasks.append(ExtractionTask.create(session.session_id, TaskKind.ROOM_RATES, hotel_id, rank))
        logger.debug("Scheduled room-rate tasks", extra={"session_id": session.session_id, "limit": limit})

    async def _flush(self, session: ExtractionSession) -> FlushResult:
        result = await self.uploader.flush(session)
        for key in sorted(result.failed_keys):
            session.errors.append(RecordError(reason="sink", message=SINK_REJECTED, key=key))
        session.counters.errors_encountered += len(result.failed_keys)
        for task_id in result.failed_task_ids:
            task = session.task(task_id)
            if task.status is TaskStatus.SUCCEEDED:
                self._fail_task(task, ErrorClass.TRANSIENT, SINK_REJECTED)
        return result

    @staticmethod
    def _fail_task(
        task: ExtractionTask,
        error_class: Optional[ErrorClass],
        error: Optional[str],
        status: TaskStatus = TaskStatus.FAILED,
    ) -> None:
        task.status = status
        task.last_error_class = error_class
        task.last_error = error
        task.updated_at = datetime.utcnow()

    @staticmethod
    def _undelivered_keys(session: ExtractionSession) -> set:
        produced = {hotel_key(session.site, site_id) for site_id in session.hotel_ids} | session.room_keys
        return produced - session.ingested_keys

    @staticmethod
    def _final_status(session: ExtractionSession) -> SessionStatus:
        succeeded = len(session.tasks_with(TaskStatus.SUCCEEDED))
        if succeeded == len(session.tasks):
            return SessionStatus.COMPLETED
        if session.cancel_requested and session.tasks_with(TaskStatus.PENDING):
            return SessionStatus.PARTIAL
        if succeeded:
            return SessionStatus.PARTIAL
        return SessionStatus.FAILED

    async def _on_attempt(self, event: AttemptEvent) -> None:
        owner = self._task_owners.get(event.task_id)
        if owner is None:
            return
        session_id, site = owner
        outcome = event.error_class.value if event.error_class else "ok"
        EXTRACTION_ATTEMPTS_TOTAL.labels(site=site.value, outcome=outcome).inc()
        await self.store.record_attempt(session_id, event)


_global_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    global _global_manager
    if _global_manager is None:
        settings = get_settings()
        _global_manager = SessionManager(
            SqlSessionStore(), get_adapter_registry(), build_sink(settings), settings=settings
        )
    return _global_manager


__all__ = ["SessionManager", "get_session_manager"]
