import asyncio

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from conftest import FakeAdapter, RecordingSink, navitrip_hotel, navitrip_room
from extraction_service.db.session import init_db
from extraction_service.errors import (
    DuplicateActiveSession,
    ErrorClass,
    SessionNotFound,
    SessionNotResumable,
    StructuralError,
    TransientError,
)
from extraction_service.jobs.models import ExtractionOptions, ExtractionSession, SessionStatus, TaskKind, TaskStatus
from extraction_service.jobs.store import MemorySessionStore, SqlSessionStore
from hotel_rates.schema import Site, hotel_key, room_key


def _ten_hotels():
    return [navitrip_hotel(i, price=100.0 + i) for i in range(10)]


def _rooms_for(hotel_ids):
    return {hotel_id: [navitrip_room("DBL"), navitrip_room("KNG", nightly=150.0)] for hotel_id in hotel_ids}


def test_invalid_hotel_is_dropped_and_session_completes(make_manager, params):
    hotels = [navitrip_hotel(i) for i in range(9)] + [navitrip_hotel(9, price=-50)]
    adapter = FakeAdapter(hotels=hotels)
    sink = RecordingSink()
    manager = make_manager(adapter, sink)

    async def scenario():
        session = await manager.create("trip-1", Site.NAVITRIP, params)
        return await manager.run(session)

    session = asyncio.run(scenario())

    assert session.status is SessionStatus.COMPLETED
    assert session.counters.hotels_found == 9
    assert session.counters.errors_encountered == 1
    assert len(sink.hotel_keys()) == 9
    assert hotel_key(Site.NAVITRIP, "H9") not in sink.hotel_keys()
    [error] = session.errors
    assert error.reason == "validation"
    assert error.raw["hotelId"] == "H9"


def test_structural_room_failures_end_partial(make_manager, params):
    ids = [f"H{i}" for i in range(10)]
    adapter = FakeAdapter(hotels=_ten_hotels(), rooms=_rooms_for(ids[:5]))
    for hotel_id in ids[5:]:
        adapter.room_failures[hotel_id] = [StructuralError("room table missing")]
    manager = make_manager(adapter)

    async def scenario():
        session = await manager.create("trip-1", Site.NAVITRIP, params, ExtractionOptions(fetch_rooms=True))
        return await manager.run(session)

    session = asyncio.run(scenario())

    assert session.status is SessionStatus.PARTIAL
    exhausted = session.tasks_with(TaskStatus.EXHAUSTED)
    assert sorted(task.target for task in exhausted) == ids[5:]
    assert all(task.attempts == 1 for task in exhausted)
    assert all(task.last_error_class is ErrorClass.STRUCTURAL for task in exhausted)
    assert session.counters.rooms_extracted == 10
    assert sorted(adapter.room_calls()) == sorted(ids)


def test_resume_reruns_only_exhausted_tasks_without_resending(make_manager, params):
    ids = [f"H{i}" for i in range(10)]
    adapter = FakeAdapter(hotels=_ten_hotels(), rooms=_rooms_for(ids))
    adapter.room_failures["H8"] = [TransientError("timeout")] * 3
    adapter.room_failures["H9"] = [TransientError("timeout")] * 3
    sink = RecordingSink()
    manager = make_manager(adapter, sink)

    async def first_run():
        session = await manager.create("trip-1", Site.NAVITRIP, params, ExtractionOptions(fetch_rooms=True))
        return await manager.run(session)

    session = asyncio.run(first_run())
    assert session.status is SessionStatus.PARTIAL
    exhausted = session.tasks_with(TaskStatus.EXHAUSTED)
    assert sorted(task.target for task in exhausted) == ["H8", "H9"]
    assert all(task.attempts == 3 for task in exhausted)
    hotels_sent = list(sink.hotel_keys())
    rooms_sent = list(sink.room_keys())
    adapter.calls.clear()

    resumed = asyncio.run(manager.resume(session.session_id))

    assert resumed.status is SessionStatus.COMPLETED
    assert sorted(adapter.room_calls()) == ["H8", "H9"]
    assert ("search", None) not in adapter.calls
    assert sink.hotel_keys() == hotels_sent
    new_rooms = sink.room_keys()[len(rooms_sent):]
    assert sorted(new_rooms) == sorted(
        room_key(Site.NAVITRIP, hotel_id, code) for hotel_id in ("H8", "H9") for code in ("DBL", "KNG")
    )
    assert len(set(sink.room_keys())) == len(sink.room_keys())
    assert resumed.counters.rooms_extracted == 20
    assert resumed.counters.attempts_made == 1 + 8 + 2 * 3 + 2


def test_duplicate_active_session_is_rejected(make_manager, params):
    manager = make_manager(FakeAdapter(hotels=_ten_hotels()))

    async def scenario():
        first = await manager.create("trip-1", Site.NAVITRIP, params)
        with pytest.raises(DuplicateActiveSession) as excinfo:
            await manager.create("trip-1", Site.NAVITRIP, params)
        assert excinfo.value.session_id == first.session_id
        await manager.run(first)
        again = await manager.create("trip-1", Site.NAVITRIP, params)
        assert again.session_id != first.session_id

    asyncio.run(scenario())


def test_duplicate_detected_through_store(make_manager, params):
    store = MemorySessionStore()
    adapter = FakeAdapter(hotels=_ten_hotels())

    async def scenario():
        await make_manager(adapter, store=store).create("trip-1", Site.NAVITRIP, params)
        with pytest.raises(DuplicateActiveSession):
            await make_manager(adapter, store=store).create("trip-1", Site.NAVITRIP, params)

    asyncio.run(scenario())


def test_completed_session_is_not_resumable(make_manager, params):
    manager = make_manager(FakeAdapter(hotels=_ten_hotels()))

    async def scenario():
        session = await manager.run(await manager.create("trip-1", Site.NAVITRIP, params))
        with pytest.raises(SessionNotResumable):
            await manager.resume(session.session_id)
        with pytest.raises(SessionNotFound):
            await manager.resume("missing")

    asyncio.run(scenario())


def test_cancel_before_run_leaves_tasks_pending(make_manager, params):
    adapter = FakeAdapter(hotels=_ten_hotels())
    manager = make_manager(adapter)

    async def scenario():
        session = await manager.create("trip-1", Site.NAVITRIP, params)
        await manager.cancel(session.session_id)
        session = await manager.run(session)
        assert session.status is SessionStatus.PARTIAL
        assert [task.status for task in session.tasks] == [TaskStatus.PENDING]
        assert adapter.calls == []
        return await manager.resume(session.session_id)

    resumed = asyncio.run(scenario())
    assert resumed.status is SessionStatus.COMPLETED
    assert resumed.counters.hotels_found == 10


def test_cancel_mid_run_stops_scheduling(make_manager, params):
    ids = [f"H{i}" for i in range(10)]
    adapter = FakeAdapter(hotels=_ten_hotels(), rooms=_rooms_for(ids))
    manager = make_manager(adapter, per_site_concurrency=1)

    async def scenario():
        session = await manager.create("trip-1", Site.NAVITRIP, params, ExtractionOptions(fetch_rooms=True))

        def _cancel(hotel_id):
            session.cancel_requested = True

        adapter.on_room = _cancel
        return await manager.run(session)

    session = asyncio.run(scenario())
    assert session.status is SessionStatus.PARTIAL
    assert len(adapter.room_calls()) == 1
    assert len(session.tasks_with(TaskStatus.PENDING)) == 9


def test_site_concurrency_is_bounded(make_manager, params):
    ids = [f"H{i}" for i in range(10)]
    adapter = FakeAdapter(hotels=_ten_hotels(), rooms=_rooms_for(ids), delay=0.01)
    manager = make_manager(adapter, per_site_concurrency=2)

    async def scenario():
        session = await manager.create("trip-1", Site.NAVITRIP, params, ExtractionOptions(fetch_rooms=True))
        return await manager.run(session)

    session = asyncio.run(scenario())
    assert session.status is SessionStatus.COMPLETED
    assert adapter.peak == 2


def test_room_fetch_limited_by_rank(make_manager, params):
    ids = [f"H{i}" for i in range(10)]
    adapter = FakeAdapter(hotels=_ten_hotels(), rooms=_rooms_for(ids))
    manager = make_manager(adapter)

    async def scenario():
        options = ExtractionOptions(fetch_rooms=True, max_hotels=3)
        return await manager.run(await manager.create("trip-1", Site.NAVITRIP, params, options))

    session = asyncio.run(scenario())
    room_tasks = [task for task in session.tasks if task.kind is TaskKind.ROOM_RATES]
    assert [task.target for task in room_tasks] == ["H0", "H1", "H2"]
    assert [task.rank for task in room_tasks] == [0, 1, 2]


def test_room_rate_session_runs_one_task_per_hotel(make_manager, params):
    adapter = FakeAdapter(rooms=_rooms_for(["A1", "B2"]))
    manager = make_manager(adapter)

    async def scenario():
        options = ExtractionOptions(fetch_rooms=True, hotel_ids=["A1", "B2"])
        session = await manager.create("trip-1", Site.NAVITRIP, params, options, TaskKind.ROOM_RATES)
        assert [task.target for task in session.tasks] == ["A1", "B2"]
        return await manager.run(session)

    session = asyncio.run(scenario())
    assert session.status is SessionStatus.COMPLETED
    assert session.counters.rooms_extracted == 4
    assert session.counters.hotels_found == 0


def test_failed_search_ends_failed(make_manager, params):
    adapter = FakeAdapter(hotels=_ten_hotels())
    adapter.search_failures = [TransientError("timeout")] * 3
    manager = make_manager(adapter)

    async def scenario():
        return await manager.run(await manager.create("trip-1", Site.NAVITRIP, params))

    session = asyncio.run(scenario())
    assert session.status is SessionStatus.FAILED
    assert session.tasks[0].status is TaskStatus.EXHAUSTED
    assert session.counters.attempts_made == 3


def test_sink_rejection_marks_task_failed_and_resume_delivers(make_manager, params):
    adapter = FakeAdapter(hotels=_ten_hotels())
    sink = RecordingSink()
    rejected = hotel_key(Site.NAVITRIP, "H3")
    sink.reject = {rejected}
    manager = make_manager(adapter, sink)

    async def scenario():
        return await manager.run(await manager.create("trip-1", Site.NAVITRIP, params))

    session = asyncio.run(scenario())
    assert session.status is SessionStatus.FAILED
    assert session.tasks[0].status is TaskStatus.FAILED
    assert any(error.reason == "sink" and error.key == rejected for error in session.errors)
    assert rejected not in session.ingested_keys
    assert len(session.ingested_keys) == 9

    sink.reject.clear()
    resumed = asyncio.run(manager.resume(session.session_id))
    assert resumed.status is SessionStatus.COMPLETED
    assert sink.hotel_batches[-1] == [rejected]
    assert rejected in resumed.ingested_keys


def test_progress_and_attempt_audit(make_manager, params):
    store = MemorySessionStore()
    adapter = FakeAdapter(hotels=_ten_hotels())
    adapter.search_failures = [TransientError("timeout")]
    manager = make_manager(adapter, store=store)

    async def scenario():
        session = await manager.run(await manager.create("trip-1", Site.NAVITRIP, params))
        return session, await manager.progress(session.session_id)

    session, snapshot = asyncio.run(scenario())
    assert snapshot["status"] == "completed"
    assert snapshot["hotels_found"] == 10
    assert snapshot["attempts_made"] == 2
    assert snapshot["tasks"] == {"succeeded": 1}
    attempts = [event for session_id, event in store.attempts if session_id == session.session_id]
    assert [event.error_class for event in attempts] == [ErrorClass.TRANSIENT, None]


def test_recover_interrupted_closes_running_sessions(make_manager, params):
    store = MemorySessionStore()
    adapter = FakeAdapter(hotels=_ten_hotels())

    async def crash():
        manager = make_manager(adapter, store=store)
        session = await manager.create("trip-1", Site.NAVITRIP, params)
        session.transition(SessionStatus.RUNNING)
        session.tasks[0].status = TaskStatus.IN_PROGRESS
        await store.save(session)
        return session.session_id

    session_id = asyncio.run(crash())

    async def restart():
        manager = make_manager(adapter, store=store)
        recovered = await manager.recover_interrupted()
        assert [session.session_id for session in recovered] == [session_id]
        assert recovered[0].status is SessionStatus.FAILED
        assert recovered[0].tasks[0].status is TaskStatus.FAILED
        return await manager.resume(session_id)

    resumed = asyncio.run(restart())
    assert resumed.status is SessionStatus.COMPLETED


def test_unknown_site_rejected_at_create(make_manager, params):
    manager = make_manager(FakeAdapter(site=Site.VAX))

    async def scenario():
        with pytest.raises(LookupError):
            await manager.create("trip-1", Site.NAVITRIP, params)

    asyncio.run(scenario())


def test_concurrent_creates_admit_one_active_session(make_manager, params, tmp_path):
    async def scenario():
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
        try:
            await init_db(engine)
            store = SqlSessionStore(async_sessionmaker(bind=engine, expire_on_commit=False))
            manager = make_manager(FakeAdapter(hotels=_ten_hotels()), store=store)
            results = await asyncio.gather(
                manager.create("trip-1", Site.NAVITRIP, params),
                manager.create("trip-1", Site.NAVITRIP, params),
                return_exceptions=True,
            )
            return results, await store.list_active()
        finally:
            await engine.dispose()

    results, active = asyncio.run(scenario())

    created = [result for result in results if isinstance(result, ExtractionSession)]
    rejected = [result for result in results if isinstance(result, DuplicateActiveSession)]
    assert len(created) == 1
    assert len(rejected) == 1
    assert rejected[0].session_id == created[0].session_id
    assert [session.session_id for session in active] == [created[0].session_id]


class LockedAuditStore(MemorySessionStore):
    async def record_attempt(self, session_id, event):
        raise RuntimeError("database is locked")


def test_audit_write_failure_keeps_extracted_records(make_manager, params):
    sink = RecordingSink()
    manager = make_manager(FakeAdapter(hotels=[navitrip_hotel(i) for i in range(3)]), sink, store=LockedAuditStore())

    async def scenario():
        session = await manager.create("trip-1", Site.NAVITRIP, params)
        return await manager.run(session)

    session = asyncio.run(scenario())

    assert session.status is SessionStatus.COMPLETED
    assert session.counters.hotels_found == 3
    assert len(sink.hotel_keys()) == 3
