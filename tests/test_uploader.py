import asyncio
from datetime import date

from conftest import RecordingSink
from extraction_service.errors import SinkDeliveryError, StructuralError
from extraction_service.jobs.models import ExtractionSession, SearchParams
from extraction_service.jobs.retry import RetryCoordinator, RetryPolicy
from extraction_service.jobs.uploader import BatchUploader
from hotel_rates.schema import HotelOption, LeadPrice, RoomOption, Site, hotel_key


async def _no_sleep(delay):
    return None


def _session():
    params = SearchParams("Orlando", date(2026, 5, 1), date(2026, 5, 3))
    return ExtractionSession.create("trip-9", Site.VAX, params)


def _hotel(site_id):
    return HotelOption(site=Site.VAX, site_id=site_id, name=f"Hotel {site_id}", city="Orlando", lead_price=LeadPrice(90.0))


def _room(hotel_id, room_id):
    return RoomOption(
        site=Site.VAX, hotel_site_id=hotel_id, room_id=room_id, name=room_id, nightly_rate=90.0, total_price=180.0, nights=2
    )


def _uploader(sink, batch_size=50, max_attempts=3):
    retry = RetryCoordinator(RetryPolicy(max_attempts=max_attempts, base_delay=0.0, jitter=0.0), sleep=_no_sleep)
    return BatchUploader(sink, retry, batch_size)


def test_flush_sends_hotels_before_rooms_grouped_by_hotel():
    sink = RecordingSink()
    uploader = _uploader(sink, batch_size=2)
    session = _session()
    uploader.enqueue(session.session_id, [_room("A", "r1"), _hotel("A"), _room("B", "r1"), _room("A", "r2")], "t1")
    uploader.enqueue(session.session_id, [_hotel("B"), _hotel("C"), _room("A", "r3")], "t2")

    result = asyncio.run(uploader.flush(session))

    assert result.ingested == 7
    assert result.failed == 0
    assert sink.hotel_batches == [
        [hotel_key(Site.VAX, "A"), hotel_key(Site.VAX, "B")],
        [hotel_key(Site.VAX, "C")],
    ]
    assert [parent for parent, _ in sink.room_batches] == [hotel_key(Site.VAX, "A")] * 2 + [hotel_key(Site.VAX, "B")]
    assert [len(batch) for _, batch in sink.room_batches] == [2, 1, 1]
    assert len(session.ingested_keys) == 7
    assert uploader.pending(session.session_id) == 0


def test_failing_batch_is_retried_alone():
    sink = RecordingSink()
    sink.failures = [SinkDeliveryError("ingest returned success=false")]
    uploader = _uploader(sink, batch_size=2)
    session = _session()
    uploader.enqueue(session.session_id, [_hotel(h) for h in "ABCD"], "t1")

    result = asyncio.run(uploader.flush(session))

    assert result.ingested == 4
    assert result.batches_sent == 2
    assert sink.hotel_keys() == [hotel_key(Site.VAX, h) for h in "ABCD"]


def test_exhausted_batch_reports_keys_and_tasks():
    sink = RecordingSink()
    uploader = _uploader(sink, batch_size=2)
    session = _session()
    uploader.enqueue(session.session_id, [_hotel("A"), _hotel("B")], "t1")
    uploader.enqueue(session.session_id, [_hotel("C")], "t2")
    sink.failures = [StructuralError("400 schema mismatch")]

    result = asyncio.run(uploader.flush(session))

    assert result.batches_failed == 1
    assert result.failed_keys == {hotel_key(Site.VAX, "A"), hotel_key(Site.VAX, "B")}
    assert result.failed_task_ids == {"t1"}
    assert session.ingested_keys == {hotel_key(Site.VAX, "C")}


def test_acknowledged_keys_are_not_resent():
    sink = RecordingSink()
    uploader = _uploader(sink)
    session = _session()
    session.ingested_keys.add(hotel_key(Site.VAX, "A"))
    uploader.enqueue(session.session_id, [_hotel("A"), _hotel("B"), _hotel("B")], "t1")

    result = asyncio.run(uploader.flush(session))

    assert result.ingested == 1
    assert sink.hotel_batches == [[hotel_key(Site.VAX, "B")]]


def test_partial_ack_marks_only_rejected_records():
    sink = RecordingSink()
    sink.reject = {hotel_key(Site.VAX, "B")}
    uploader = _uploader(sink)
    session = _session()
    uploader.enqueue(session.session_id, [_hotel("A"), _hotel("B")], "t7")

    result = asyncio.run(uploader.flush(session))

    assert result.ingested == 1
    assert result.failed_keys == {hotel_key(Site.VAX, "B")}
    assert result.failed_task_ids == {"t7"}
    assert session.ingested_keys == {hotel_key(Site.VAX, "A")}
