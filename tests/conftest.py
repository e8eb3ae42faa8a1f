import asyncio
from datetime import date

import pytest

from extraction_service.adapters.base import ExtractorAdapter
from extraction_service.adapters.registry import AdapterRegistry
from extraction_service.config import Settings
from extraction_service.jobs.manager import SessionManager
from extraction_service.jobs.models import SearchParams
from extraction_service.jobs.store import MemorySessionStore
from extraction_service.sinks.base import IngestAck, IngestSink
from hotel_rates.schema import Site


def navitrip_hotel(index, price=100.0, **extra):
    row = {
        "hotelId": f"H{index}",
        "name": f"Hotel {index}",
        "city": "Cancun",
        "country": "MX",
        "starRating": 4,
        "price": {"amount": price, "currency": "USD", "perNight": True},
    }
    row.update(extra)
    return row


def navitrip_room(code, nightly=100.0, nights=3, **extra):
    row = {
        "roomCode": code,
        "roomName": f"Room {code}",
        "nightlyRate": nightly,
        "totalRate": round(nightly * nights, 2),
        "currency": "USD",
        "commissionable": True,
        "commissionPercent": 10,
    }
    row.update(extra)
    return row


class FakeAdapter(ExtractorAdapter):
    """Scripted adapter; failure lists are consumed one exception per call."""

    def __init__(self, site=Site.NAVITRIP, hotels=None, rooms=None, delay=0.0):
        self.site = site
        self.hotels = list(hotels or [])
        self.rooms = dict(rooms or {})
        self.search_failures = []
        self.room_failures = {}
        self.delay = delay
        self.calls = []
        self.active = 0
        self.peak = 0
        self.on_room = None

    async def _track(self):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

    async def search(self, params):
        self.calls.append(("search", None))
        await self._track()
        if self.search_failures:
            raise self.search_failures.pop(0)
        return list(self.hotels)

    async def room_rates(self, hotel_id, params):
        self.calls.append(("room_rates", hotel_id))
        await self._track()
        if self.on_room is not None:
            self.on_room(hotel_id)
        failures = self.room_failures.get(hotel_id)
        if failures:
            raise failures.pop(0)
        return list(self.rooms.get(hotel_id, []))

    def room_calls(self):
        return [target for kind, target in self.calls if kind == "room_rates"]


class RecordingSink(IngestSink):
    def __init__(self):
        self.hotel_batches = []
        self.room_batches = []
        self.failures = []
        self.reject = set()

    def _ack(self, records):
        failed = {record.key for record in records if record.key in self.reject}
        return IngestAck(accepted=len(records) - len(failed), failed_keys=failed)

    async def ingest_hotels(self, trip_id, site, session_id, hotels):
        if self.failures:
            raise self.failures.pop(0)
        self.hotel_batches.append([hotel.key for hotel in hotels])
        return self._ack(hotels)

    async def ingest_rooms(self, trip_id, site, session_id, hotel_key, rooms):
        if self.failures:
            raise self.failures.pop(0)
        self.room_batches.append((hotel_key, [room.key for room in rooms]))
        return self._ack(rooms)

    def hotel_keys(self):
        return [key for batch in self.hotel_batches for key in batch]

    def room_keys(self):
        return [key for _, batch in self.room_batches for key in batch]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}",
        backoff_base_seconds=0.0,
        backoff_jitter_seconds=0.0,
        rate_limited_delay_seconds=0.0,
        per_site_concurrency=2,
        upload_batch_size=50,
    )


@pytest.fixture
def params():
    return SearchParams(destination="Cancun", check_in=date(2026, 3, 1), check_out=date(2026, 3, 4))


@pytest.fixture
def make_manager(settings):
    def _make(adapter, sink=None, store=None, **overrides):
        registry = AdapterRegistry()
        registry.register(adapter)
        config = settings.model_copy(update=overrides) if overrides else settings

        async def _no_sleep(delay):
            return None

        return SessionManager(
            store or MemorySessionStore(), registry, sink or RecordingSink(), settings=config, sleep=_no_sleep
        )

    return _make
