import asyncio
from datetime import date

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FakeAdapter, navitrip_hotel
from extraction_service.api.routes import router
from extraction_service.config import get_settings
from extraction_service.jobs.manager import get_session_manager
from extraction_service.jobs.models import SearchParams
from extraction_service.service import ExtractionService, get_extraction_service
from hotel_rates.schema import Site

OPERATOR = {"X-API-Key": "op-key"}
ADMIN = {"X-API-Key": "admin-key"}

SEARCH = {
    "trip_id": "trip-1",
    "site": "navitrip",
    "destination": "Cancun",
    "check_in": "2026-03-01",
    "check_out": "2026-03-04",
}


@pytest.fixture
def api(monkeypatch, tmp_path, make_manager):
    monkeypatch.setenv("OPERATOR_API_KEYS", "op-key")
    monkeypatch.setenv("ADMIN_API_KEYS", "admin-key")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    get_settings.cache_clear()

    manager = make_manager(FakeAdapter(hotels=[navitrip_hotel(i) for i in range(4)]))
    service = ExtractionService(manager)
    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.dependency_overrides[get_session_manager] = lambda: manager
    app.dependency_overrides[get_extraction_service] = lambda: service
    with TestClient(app) as client:
        yield client, manager
    get_settings.cache_clear()


def test_requests_need_a_known_key(api):
    client, _ = api
    assert client.get("/api/sessions/abc").status_code == 401
    assert client.get("/api/sessions/abc", headers={"X-API-Key": "nope"}).status_code == 403


def test_extract_hotels_and_poll(api):
    client, _ = api
    response = client.post("/api/extractions/hotels", json={**SEARCH, "wait": True}, headers=OPERATOR)
    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "completed"
    assert body["counters"]["hotels_found"] == 4

    detail = client.get(f"/api/sessions/{body['session_id']}", headers=OPERATOR).json()
    assert detail["site"] == "navitrip"
    assert detail["tasks"][0]["status"] == "succeeded"

    progress = client.get(f"/api/sessions/{body['session_id']}/progress", headers=OPERATOR).json()
    assert progress["hotels_found"] == 4
    assert progress["tasks"] == {"succeeded": 1}

    resume = client.post(f"/api/sessions/{body['session_id']}/resume", headers=OPERATOR)
    assert resume.status_code == 409


def test_duplicate_active_session_returns_conflict(api):
    client, manager = api
    params = SearchParams("Cancun", date(2026, 3, 1), date(2026, 3, 4))
    existing = asyncio.run(manager.create("trip-1", Site.NAVITRIP, params))

    response = client.post("/api/extractions/hotels", json=SEARCH, headers=OPERATOR)

    assert response.status_code == 409
    assert response.json()["detail"]["session_id"] == existing.session_id


def test_unknown_session_and_bad_dates(api):
    client, _ = api
    assert client.get("/api/sessions/missing/progress", headers=OPERATOR).status_code == 404
    bad = {**SEARCH, "check_out": "2026-02-27"}
    assert client.post("/api/extractions/hotels", json=bad, headers=OPERATOR).status_code == 422
    rooms = {**SEARCH, "hotel_ids": []}
    assert client.post("/api/extractions/rooms", json=rooms, headers=OPERATOR).status_code == 422


def test_unregistered_site_is_bad_request(api):
    client, _ = api
    response = client.post("/api/extractions/hotels", json={**SEARCH, "site": "vax"}, headers=OPERATOR)
    assert response.status_code == 400


def test_cancel_requires_admin(api):
    client, _ = api
    created = client.post("/api/extractions/hotels", json={**SEARCH, "wait": True}, headers=OPERATOR).json()
    assert client.post(f"/api/sessions/{created['session_id']}/cancel", headers=OPERATOR).status_code == 403
    response = client.post(f"/api/sessions/{created['session_id']}/cancel", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["status"] == "completed"


def test_health_lists_registered_sites(api):
    client, _ = api
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["sites"] == ["navitrip"]
