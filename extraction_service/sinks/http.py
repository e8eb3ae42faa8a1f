"""HTTP client for the travel database ingest API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from hotel_rates import schema
from hotel_rates.schema import HotelOption, RoomOption, Site

from ..config import Settings, get_settings
from ..errors import SinkDeliveryError
from .base import IngestAck, IngestSink

logger = logging.getLogger(__name__)


class HttpIngestSink(IngestSink):
    """Posts record batches to ``/ingest_hotels`` and ``/ingest_rooms``.

    Transport errors and HTTP status errors are raised unchanged so the retry
    coordinator can classify them; a ``success: false`` body is a transient
    delivery failure.
    """

    def __init__(self, client: httpx.AsyncClient, *, owns_client: bool = False) -> None:
        self.client = client
        self._owns_client = owns_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpIngestSink":
        headers = {"X-API-Key": settings.ingest_api_key} if settings.ingest_api_key else {}
        client = httpx.AsyncClient(
            base_url=settings.ingest_base_url,
            timeout=settings.ingest_timeout_seconds,
            headers=headers,
        )
        return cls(client, owns_client=True)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.post(path, json=payload)
        response.raise_for_status()
        body = response.json()
        if not body.get("success", False):
            raise SinkDeliveryError(body.get("error") or f"{path} reported failure")
        return body.get("results") or {}

    @staticmethod
    def _ack(results: Dict[str, Any], total: int, key_of) -> IngestAck:
        failed = {key_of(item) for item in results.get("failed_ids") or []}
        errors = list(results.get("error_details") or [])
        return IngestAck(accepted=total - len(failed), failed_keys=failed, errors=errors)

    async def ingest_hotels(
        self, trip_id: str, site: Site, session_id: str, hotels: Sequence[HotelOption]
    ) -> IngestAck:
        payload = {
            "trip_id": trip_id,
            "site": site.value,
            "session_id": session_id,
            "hotels": [hotel.to_dict() for hotel in hotels],
        }
        results = await self._post("/ingest_hotels", payload)
        logger.debug("Ingested hotels", extra={"session_id": session_id, "count": len(hotels), "results": results})
        return self._ack(results, len(hotels), lambda site_id: schema.hotel_key(site, str(site_id)))

    async def ingest_rooms(
        self, trip_id: str, site: Site, session_id: str, hotel_key: str, rooms: Sequence[RoomOption]
    ) -> IngestAck:
        payload = {
            "trip_id": trip_id,
            "site": site.value,
            "session_id": session_id,
            "hotel_key": hotel_key,
            "rooms": [room.to_dict() for room in rooms],
        }
        results = await self._post("/ingest_rooms", payload)
        logger.debug("Ingested rooms", extra={"session_id": session_id, "hotel_key": hotel_key, "count": len(rooms)})
        hotel_site_id = hotel_key.split(":", 2)[-1]
        return self._ack(results, len(rooms), lambda room_id: schema.room_key(site, hotel_site_id, str(room_id)))

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def build_sink(settings: Optional[Settings] = None) -> HttpIngestSink:
    return HttpIngestSink.from_settings(settings or get_settings())


__all__ = ["HttpIngestSink", "build_sink"]
