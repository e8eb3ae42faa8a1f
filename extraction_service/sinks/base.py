"""Ingest sink contract consumed by the batch uploader."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence, Set

from hotel_rates.schema import HotelOption, RoomOption, Site


@dataclass
class IngestAck:
    """Result of one ingest call; ``failed_keys`` are record keys the sink refused."""

    accepted: int = 0
    failed_keys: Set[str] = field(default_factory=set)
    errors: List[str] = field(default_factory=list)


class IngestSink(ABC):
    """Destination for normalized records.

    Implementations must be idempotent for a repeated record identity since
    a resumed session may deliver a record again.
    """

    @abstractmethod
    async def ingest_hotels(
        self, trip_id: str, site: Site, session_id: str, hotels: Sequence[HotelOption]
    ) -> IngestAck:
        ...

    @abstractmethod
    async def ingest_rooms(
        self, trip_id: str, site: Site, session_id: str, hotel_key: str, rooms: Sequence[RoomOption]
    ) -> IngestAck:
        ...

    async def aclose(self) -> None:
        return None


__all__ = ["IngestAck", "IngestSink"]
