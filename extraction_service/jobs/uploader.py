"""Buffered, batched delivery of validated records to the ingest sink."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from hotel_rates.schema import HotelOption, RoomOption, UnifiedRecord, hotel_key

from ..monitoring.metrics import INGEST_BATCHES_FAILED, RECORDS_INGESTED_TOTAL
from ..sinks.base import IngestAck, IngestSink
from .models import ExtractionSession
from .retry import RetryCoordinator

logger = logging.getLogger(__name__)

# (task_id, record)
_Pending = Tuple[Optional[str], UnifiedRecord]


@dataclass
class FlushResult:
    ingested: int = 0
    failed: int = 0
    failed_keys: Set[str] = field(default_factory=set)
    failed_task_ids: Set[str] = field(default_factory=set)
    batches_sent: int = 0
    batches_failed: int = 0

    def merge(self, other: "FlushResult") -> "FlushResult":
        self.ingested += other.ingested
        self.failed += other.failed
        self.failed_keys |= other.failed_keys
        self.failed_task_ids |= other.failed_task_ids
        self.batches_sent += other.batches_sent
        self.batches_failed += other.batches_failed
        return self


def _chunks(items: Sequence[_Pending], size: int) -> List[Sequence[_Pending]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchUploader:
    """Accumulates records per session and flushes them in bounded batches.

    Each batch goes through the retry coordinator on its own, so a failing
    batch never causes an acknowledged one to be sent again.
    """

    def __init__(self, sink: IngestSink, retry: Optional[RetryCoordinator] = None, batch_size: int = 50) -> None:
        self.sink = sink
        self.retry = retry or RetryCoordinator()
        self.batch_size = max(1, batch_size)
        self._buffers: Dict[str, List[_Pending]] = defaultdict(list)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def enqueue(self, session_id: str, records: Sequence[UnifiedRecord], task_id: Optional[str] = None) -> None:
        self._buffers[session_id].extend((task_id, record) for record in records)

    def pending(self, session_id: str) -> int:
        return len(self._buffers.get(session_id, ()))

    def discard(self, session_id: str) -> None:
        self._buffers.pop(session_id, None)
        self._locks.pop(session_id, None)

    async def flush(self, session: ExtractionSession) -> FlushResult:
        async with self._locks[session.session_id]:
            snapshot = self._buffers.pop(session.session_id, [])
            result = FlushResult()
            if not snapshot:
                return result

            hotels: List[_Pending] = []
            rooms: Dict[str, List[_Pending]] = defaultdict(list)
            queued: Set[str] = set()
            for task_id, record in snapshot:
                key = record.key
                if key in session.ingested_keys or key in queued:
                    continue
                queued.add(key)
                if isinstance(record, HotelOption):
                    hotels.append((task_id, record))
                else:
                    rooms[hotel_key(record.site, record.hotel_site_id)].append((task_id, record))

            for batch in _chunks(hotels, self.batch_size):
                result.merge(await self._send(session, batch, None))
            for parent_key, pending in rooms.items():
                for batch in _chunks(pending, self.batch_size):
                    result.merge(await self._send(session, batch, parent_key))

        logger.info(
            "Flushed records",
            extra={
                "session_id": session.session_id,
                "ingested": result.ingested,
                "failed": result.failed,
                "batches_sent": result.batches_sent,
                "batches_failed": result.batches_failed,
            },
        )
        return result

    async def _send(
        self, session: ExtractionSession, batch: Sequence[_Pending], parent_key: Optional[str]
    ) -> FlushResult:
        records = [record for _, record in batch]

        async def _call() -> IngestAck:
            if parent_key is None:
                return await self.sink.ingest_hotels(session.trip_id, session.site, session.session_id, records)
            rooms: List[RoomOption] = records  # type: ignore[assignment]
            return await self.sink.ingest_rooms(session.trip_id, session.site, session.session_id, parent_key, rooms)

        label = f"{session.session_id}:ingest:{parent_key or 'hotels'}"
        outcome = await self.retry.execute(label, _call)
        result = FlushResult(batches_sent=1)
        if not outcome.ok:
            INGEST_BATCHES_FAILED.inc()
            logger.error(
                "Ingest batch failed",
                extra={"session_id": session.session_id, "size": len(batch), "error": outcome.error},
            )
            result.batches_failed = 1
            for task_id, record in batch:
                result.failed += 1
                result.failed_keys.add(record.key)
                if task_id:
                    result.failed_task_ids.add(task_id)
            return result

        ack: IngestAck = outcome.result or IngestAck(accepted=len(batch))
        for task_id, record in batch:
            if record.key in ack.failed_keys:
                result.failed += 1
                result.failed_keys.add(record.key)
                if task_id:
                    result.failed_task_ids.add(task_id)
            else:
                session.ingested_keys.add(record.key)
                result.ingested += 1
        RECORDS_INGESTED_TOTAL.inc(result.ingested)
        if ack.errors:
            logger.warning("Sink rejected records", extra={"session_id": session.session_id, "errors": ack.errors})
        return result


__all__ = ["BatchUploader", "FlushResult"]
