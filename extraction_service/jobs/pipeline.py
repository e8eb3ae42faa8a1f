"""Map, validate and enrich raw site rows into unified records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from hotel_rates.mappers import MapContext, RawRecord, map_record
from hotel_rates.schema import HotelOption, RecordKind, RoomOption, Site, UnifiedRecord
from hotel_rates.validation import RecordValidationError, validate

from ..monitoring.metrics import RECORDS_REJECTED_TOTAL, RECORDS_VALIDATED_TOTAL
from .models import RecordError

logger = logging.getLogger(__name__)


@dataclass
class NormalizedBatch:
    records: List[UnifiedRecord] = field(default_factory=list)
    rejected: List[RecordError] = field(default_factory=list)
    skipped: int = 0
    filtered: int = 0


class NormalizationPipeline:
    """Site-agnostic sequencing of map -> validate -> enrich -> emit."""

    def __init__(self, commission_rates: Optional[Dict[str, float]] = None) -> None:
        self.commission_rates = {Site(site): rate for site, rate in (commission_rates or {}).items()}

    def validate(self, record: UnifiedRecord, seen_keys: Optional[Set[str]] = None) -> UnifiedRecord:
        return validate(record, seen_keys)

    def enrich(self, record: UnifiedRecord) -> UnifiedRecord:
        if not isinstance(record, RoomOption) or not record.commission_eligible:
            return record
        if record.commission_percent is None and record.commission_amount is None:
            record.commission_percent = self.commission_rates.get(record.site)
        if record.commission_amount is None and record.commission_percent is not None:
            record.commission_amount = round(record.total_price * record.commission_percent / 100, 2)
        return record

    def _reject(
        self, site: Site, reason: str, message: str, task_id: Optional[str], key: Optional[str], raw: Any
    ) -> RecordError:
        RECORDS_REJECTED_TOTAL.labels(site=site.value, reason=reason).inc()
        logger.warning(
            "Dropped invalid record",
            extra={"site": site.value, "task_id": task_id, "key": key, "reason": reason, "problems": message},
        )
        return RecordError(
            reason=reason, message=message, task_id=task_id, key=key, raw=raw if isinstance(raw, dict) else {"value": repr(raw)}
        )

    def normalize(
        self, raw: RawRecord, context: MapContext, seen_keys: Optional[Set[str]] = None
    ) -> UnifiedRecord:
        record = map_record(raw, context)
        self.validate(record, seen_keys)
        return self.enrich(record)

    def normalize_batch(
        self,
        site: Site,
        kind: RecordKind,
        rows: Iterable[Dict[str, Any]],
        context: MapContext,
        *,
        task_id: Optional[str] = None,
        known_keys: Iterable[str] = (),
        accept: Optional[Callable[[HotelOption], bool]] = None,
    ) -> NormalizedBatch:
        """Normalize one task's rows.

        Records whose key is in ``known_keys`` were delivered earlier and are
        skipped. A rejected record never affects its siblings.
        """

        batch = NormalizedBatch()
        known = set(known_keys)
        seen: Set[str] = set()
        for row in rows:
            try:
                record = map_record(RawRecord(site=site, kind=kind, payload=row), context)
                if record.key in known:
                    batch.skipped += 1
                    continue
                self.validate(record, seen)
            except RecordValidationError as exc:
                batch.rejected.append(self._reject(site, exc.reason, str(exc), task_id, exc.key, exc.raw or row))
                continue
            except (AttributeError, TypeError, ValueError) as exc:
                # row shape the mapper could not read at all
                batch.rejected.append(self._reject(site, "malformed", str(exc), task_id, None, row))
                continue

            if accept is not None and isinstance(record, HotelOption) and not accept(record):
                batch.filtered += 1
                continue
            batch.records.append(self.enrich(record))
            RECORDS_VALIDATED_TOTAL.labels(site=site.value, kind=kind.value).inc()

        logger.debug(
            "Normalized batch",
            extra={
                "site": site.value,
                "task_id": task_id,
                "accepted": len(batch.records),
                "rejected": len(batch.rejected),
                "skipped": batch.skipped,
                "filtered": batch.filtered,
            },
        )
        return batch


__all__ = ["NormalizationPipeline", "NormalizedBatch"]
