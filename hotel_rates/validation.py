"""Field-level validation for unified records."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Set

from .schema import ISO_CURRENCIES, HotelOption, RoomOption, UnifiedRecord

# Allowed drift between total price and nightly rate x nights.
TOTAL_PRICE_TOLERANCE = 0.01


class RecordValidationError(ValueError):
    """A mapped record broke one or more schema rules."""

    reason = "validation"

    def __init__(self, problems: List[str], raw: Optional[Dict[str, Any]] = None, key: Optional[str] = None) -> None:
        self.problems = list(problems)
        self.raw = raw
        self.key = key
        super().__init__("; ".join(self.problems) or "invalid record")


def _check_currency(currency: Optional[str], problems: List[str]) -> None:
    if not currency or currency.upper() not in ISO_CURRENCIES:
        problems.append(f"unknown currency {currency!r}")


def _check_commission(record: UnifiedRecord, eligible: bool, problems: List[str]) -> None:
    if not eligible:
        if record.commission_amount is not None or record.commission_percent is not None:
            problems.append("commission present on a non-eligible rate")
        return
    if record.commission_amount is not None and record.commission_amount < 0:
        problems.append("commission amount is negative")
    if record.commission_percent is not None and not 0 <= record.commission_percent <= 100:
        problems.append("commission percent outside 0-100")


def hotel_problems(hotel: HotelOption) -> List[str]:
    problems: List[str] = []
    if not hotel.site_id:
        problems.append("missing site_id")
    if not hotel.name:
        problems.append("missing name")
    if not hotel.city:
        problems.append("missing city")

    price = hotel.lead_price
    if price is None or price.amount is None or (isinstance(price.amount, float) and math.isnan(price.amount)):
        problems.append("missing lead price")
    else:
        if price.amount < 0:
            problems.append(f"negative lead price {price.amount}")
        _check_currency(price.currency, problems)

    if hotel.star_rating is not None and not 0 <= hotel.star_rating <= 5:
        problems.append(f"star rating {hotel.star_rating} outside 0-5")
    if hotel.review_score is not None and not 0 <= hotel.review_score <= 10:
        problems.append(f"review score {hotel.review_score} outside 0-10")
    if hotel.coordinates is not None:
        if not -90 <= hotel.coordinates.lat <= 90 or not -180 <= hotel.coordinates.lng <= 180:
            problems.append("coordinates out of range")

    _check_commission(hotel, True, problems)
    return problems


def room_problems(room: RoomOption) -> List[str]:
    problems: List[str] = []
    if not room.hotel_site_id:
        problems.append("missing hotel_site_id")
    if not room.room_id:
        problems.append("missing room_id")
    if not room.name:
        problems.append("missing name")

    if room.nightly_rate is None or room.total_price is None:
        problems.append("missing rate")
    else:
        if room.nightly_rate < 0:
            problems.append(f"negative nightly rate {room.nightly_rate}")
        if room.total_price < 0:
            problems.append(f"negative total price {room.total_price}")
        if room.nights:
            expected = room.nightly_rate * room.nights
            if not math.isclose(room.total_price, expected, rel_tol=TOTAL_PRICE_TOLERANCE, abs_tol=0.01):
                problems.append(
                    f"total price {room.total_price} inconsistent with {room.nightly_rate} x {room.nights} nights"
                )
    _check_currency(room.currency, problems)

    if room.cancellation_fee is not None and room.cancellation_fee < 0:
        problems.append("cancellation fee is negative")
    _check_commission(room, room.commission_eligible, problems)
    return problems


def validate(record: UnifiedRecord, seen_keys: Optional[Set[str]] = None) -> UnifiedRecord:
    """Return ``record`` unchanged or raise :class:`RecordValidationError`.

    When ``seen_keys`` is given the record's identity key must not be in it;
    on success the key is added so callers can validate a whole batch.
    """

    if isinstance(record, HotelOption):
        problems = hotel_problems(record)
    elif isinstance(record, RoomOption):
        problems = room_problems(record)
    else:
        raise TypeError(f"Unsupported record type {type(record).__name__}")

    key = record.key
    if seen_keys is not None and key in seen_keys:
        problems.append(f"duplicate record {key}")
    if problems:
        raise RecordValidationError(problems, raw=record.raw_json, key=key)
    if seen_keys is not None:
        seen_keys.add(key)
    return record


__all__ = ["RecordValidationError", "hotel_problems", "room_problems", "validate", "TOTAL_PRICE_TOLERANCE"]
