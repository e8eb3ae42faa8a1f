"""Site-specific mappers from raw extractor rows to the unified schema.

Each mapper is a pure function of the raw row and a :class:`MapContext`.
Dispatch happens on the ``(site, kind)`` tag carried by :class:`RawRecord`,
never on the shape of the payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .payloads import currency_from_text, parse_float, parse_int, parse_price
from .schema import Coordinates, HotelOption, LeadPrice, RecordKind, RoomOption, Site, UnifiedRecord
from .validation import RecordValidationError

PACKAGE_MARKERS = ("air", "package", "flight", "vacation", "bundle")


class PackageDecompositionUnavailable(RecordValidationError):
    """A bundled package price could not be split into its hotel portion."""

    reason = "package_decomposition"


@dataclass(frozen=True)
class RawRecord:
    site: Site
    kind: RecordKind
    payload: Dict[str, Any]


@dataclass(frozen=True)
class MapContext:
    """Request details a mapper may need to complete a record."""

    destination: str = ""
    nights: Optional[int] = None
    hotel_site_id: Optional[str] = None


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _str(value: Any) -> str:
    return str(value).strip() if value not in (None, "") else ""


def _image_urls(items: Any) -> List[str]:
    urls: List[str] = []
    for item in items or []:
        url = item.get("url") if isinstance(item, dict) else item
        if url:
            urls.append(str(url))
    return urls


def _coordinates(lat: Any, lng: Any) -> Optional[Coordinates]:
    lat_f, lng_f = parse_float(lat), parse_float(lng)
    if lat_f is None or lng_f is None:
        return None
    return Coordinates(lat=lat_f, lng=lng_f)


def _nonzero_rating(value: Any) -> Optional[float]:
    rating = parse_float(value)
    return rating if rating else None


def _nightly_from_total(total: Optional[float], nightly: Optional[float], nights: Optional[int]) -> Tuple[Optional[float], Optional[float]]:
    if nightly is None and total is not None and nights:
        nightly = round(total / nights, 2)
    if total is None and nightly is not None and nights:
        total = round(nightly * nights, 2)
    return nightly, total


def is_package(label: Any) -> bool:
    text = _str(label).lower()
    if not text or text in {"hotel", "hotel-only", "hotel only", "hotelonly"}:
        return False
    return any(marker in text for marker in PACKAGE_MARKERS)


# ---------------------------------------------------------------------------
# Navitrip
# ---------------------------------------------------------------------------

def map_navitrip_hotel(raw: Dict[str, Any], context: MapContext) -> HotelOption:
    price = raw.get("price")
    if not isinstance(price, dict):
        price = {"display": price}
    amount = parse_price(_first(price.get("amount"), price.get("display"), price.get("formatted")))
    currency = _first(price.get("currency"), currency_from_text(price.get("display")), "USD")
    commission = raw.get("commission") or {}

    return HotelOption(
        site=Site.NAVITRIP,
        site_id=_str(_first(raw.get("hotelId"), raw.get("id"), raw.get("detailUrl"), raw.get("name"))),
        name=_str(raw.get("name")),
        city=_str(_first(raw.get("city"), context.destination)),
        region=raw.get("state"),
        country=raw.get("country"),
        address=raw.get("address"),
        giata_id=_first(raw.get("giataId")),
        coordinates=_coordinates(raw.get("latitude"), raw.get("longitude")),
        lead_price=LeadPrice(amount=amount, currency=str(currency).upper(), per_night=bool(price.get("perNight", True))),
        star_rating=_nonzero_rating(raw.get("starRating")),
        review_score=parse_float(raw.get("reviewScore")),
        review_count=parse_int(raw.get("reviewCount")),
        amenities=list(raw.get("amenities") or []),
        images=_image_urls(raw.get("images")),
        available=bool(raw.get("available", True)),
        refundable=raw.get("refundable"),
        free_cancellation_until=raw.get("freeCancellationUntil"),
        commission_percent=parse_float(commission.get("percent")),
        commission_amount=parse_price(commission.get("amount")),
        detail_url=raw.get("detailUrl"),
        raw_json=raw,
    )


def map_navitrip_room(raw: Dict[str, Any], context: MapContext) -> RoomOption:
    nightly, total = _nightly_from_total(
        parse_price(raw.get("totalRate")), parse_price(raw.get("nightlyRate")), context.nights
    )
    eligible = bool(raw.get("commissionable", True))
    return RoomOption(
        site=Site.NAVITRIP,
        hotel_site_id=_str(_first(raw.get("hotelId"), context.hotel_site_id)),
        room_id=_str(_first(raw.get("roomCode"), raw.get("roomName"))),
        name=_str(raw.get("roomName")),
        description=raw.get("description"),
        nightly_rate=nightly,
        total_price=total,
        currency=str(_first(raw.get("currency"), "USD")).upper(),
        nights=context.nights,
        taxes_included=bool(raw.get("taxesIncluded", False)),
        max_occupancy=parse_int(raw.get("maxOccupancy")),
        bed_types=list(raw.get("beds") or []),
        refundable=bool(raw.get("refundable", False)),
        cancellation_deadline=raw.get("cancelBy"),
        cancellation_fee=parse_price(raw.get("cancelFee")),
        commission_eligible=eligible,
        commission_percent=parse_float(raw.get("commissionPercent")) if eligible else None,
        commission_amount=parse_price(raw.get("commissionAmount")) if eligible else None,
        raw_json=raw,
    )


# ---------------------------------------------------------------------------
# Trisept (Delta / WAD)
# ---------------------------------------------------------------------------

def _trisept_hotel_portion(pricing: Dict[str, Any], product_type: Any, key: str) -> Optional[float]:
    """Hotel-only amount of a Trisept price block.

    Raises :class:`PackageDecompositionUnavailable` when the block describes
    a package and no hotel portion can be derived.
    """

    if not is_package(product_type):
        return parse_price(_first(pricing.get("hotelPortion"), pricing.get("total"), pricing.get("amount")))

    portion = parse_price(pricing.get("hotelPortion"))
    if portion is not None:
        return portion
    components = [c for c in pricing.get("components") or [] if isinstance(c, dict)]
    hotel_parts = [parse_price(c.get("amount")) for c in components if _str(c.get("type")).lower() == "hotel"]
    hotel_parts = [part for part in hotel_parts if part is not None]
    if hotel_parts:
        return round(sum(hotel_parts), 2)
    raise PackageDecompositionUnavailable(
        [f"package price for {key!r} ({product_type}) has no hotel portion"], key=key
    )


def map_trisept_hotel(raw: Dict[str, Any], context: MapContext) -> HotelOption:
    location = raw.get("location") or {}
    geo = location.get("geo") or {}
    pricing = raw.get("pricing") or {}
    rating = raw.get("rating") or {}
    cancellation = raw.get("cancellation") or {}
    site_id = _str(_first(raw.get("propertyId"), raw.get("url"), raw.get("propertyName")))
    product_type = _first(raw.get("productType"), raw.get("packageType"))

    try:
        amount = _trisept_hotel_portion(pricing, product_type, site_id)
    except PackageDecompositionUnavailable as exc:
        exc.raw = raw
        raise

    return HotelOption(
        site=Site.TRISEPT,
        site_id=site_id,
        name=_str(raw.get("propertyName")),
        city=_str(_first(location.get("city"), context.destination)),
        region=location.get("region"),
        country=location.get("country"),
        address=location.get("address"),
        coordinates=_coordinates(geo.get("lat"), geo.get("lng")),
        distance_to_center=parse_float(location.get("distanceToCenter")),
        lead_price=LeadPrice(
            amount=amount,
            currency=str(_first(pricing.get("currency"), "USD")).upper(),
            per_night=bool(pricing.get("perNight", False)),
        ),
        star_rating=_nonzero_rating(rating.get("stars")),
        review_score=parse_float(rating.get("reviewScore")),
        review_count=parse_int(rating.get("reviewCount")),
        amenities=list(raw.get("amenities") or []),
        images=_image_urls(raw.get("media")),
        available=bool(raw.get("available", True)),
        refundable=cancellation.get("refundable"),
        free_cancellation_until=cancellation.get("freeUntil"),
        package_type=product_type,
        detail_url=raw.get("url"),
        raw_json=raw,
    )


def map_trisept_room(raw: Dict[str, Any], context: MapContext) -> RoomOption:
    rate = raw.get("rate") or {}
    cancellation = raw.get("cancellation") or {}
    commission = raw.get("commission") or {}
    occupancy = raw.get("occupancy") or {}
    room_id = _str(_first(raw.get("roomTypeCode"), raw.get("roomTypeName")))
    package_type = raw.get("packageType")

    if is_package(package_type):
        portion = parse_price(rate.get("hotelPortion"))
        if portion is None:
            raise PackageDecompositionUnavailable(
                [f"package rate for room {room_id!r} ({package_type}) has no hotel portion"], raw=raw, key=room_id
            )
        nightly, total = _nightly_from_total(portion, None, context.nights)
    else:
        nightly, total = _nightly_from_total(parse_price(rate.get("total")), parse_price(rate.get("nightly")), context.nights)

    eligible = bool(commission.get("eligible", True))
    return RoomOption(
        site=Site.TRISEPT,
        hotel_site_id=_str(_first(raw.get("propertyId"), context.hotel_site_id)),
        room_id=room_id,
        name=_str(raw.get("roomTypeName")),
        description=raw.get("description"),
        nightly_rate=nightly,
        total_price=total,
        currency=str(_first(rate.get("currency"), "USD")).upper(),
        nights=context.nights,
        taxes_included=bool(rate.get("taxesIncluded", False)),
        max_occupancy=parse_int(occupancy.get("max")),
        bed_types=list(raw.get("bedTypes") or []),
        refundable=bool(cancellation.get("refundable", False)),
        cancellation_deadline=cancellation.get("deadline"),
        cancellation_fee=parse_price(cancellation.get("fee")),
        commission_eligible=eligible,
        commission_percent=parse_float(commission.get("percent")) if eligible else None,
        commission_amount=parse_price(commission.get("amount")) if eligible else None,
        raw_json=raw,
    )


# ---------------------------------------------------------------------------
# VAX
# ---------------------------------------------------------------------------

def map_vax_hotel(raw: Dict[str, Any], context: MapContext) -> HotelOption:
    lead = raw.get("leadRate") or {}
    geo = raw.get("geo") or {}
    reviews = raw.get("tripAdvisor") or {}
    amenities = raw.get("amenityList") or ""
    if isinstance(amenities, str):
        amenities = [item.strip() for item in amenities.split("|") if item.strip()]

    return HotelOption(
        site=Site.VAX,
        site_id=_str(_first(raw.get("code"), raw.get("hotelName"))),
        name=_str(raw.get("hotelName")),
        city=_str(_first(raw.get("cityName"), context.destination)),
        region=raw.get("stateCode"),
        country=raw.get("countryCode"),
        coordinates=_coordinates(geo.get("lat"), geo.get("lng")),
        lead_price=LeadPrice(
            amount=parse_price(lead.get("amount")),
            currency=str(_first(lead.get("currencyCode"), "USD")).upper(),
            per_night=bool(lead.get("isPerNight", True)),
        ),
        star_rating=_nonzero_rating(raw.get("starRating")),
        review_score=parse_float(reviews.get("rating")),
        review_count=parse_int(reviews.get("reviewCount")),
        amenities=list(amenities),
        images=_image_urls(raw.get("imageUrls")),
        available=not bool(raw.get("soldOut", False)),
        raw_json=raw,
    )


def map_vax_room(raw: Dict[str, Any], context: MapContext) -> RoomOption:
    nightly, total = _nightly_from_total(
        parse_price(raw.get("totalPrice")), parse_price(raw.get("avgNightlyRate")), context.nights
    )
    policy = raw.get("cancelPolicy") or {}
    eligible = bool(raw.get("commissionable", False))
    return RoomOption(
        site=Site.VAX,
        hotel_site_id=_str(_first(raw.get("hotelCode"), context.hotel_site_id)),
        room_id=_str(_first(raw.get("roomId"), raw.get("roomName"))),
        name=_str(raw.get("roomName")),
        description=raw.get("description"),
        nightly_rate=nightly,
        total_price=total,
        currency=str(_first(raw.get("currencyCode"), "USD")).upper(),
        nights=context.nights,
        taxes_included=bool(raw.get("taxesIncluded", False)),
        refundable=not bool(raw.get("nonRefundable", False)),
        cancellation_deadline=policy.get("deadline"),
        cancellation_fee=parse_price(policy.get("fee")),
        commission_eligible=eligible,
        commission_percent=parse_float(raw.get("commissionPct")) if eligible else None,
        commission_amount=parse_price(raw.get("commissionAmt")) if eligible else None,
        raw_json=raw,
    )


Mapper = Callable[[Dict[str, Any], MapContext], UnifiedRecord]

MAPPERS: Dict[Tuple[Site, RecordKind], Mapper] = {
    (Site.NAVITRIP, RecordKind.HOTEL): map_navitrip_hotel,
    (Site.NAVITRIP, RecordKind.ROOM): map_navitrip_room,
    (Site.TRISEPT, RecordKind.HOTEL): map_trisept_hotel,
    (Site.TRISEPT, RecordKind.ROOM): map_trisept_room,
    (Site.VAX, RecordKind.HOTEL): map_vax_hotel,
    (Site.VAX, RecordKind.ROOM): map_vax_room,
}


def map_record(record: RawRecord, context: MapContext) -> UnifiedRecord:
    try:
        mapper = MAPPERS[(record.site, record.kind)]
    except KeyError as exc:
        raise ValueError(f"No mapper registered for {record.site.value}/{record.kind.value}") from exc
    return mapper(record.payload, context)


__all__ = [
    "RawRecord",
    "MapContext",
    "PackageDecompositionUnavailable",
    "MAPPERS",
    "map_record",
    "is_package",
    "map_navitrip_hotel",
    "map_navitrip_room",
    "map_trisept_hotel",
    "map_trisept_room",
    "map_vax_hotel",
    "map_vax_room",
]
