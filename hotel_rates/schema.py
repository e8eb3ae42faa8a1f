"""Unified hotel and room record shapes shared by every site."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class Site(str, Enum):
    """Booking sites the orchestrator knows how to normalize."""

    NAVITRIP = "navitrip"
    TRISEPT = "trisept"
    VAX = "vax"


class RecordKind(str, Enum):
    HOTEL = "hotel"
    ROOM = "room"


# Active ISO 4217 currency codes, excluding precious metals and testing codes.
ISO_CURRENCIES = frozenset(
    """
    AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND BOB BOV
    BRL BSD BTN BWP BYN BZD CAD CDF CHE CHF CHW CLF CLP CNY COP COU CRC CUC CUP CVE
    CZK DJF DKK DOP DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GNF GTQ GYD HKD
    HNL HTG HUF IDR ILS INR IQD IRR ISK JMD JOD JPY KES KGS KHR KMF KPW KRW KWD KYD
    KZT LAK LBP LKR LRD LSL LYD MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MXV
    MYR MZN NAD NGN NIO NOK NPR NZD OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD RUB
    RWF SAR SBD SCR SDG SEK SGD SHP SLE SLL SOS SRD SSP STN SVC SYP SZL THB TJS TMT
    TND TOP TRY TTD TWD TZS UAH UGX USD USN UYI UYU UYW UZS VED VES VND VUV WST XAF
    XCD XCG XOF XPF YER ZAR ZMW ZWG ZWL
    """.split()
)


@dataclass
class Coordinates:
    lat: float
    lng: float


@dataclass
class LeadPrice:
    """Starting price advertised for a hotel."""

    amount: float
    currency: str = "USD"
    per_night: bool = True


def hotel_key(site: Union[Site, str], site_id: str) -> str:
    return f"hotel:{Site(site).value}:{site_id}"


def room_key(site: Union[Site, str], hotel_site_id: str, room_id: str) -> str:
    return f"room:{Site(site).value}:{hotel_site_id}:{room_id}"


@dataclass
class HotelOption:
    """One hotel's availability as discovered on a given site."""

    site: Site
    site_id: str
    name: str
    city: str
    lead_price: LeadPrice
    giata_id: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    distance_to_center: Optional[float] = None
    star_rating: Optional[float] = None
    review_score: Optional[float] = None
    review_count: Optional[int] = None
    amenities: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    available: bool = True
    refundable: Optional[bool] = None
    free_cancellation_until: Optional[str] = None
    commission_percent: Optional[float] = None
    commission_amount: Optional[float] = None
    package_type: Optional[str] = None
    detail_url: Optional[str] = None
    raw_json: Dict[str, Any] = field(default_factory=dict, repr=False)

    kind = RecordKind.HOTEL

    @property
    def key(self) -> str:
        return hotel_key(self.site, self.site_id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["site"] = self.site.value
        return data


@dataclass
class RoomOption:
    """One bookable room configuration for a hotel."""

    site: Site
    hotel_site_id: str
    room_id: str
    name: str
    nightly_rate: float
    total_price: float
    currency: str = "USD"
    nights: Optional[int] = None
    taxes_included: bool = False
    description: Optional[str] = None
    max_occupancy: Optional[int] = None
    bed_types: List[str] = field(default_factory=list)
    room_size: Optional[float] = None
    refundable: bool = False
    cancellation_deadline: Optional[str] = None
    cancellation_fee: Optional[float] = None
    commission_eligible: bool = True
    commission_percent: Optional[float] = None
    commission_amount: Optional[float] = None
    raw_json: Dict[str, Any] = field(default_factory=dict, repr=False)

    kind = RecordKind.ROOM

    @property
    def key(self) -> str:
        return room_key(self.site, self.hotel_site_id, self.room_id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["site"] = self.site.value
        return data


UnifiedRecord = Union[HotelOption, RoomOption]


__all__ = [
    "Site",
    "RecordKind",
    "ISO_CURRENCIES",
    "Coordinates",
    "LeadPrice",
    "HotelOption",
    "RoomOption",
    "UnifiedRecord",
    "hotel_key",
    "room_key",
]
