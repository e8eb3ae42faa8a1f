import pytest

from hotel_rates.schema import Coordinates, HotelOption, LeadPrice, RoomOption, Site
from hotel_rates.validation import RecordValidationError, validate


def _hotel(**overrides):
    fields = dict(site=Site.NAVITRIP, site_id="H1", name="Hotel One", city="Cancun", lead_price=LeadPrice(120.0))
    fields.update(overrides)
    return HotelOption(**fields)


def _room(**overrides):
    fields = dict(
        site=Site.NAVITRIP,
        hotel_site_id="H1",
        room_id="DBL",
        name="Double",
        nightly_rate=100.0,
        total_price=300.0,
        nights=3,
    )
    fields.update(overrides)
    return RoomOption(**fields)


def test_valid_records_pass_and_are_tracked():
    seen = set()
    validate(_hotel(), seen)
    validate(_room(), seen)
    assert seen == {"hotel:navitrip:H1", "room:navitrip:H1:DBL"}


def test_every_problem_is_reported():
    hotel = _hotel(
        name="",
        lead_price=LeadPrice(-5.0, currency="XXX"),
        star_rating=6,
        review_score=11,
        coordinates=Coordinates(lat=95, lng=0),
    )
    with pytest.raises(RecordValidationError) as excinfo:
        validate(hotel)
    problems = excinfo.value.problems
    assert len(problems) == 6
    assert excinfo.value.key == "hotel:navitrip:H1"


def test_room_total_tolerance():
    validate(_room(total_price=302.9))
    with pytest.raises(RecordValidationError, match="inconsistent"):
        validate(_room(total_price=310.0))


def test_room_total_unchecked_without_nights():
    validate(_room(nights=None, total_price=999.0))


def test_commission_rules():
    with pytest.raises(RecordValidationError, match="non-eligible"):
        validate(_room(commission_eligible=False, commission_amount=10.0))
    with pytest.raises(RecordValidationError, match="negative"):
        validate(_room(commission_amount=-1.0))
    with pytest.raises(RecordValidationError, match="0-100"):
        validate(_room(commission_percent=150))


def test_duplicate_key_rejected():
    seen = {"hotel:navitrip:H1"}
    with pytest.raises(RecordValidationError, match="duplicate"):
        validate(_hotel(), seen)


@pytest.mark.parametrize("currency", ["AWG", "ANG", "BZD", "BMD", "GTQ", "PAB", "HNL", "XCD"])
def test_caribbean_and_central_american_currencies_are_accepted(currency):
    validate(_hotel(lead_price=LeadPrice(180.0, currency=currency)))
    validate(_room(currency=currency))
