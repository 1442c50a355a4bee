from decimal import Decimal

import pytest

from raceclub import pricing
from raceclub.models import Driver, Event


EVENT = Event(id=1, member_price=Decimal("15"), non_member_price=Decimal("30"), junior_price=Decimal("5"))


def _driver(tier, is_junior=False):
    return Driver(id=1, membership_id=1, membership_type=tier, is_junior=is_junior)


@pytest.mark.parametrize(
    "tier,is_junior,expected",
    [
        ("single", False, Decimal("15")),
        ("family", False, Decimal("15")),
        ("non_member", False, Decimal("30")),
        ("junior", False, Decimal("5")),
        ("family", True, Decimal("5")),
        ("non_member", True, Decimal("5")),
    ],
)
def test_per_class_price_by_tier(tier, is_junior, expected):
    assert pricing.per_class_price(_driver(tier, is_junior), EVENT) == expected


def test_preference_class_is_free():
    assert pricing.price(_driver("non_member"), EVENT, is_preference=True) == Decimal("0")
    assert pricing.price(_driver("non_member"), EVENT) == Decimal("30")


def test_total_counts_primary_classes_only():
    driver = _driver("single")
    assert pricing.total(driver, EVENT, 3) == Decimal("45")
    assert pricing.total(driver, EVENT, 0) == Decimal("0")


def test_default_prices():
    event = Event(id=2)
    assert pricing.per_class_price(_driver("family"), event) == Decimal("10")
    assert pricing.per_class_price(_driver("non_member"), event) == Decimal("20")
    assert pricing.per_class_price(_driver("junior"), event) == Decimal("0")


def test_as_amount_rounds_to_cents():
    assert pricing.as_amount(Decimal("12.345")) == 12.35
    assert pricing.as_amount(Decimal("10")) == 10.0
