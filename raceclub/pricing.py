"""Per-class nomination pricing.

The membership tier comes from the driver's household (``Driver.membership_type``
is populated from the household join), so every caller prices a driver the
same way.
"""

from __future__ import annotations

from decimal import Decimal

from .models import Driver, Event

MEMBER_TIERS = frozenset({"single", "family"})
JUNIOR_TIER = "junior"

FREE = Decimal("0")


def per_class_price(driver: Driver, event: Event) -> Decimal:
    """Return the price of one primary class for ``driver`` at ``event``.

    Junior drivers (flagged on the driver or via a junior household) pay the
    junior price; single and family households pay the member price; every
    other tier, including an unset one, pays the non-member price.
    """
    if driver.is_junior or driver.membership_type == JUNIOR_TIER:
        return event.junior_price
    if driver.membership_type in MEMBER_TIERS:
        return event.member_price
    return event.non_member_price


def price(driver: Driver, event: Event, is_preference: bool = False) -> Decimal:
    """Price of a single class entry; the preference class is always free."""
    if is_preference:
        return FREE
    return per_class_price(driver, event)


def total(driver: Driver, event: Event, primary_count: int) -> Decimal:
    """Total owed for ``primary_count`` primary classes (preference excluded)."""
    if primary_count <= 0:
        return FREE
    return per_class_price(driver, event) * primary_count


def as_amount(value: Decimal) -> float:
    """JSON-friendly rendering of a currency amount."""
    return float(value.quantize(Decimal("0.01")))
