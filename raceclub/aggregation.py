"""Per-driver and per-class views over an event's nominations."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from . import pricing
from .models import NON_MEMBER, Driver, Event, Nomination, NominationClass, NominationEntry

NOT_STARTED = "not_started"
NOMINATED = "nominated"
PAID = "paid"

STATUS_LABELS = {NOT_STARTED: "Not Started", NOMINATED: "Nominated", PAID: "Paid"}


def membership_label(membership_type: str) -> str:
    return "Non Member" if membership_type == NON_MEMBER else "Member"


def nomination_status(entries: List[NominationEntry], paid: bool) -> str:
    """No entries is Not Started; otherwise Paid beats Nominated."""
    if not entries:
        return NOT_STARTED
    if paid:
        return PAID
    return NOMINATED


@dataclass
class DriverNominationSummary:
    driver: Driver
    nomination_id: Optional[Any] = None
    primary_classes: List[str] = field(default_factory=list)
    preference_class: Optional[str] = None
    paid: bool = False
    per_class_price: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    status: str = NOT_STARTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "driver_id": self.driver.id,
            "name": self.driver.full_name,
            "nomination_id": self.nomination_id,
            "primary_classes": list(self.primary_classes),
            "preference_class": self.preference_class,
            "paid": self.paid,
            "per_class_price": pricing.as_amount(self.per_class_price),
            "total": pricing.as_amount(self.total),
            "status": self.status,
            "status_label": STATUS_LABELS[self.status],
        }


def _index(nominations: Iterable[Nomination], entries: Iterable[NominationEntry]):
    """Group entries by driver id, each list in order_index order."""
    driver_by_nom = {n.id: n.driver_id for n in nominations}
    by_driver: Dict[Any, List[NominationEntry]] = defaultdict(list)
    for e in entries:
        driver_id = driver_by_nom.get(e.nomination_id)
        if driver_id is not None:
            by_driver[driver_id].append(e)
    for lst in by_driver.values():
        lst.sort(key=lambda e: e.order_index)
    return by_driver


def summarize_household(
    drivers: Iterable[Driver],
    event: Event,
    classes: Iterable[NominationClass],
    nominations: Iterable[Nomination],
    entries: Iterable[NominationEntry],
) -> List[DriverNominationSummary]:
    """Summarize each household driver's nomination for ``event``.

    Drivers keep the order they were given in; a driver without a nomination
    is reported as Not Started with a zero total.
    """
    nominations = list(nominations)
    names = {c.class_id: c.class_name for c in classes}
    by_driver = _index(nominations, entries)
    noms_by_driver: Dict[Any, List[Nomination]] = defaultdict(list)
    for n in nominations:
        noms_by_driver[n.driver_id].append(n)

    out: List[DriverNominationSummary] = []
    for driver in drivers:
        driver_entries = by_driver.get(driver.id, [])
        driver_noms = noms_by_driver.get(driver.id, [])
        primary = [e for e in driver_entries if not e.is_preference]
        pref = next((e for e in driver_entries if e.is_preference), None)
        paid = any(n.paid for n in driver_noms)
        out.append(
            DriverNominationSummary(
                driver=driver,
                nomination_id=driver_noms[0].id if driver_noms else None,
                primary_classes=[names.get(e.class_id, "") for e in primary],
                preference_class=names.get(pref.class_id, "") if pref else None,
                paid=paid,
                per_class_price=pricing.per_class_price(driver, event),
                total=pricing.total(driver, event, len(primary)),
                status=nomination_status(driver_entries, paid),
            )
        )
    return out


def household_total(summaries: Iterable[DriverNominationSummary]) -> Decimal:
    return sum((s.total for s in summaries), Decimal("0"))


def class_roster(
    classes: Iterable[NominationClass],
    drivers: Iterable[Driver],
    nominations: Iterable[Nomination],
    entries: Iterable[NominationEntry],
) -> List[Dict[str, Any]]:
    """For every enabled class, the drivers entered in it.

    Each driver is annotated with whether the entry is their preference pick.
    Drivers within a class are ordered by (last name, first name).
    """
    by_id = {d.id: d for d in drivers}
    by_driver = _index(nominations, entries)
    roster: List[Dict[str, Any]] = []
    for cls in sorted((c for c in classes if c.is_enabled), key=lambda c: c.order_index):
        members = []
        for driver_id, driver_entries in by_driver.items():
            driver = by_id.get(driver_id)
            entry = next((e for e in driver_entries if e.class_id == cls.class_id), None)
            if driver is None or entry is None:
                continue
            members.append((driver, entry.is_preference))
        members.sort(key=lambda m: (m[0].last_name, m[0].first_name))
        roster.append(
            {
                "class_id": cls.class_id,
                "class_name": cls.class_name,
                "drivers": [
                    {"driver_id": d.id, "name": d.full_name, "is_preference": is_pref}
                    for d, is_pref in members
                ],
            }
        )
    return roster


def driver_roster(
    classes: Iterable[NominationClass],
    drivers: Iterable[Driver],
    nominations: Iterable[Nomination],
    entries: Iterable[NominationEntry],
) -> List[Dict[str, Any]]:
    """Nominated drivers sorted by (last name, first name) with their classes."""
    nominations = list(nominations)
    names = {c.class_id: c.class_name for c in classes}
    by_id = {d.id: d for d in drivers}
    by_driver = _index(nominations, entries)
    paid_by_driver: Dict[Any, bool] = defaultdict(bool)
    for n in nominations:
        paid_by_driver[n.driver_id] = paid_by_driver[n.driver_id] or n.paid

    rows = []
    for driver_id in paid_by_driver:
        driver = by_id.get(driver_id)
        if driver is None:
            continue
        driver_entries = by_driver.get(driver_id, [])
        rows.append(
            {
                "driver_id": driver.id,
                "first_name": driver.first_name,
                "last_name": driver.last_name,
                "membership": membership_label(driver.membership_type),
                "transponder_number": driver.transponder_number,
                "paid": paid_by_driver[driver_id],
                "status": nomination_status(driver_entries, paid_by_driver[driver_id]),
                "classes": [
                    {"class_id": e.class_id, "class_name": names.get(e.class_id, ""), "is_preference": e.is_preference}
                    for e in driver_entries
                ],
            }
        )
    rows.sort(key=lambda r: (r["last_name"], r["first_name"]))
    return rows
