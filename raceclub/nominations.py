"""Loading and saving driver nominations.

A driver's nomination for an event is never patched in place: every change
deletes the existing nomination rows and recreates them from the new
selection, carrying the joint-payment ``group_id`` and ``paid`` flag forward.
The rewrite happens inside one datastore transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Iterable, List, Optional

from . import datastore as ds
from .errors import NominationsClosedError, NotFoundError, ValidationError
from .models import (
    Driver,
    EntryPlan,
    Event,
    Household,
    Nomination,
    NominationClass,
    NominationEntry,
)
from .realtime import changes
from .selection import ClassSelection

logger = logging.getLogger(__name__)


def load_event(event_id: Any) -> Event:
    row = ds.get_event(event_id)
    if not row:
        raise NotFoundError("event", event_id, "Event not found.")
    return Event.from_row(row)


def load_household(user_id: str) -> Household:
    row = ds.get_household_for_user(user_id)
    if not row:
        raise NotFoundError("household", user_id, "No household membership found.")
    return Household.from_row(row)


def load_household_driver(household: Household, driver_id: Any) -> Driver:
    row = ds.get_driver(driver_id)
    if not row or str(row.get("membership_id")) != str(household.id):
        raise NotFoundError("driver", driver_id, "Driver not found or not part of your household.")
    return Driver.from_row(row)


def load_classes(event_id: Any, enabled_only: bool = True) -> List[NominationClass]:
    rows = ds.list_nomination_classes(event_id, enabled_only=enabled_only)
    classes = [NominationClass.from_row(r) for r in rows]
    if enabled_only:
        classes = [c for c in classes if c.is_enabled]
    return sorted(classes, key=lambda c: c.order_index)


def load_nominations(event_id: Any, driver_ids: Optional[Iterable[Any]] = None) -> List[Nomination]:
    return [Nomination.from_row(r) for r in ds.list_nominations(event_id, driver_ids=driver_ids)]


def load_entries(nominations: Iterable[Nomination]) -> List[NominationEntry]:
    ids = [n.id for n in nominations]
    if not ids:
        return []
    return [NominationEntry.from_row(r) for r in ds.list_entries(ids)]


def current_selection(driver: Driver, event: Event) -> ClassSelection:
    """The selection a driver has stored for ``event`` (empty when not nominated)."""
    entries = load_entries(load_nominations(event.id, [driver.id]))
    return ClassSelection.from_entries(
        entries, limit=event.class_limit, preference_enabled=event.preference_enabled
    )


def plan_entries(event: Event, selected: Iterable[Any], preference: Optional[Any] = None) -> EntryPlan:
    """Clamp a selection to the event's limit and split off the preference.

    Duplicates are dropped, keeping first occurrence. A preference that is not
    among the kept classes, or that the event does not allow, is discarded.
    """
    kept: List[Any] = []
    for class_id in selected:
        if class_id in kept:
            continue
        kept.append(class_id)
    if event.class_limit is not None:
        kept = kept[: event.class_limit]
    if not event.preference_enabled or preference not in kept:
        preference = None
    return EntryPlan(primary=[c for c in kept if c != preference], preference=preference)


def save_selection(
    driver_id: Any,
    event: Event,
    selected: Iterable[Any],
    preference: Optional[Any] = None,
    enabled_class_ids: Optional[Iterable[Any]] = None,
    household_id: Optional[Any] = None,
) -> Optional[Nomination]:
    """Replace the driver's nomination for ``event`` with ``selected``.

    Args:
        driver_id: Driver being nominated.
        event: Event the nomination belongs to.
        selected: Class ids in selection order (the preference included).
        preference: Optional free preference class; must be in ``selected``.
        enabled_class_ids: When given, every selected class must be one of
            these or a ``ValidationError`` is raised before any write.
        household_id: The driver's household. A first nomination joins the
            payment group of an unpaid nomination another driver of the
            household holds for the event.

    Returns:
        The new ``Nomination``, or None when the selection is empty and the
        driver has been un-nominated.
    """
    plan = plan_entries(event, selected, preference)
    if enabled_class_ids is not None:
        allowed = {str(c) for c in enabled_class_ids}
        unknown = [c for c, _pref, _idx in plan.rows() if str(c) not in allowed]
        if unknown:
            raise ValidationError(
                "Classes not open for nomination at this event: " + ", ".join(str(c) for c in unknown)
            )

    result: Optional[Nomination] = None
    with ds.nomination_writer(driver_id, event.id) as writer:
        existing = writer.existing()
        group_id = next((n.get("group_id") for n in existing if n.get("group_id")), None)
        paid = any(bool(n.get("paid")) for n in existing)
        writer.delete([n["id"] for n in existing])
        if plan.is_empty():
            logger.info("nomination_cleared driver=%s event=%s removed=%d", driver_id, event.id, len(existing))
        else:
            if group_id is None and household_id is not None:
                group_id = writer.household_group(household_id)
            row = writer.insert_nomination(group_id or uuid.uuid4().hex, paid)
            writer.insert_entries(row["id"], plan.rows())
            result = Nomination.from_row(row)
            logger.info(
                "nomination_saved driver=%s event=%s primary=%d preference=%s",
                driver_id,
                event.id,
                len(plan.primary),
                plan.preference,
            )
    changes.publish("nominations")
    return result


def _household_context(user_id: str, event_id: Any, driver_id: Any, now: Optional[datetime] = None):
    household = load_household(user_id)
    driver = load_household_driver(household, driver_id)
    event = load_event(event_id)
    if not event.nominations_are_open(now):
        raise NominationsClosedError(event.id)
    return driver, event


def save_household_selection(
    user_id: str,
    event_id: Any,
    driver_id: Any,
    selected: Iterable[Any],
    preference: Optional[Any] = None,
    now: Optional[datetime] = None,
) -> Optional[Nomination]:
    """Validate a submitted selection for one of the user's drivers and save it."""
    driver, event = _household_context(user_id, event_id, driver_id, now)
    selection = ClassSelection.build(event, list(selected or []), preference)
    enabled = [c.class_id for c in load_classes(event.id)]
    return save_selection(
        driver.id, event, selection.selected, selection.preference,
        enabled_class_ids=enabled, household_id=driver.membership_id,
    )


def toggle_household_class(
    user_id: str, event_id: Any, driver_id: Any, class_id: Any, now: Optional[datetime] = None
) -> ClassSelection:
    """Toggle one class on the driver's stored selection and save the result."""
    driver, event = _household_context(user_id, event_id, driver_id, now)
    selection = current_selection(driver, event)
    selection.toggle(class_id)
    enabled = [c.class_id for c in load_classes(event.id)]
    save_selection(
        driver.id, event, selection.selected, selection.preference,
        enabled_class_ids=enabled, household_id=driver.membership_id,
    )
    return selection


def set_household_preference(
    user_id: str, event_id: Any, driver_id: Any, class_id: Optional[Any], now: Optional[datetime] = None
) -> ClassSelection:
    """Mark ``class_id`` as the driver's preference (None clears it) and save."""
    driver, event = _household_context(user_id, event_id, driver_id, now)
    selection = current_selection(driver, event)
    if class_id is None:
        selection.clear_preference()
    else:
        selection.set_preference(class_id)
    save_selection(driver.id, event, selection.selected, selection.preference, household_id=driver.membership_id)
    return selection
