"""LiveTime CSV export of an event's nominations.

The column layout, quoting and ordering are consumed by the external LiveTime
timing system and must not change without coordinating with it.
"""

from __future__ import annotations

import csv
import io
from typing import Any, Iterable, List, Tuple

from . import datastore as ds
from .aggregation import membership_label
from .models import Driver, Event, Nomination, NominationClass, NominationEntry
from .nominations import load_classes, load_entries, load_event, load_nominations

HEADER = ("FirstName", "LastName", "ClassName", "TransponderNumber", "LocalMembershipType")
MIMETYPE = "text/csv;charset=utf-8"

Row = Tuple[str, str, str, str, str]


def export_rows(
    drivers: Iterable[Driver],
    classes: Iterable[NominationClass],
    nominations: Iterable[Nomination],
    entries: Iterable[NominationEntry],
) -> List[Row]:
    """One row per primary entry, sorted by (last name, first name, class name).

    Preference entries are skipped, as are entries whose nomination or driver
    no longer exists.
    """
    by_id = {d.id: d for d in drivers}
    names = {c.class_id: c.class_name for c in classes}
    driver_by_nom = {n.id: n.driver_id for n in nominations}
    rows: List[Row] = []
    for entry in entries:
        if entry.is_preference:
            continue
        driver = by_id.get(driver_by_nom.get(entry.nomination_id))
        if driver is None:
            continue
        rows.append(
            (
                driver.first_name,
                driver.last_name,
                names.get(entry.class_id, ""),
                driver.transponder_number,
                membership_label(driver.membership_type),
            )
        )
    rows.sort(key=lambda r: (r[1], r[0], r[2]))
    return rows


def render_csv(rows: Iterable[Row]) -> str:
    """Unquoted header, then every field quoted; lines joined by ``\\n``."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    body = buf.getvalue()
    lines = [",".join(HEADER)]
    if body:
        lines.append(body[:-1])
    return "\n".join(lines)


def export_filename(event: Event) -> str:
    return f"{event.name}-{event.event_date or ''}-livetime.csv"


def export_event(event_id: Any) -> str:
    """Render the LiveTime CSV for every nomination at ``event_id``."""
    event = load_event(event_id)
    nominations = load_nominations(event.id)
    entries = load_entries(nominations)
    drivers = [Driver.from_row(r) for r in ds.list_drivers({n.driver_id for n in nominations})]
    classes = load_classes(event.id, enabled_only=False)
    return render_csv(export_rows(drivers, classes, nominations, entries))
