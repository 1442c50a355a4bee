from typing import Any, Dict, Iterable, List, Optional

# Datastore proxy. Callers import from here; every call resolves the
# PostgreSQL implementation at call time so tests can monkeypatch datastore_pg.

from . import datastore_pg as _pg


def get_household_for_user(user_id: str) -> Optional[Dict[str, Any]]:
    return _pg.get_household_for_user(user_id)


def list_household_drivers(membership_id: Any) -> List[Dict[str, Any]]:
    return _pg.list_household_drivers(membership_id)


def get_driver(driver_id: Any) -> Optional[Dict[str, Any]]:
    return _pg.get_driver(driver_id)


def list_drivers(driver_ids: Iterable[Any]) -> List[Dict[str, Any]]:
    return _pg.list_drivers(driver_ids)


def get_event(event_id: Any) -> Optional[Dict[str, Any]]:
    return _pg.get_event(event_id)


def list_events(upcoming_from: Optional[str] = None) -> List[Dict[str, Any]]:
    return _pg.list_events(upcoming_from=upcoming_from)


def list_nomination_classes(event_id: Any, enabled_only: bool = True) -> List[Dict[str, Any]]:
    return _pg.list_nomination_classes(event_id, enabled_only=enabled_only)


def list_nominations(event_id: Any, driver_ids: Optional[Iterable[Any]] = None) -> List[Dict[str, Any]]:
    return _pg.list_nominations(event_id, driver_ids=driver_ids)


def get_nomination(nomination_id: Any) -> Optional[Dict[str, Any]]:
    return _pg.get_nomination(nomination_id)


def list_group_nominations(event_id: Any, group_id: str) -> List[Dict[str, Any]]:
    return _pg.list_group_nominations(event_id, group_id)


def list_entries(nomination_ids: Iterable[Any]) -> List[Dict[str, Any]]:
    return _pg.list_entries(nomination_ids)


def nomination_writer(driver_id: Any, event_id: Any):
    """Context manager yielding a writer for one (driver, event) nomination."""
    return _pg.nomination_writer(driver_id, event_id)
