from flask import Blueprint, Response, current_app, request, url_for
from datetime import date
import os
import time

import psycopg2

from . import datastore as ds
from . import pricing
from .aggregation import class_roster, driver_roster, household_total, summarize_household
from .errors import (
    AuthenticationError,
    ExternalServiceError,
    NominationError,
    PersistenceError,
    ValidationError,
)
from .export import MIMETYPE, export_event, export_filename
from .models import Driver, Event
from .nominations import (
    current_selection,
    load_classes,
    load_entries,
    load_event,
    load_household,
    load_household_driver,
    load_nominations,
    save_household_selection,
    set_household_preference,
    toggle_household_class,
)
from .payments import nomination_summary, start_payment
from .schema import TABLES


bp = Blueprint('main', __name__)

# Admin views are read-heavy during nomination week; cache them briefly
_ADMIN_CACHE: dict[tuple[str, str], tuple[float, object]] = {}
_ADMIN_TTL = int(os.environ.get('CACHE_TTL_ADMIN', '60'))  # seconds


def _cache_get(kind: str, event_id) -> object | None:
    key = (kind, str(event_id))
    entry = _ADMIN_CACHE.get(key)
    if not entry:
        return None
    exp, value = entry
    if exp < time.time():
        _ADMIN_CACHE.pop(key, None)
        return None
    return value


def _cache_set(kind: str, event_id, value: object) -> None:
    _ADMIN_CACHE[(kind, str(event_id))] = (time.time() + _ADMIN_TTL, value)


def _cache_clear_all() -> None:
    _ADMIN_CACHE.clear()


def on_change(tables: set[str]) -> None:
    """Change-feed subscriber: drop cached admin views after nomination writes."""
    if tables & {'nominations', 'nomination_entries', 'drivers', 'events', 'nomination_classes'}:
        _cache_clear_all()


def _user_id() -> str:
    uid = (request.headers.get('X-User-Id') or '').strip()
    if not uid:
        raise AuthenticationError()
    return uid


def _event_dict(event: Event) -> dict:
    return {
        'id': event.id,
        'name': event.name,
        'event_date': event.event_date,
        'track': event.track,
        'nominations_open': event.nominations_open.isoformat() if event.nominations_open else None,
        'nominations_close': event.nominations_close.isoformat() if event.nominations_close else None,
        'accepting_nominations': event.nominations_are_open(),
        'member_price': pricing.as_amount(event.member_price),
        'non_member_price': pricing.as_amount(event.non_member_price),
        'junior_price': pricing.as_amount(event.junior_price),
        'class_limit': event.class_limit,
        'preference_enabled': event.preference_enabled,
    }


def _class_id(value):
    """Class ids are integers; JSON clients may send them as strings."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid class id: {value!r}")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid class id: {value!r}") from None


def _class_id_payload(data: dict, key: str = 'class_id', nullable: bool = False):
    if key not in data:
        raise ValidationError(f"Missing '{key}'.")
    value = data.get(key)
    if value is None and nullable:
        return None
    return _class_id(value)


@bp.errorhandler(NominationError)
def handle_nomination_error(exc: NominationError):
    if isinstance(exc, (PersistenceError, ExternalServiceError)):
        current_app.logger.error("%s on %s %s: %s", exc.code, request.method, request.path, exc, exc_info=exc)
    return exc.to_dict(), exc.status


@bp.errorhandler(psycopg2.Error)
def handle_database_error(exc: psycopg2.Error):
    current_app.logger.error("database error on %s %s", request.method, request.path, exc_info=exc)
    err = PersistenceError('Unable to reach the database. Please try again.')
    return err.to_dict(), err.status


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always returns HTTP 200 with a JSON body describing connection status.
    """
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {'connected': False, 'status': 'no_database_url', 'message': 'DATABASE_URL is not set.'}
    try:
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT current_user, current_database(), version()')
                user, db, ver = cur.fetchone()
            return {
                'connected': True,
                'status': 'ok',
                'user': user,
                'database': db,
                'server_version': (ver or '').split('\n')[0],
            }
    except psycopg2.Error as e:
        return {'connected': False, 'status': 'error', 'error': str(e)}


@bp.route('/health/schema')
def health_schema():
    """Report which of the nomination tables exist."""
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {'connected': False, 'status': 'no_database_url'}
    expected = [name for name, _ddl in TABLES]
    try:
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT table_name FROM information_schema.tables
                    WHERE table_schema = 'public' AND table_name = ANY(%s)
                    """,
                    (expected,),
                )
                present = {row[0] for row in cur.fetchall()}
    except psycopg2.Error as e:
        return {'connected': False, 'status': 'error', 'error': str(e)}
    missing = [name for name in expected if name not in present]
    return {'connected': True, 'status': 'ok' if not missing else 'incomplete', 'missing_tables': missing}


@bp.route('/api/events')
def events():
    upcoming = request.args.get('upcoming') in ('1', 'true')
    rows = ds.list_events(upcoming_from=date.today().isoformat() if upcoming else None)
    return {'events': [_event_dict(Event.from_row(r)) for r in rows]}


@bp.route('/api/events/<int:event_id>/nominations')
def household_nominations(event_id):
    """Per-driver nomination status and cost for the user's household."""
    household = load_household(_user_id())
    event = load_event(event_id)
    drivers = [Driver.from_row(r) for r in ds.list_household_drivers(household.id)]
    nominations = load_nominations(event.id, [d.id for d in drivers])
    entries = load_entries(nominations)
    summaries = summarize_household(drivers, event, load_classes(event.id), nominations, entries)
    return {
        'event': _event_dict(event),
        'drivers': [s.to_dict() for s in summaries],
        'total': pricing.as_amount(household_total(summaries)),
    }


def _selection_response(driver: Driver, event: Event, selection) -> dict:
    classes = []
    for cls in load_classes(event.id):
        is_pref = selection.preference == cls.class_id
        classes.append({
            'class_id': cls.class_id,
            'class_name': cls.class_name,
            'selected': cls.class_id in selection.selected,
            'is_preference': is_pref,
            'price': pricing.as_amount(pricing.price(driver, event, is_pref)),
        })
    out = selection.to_dict()
    out.update({
        'driver': {'id': driver.id, 'name': driver.full_name, 'is_junior': driver.is_junior},
        'event': _event_dict(event),
        'classes': classes,
        'per_class_price': pricing.as_amount(pricing.per_class_price(driver, event)),
        'total': pricing.as_amount(pricing.total(driver, event, len(selection.primary))),
    })
    return out


@bp.route('/api/events/<int:event_id>/drivers/<int:driver_id>/selection')
def driver_selection(event_id, driver_id):
    household = load_household(_user_id())
    driver = load_household_driver(household, driver_id)
    event = load_event(event_id)
    return _selection_response(driver, event, current_selection(driver, event))


@bp.route('/api/events/<int:event_id>/drivers/<int:driver_id>/selection', methods=['PUT'])
def save_driver_selection(event_id, driver_id):
    """Replace the driver's classes; an empty list withdraws the nomination."""
    uid = _user_id()
    data = request.get_json(silent=True) or {}
    selected = data.get('selected', [])
    if not isinstance(selected, list):
        raise ValidationError("'selected' must be a list of class ids.")
    selected = [_class_id(c) for c in selected]
    preference = data.get('preference')
    if preference is not None:
        preference = _class_id(preference)
    nomination = save_household_selection(uid, event_id, driver_id, selected, preference)
    _cache_clear_all()
    return {
        'status': 'ok',
        'nomination': nomination.to_dict() if nomination else None,
        'redirect': url_for('main.household_nominations', event_id=event_id),
    }


@bp.route('/api/events/<int:event_id>/drivers/<int:driver_id>/selection/toggle', methods=['POST'])
def toggle_driver_class(event_id, driver_id):
    uid = _user_id()
    class_id = _class_id_payload(request.get_json(silent=True) or {})
    selection = toggle_household_class(uid, event_id, driver_id, class_id)
    _cache_clear_all()
    return selection.to_dict()


@bp.route('/api/events/<int:event_id>/drivers/<int:driver_id>/selection/preference', methods=['POST'])
def set_driver_preference(event_id, driver_id):
    uid = _user_id()
    class_id = _class_id_payload(request.get_json(silent=True) or {}, nullable=True)
    selection = set_household_preference(uid, event_id, driver_id, class_id)
    _cache_clear_all()
    return selection.to_dict()


def _admin_snapshot(event_id):
    event = load_event(event_id)
    nominations = load_nominations(event.id)
    entries = load_entries(nominations)
    drivers = [Driver.from_row(r) for r in ds.list_drivers({n.driver_id for n in nominations})]
    return event, nominations, entries, drivers


@bp.route('/api/admin/events/<int:event_id>/drivers')
def admin_event_drivers(event_id):
    cached = _cache_get('drivers', event_id)
    if cached is not None:
        return cached
    event, nominations, entries, drivers = _admin_snapshot(event_id)
    classes = load_classes(event.id, enabled_only=False)
    body = {'event': _event_dict(event), 'drivers': driver_roster(classes, drivers, nominations, entries)}
    _cache_set('drivers', event_id, body)
    return body


@bp.route('/api/admin/events/<int:event_id>/classes')
def admin_event_classes(event_id):
    cached = _cache_get('classes', event_id)
    if cached is not None:
        return cached
    event, nominations, entries, drivers = _admin_snapshot(event_id)
    classes = load_classes(event.id)
    body = {'event': _event_dict(event), 'classes': class_roster(classes, drivers, nominations, entries)}
    _cache_set('classes', event_id, body)
    return body


@bp.route('/api/admin/events/<int:event_id>/export.csv')
def admin_export_csv(event_id):
    """LiveTime CSV download for the event."""
    event = load_event(event_id)
    body = export_event(event.id)
    filename = export_filename(event).replace('"', "'")
    return Response(
        body,
        content_type=MIMETYPE,
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@bp.route('/api/nominations/<int:nomination_id>/summary')
def nomination_summary_view(nomination_id):
    return nomination_summary(nomination_id)


@bp.route('/api/nominations/<int:nomination_id>/payments/<provider>', methods=['POST'])
def create_payment(nomination_id, provider):
    """Open a checkout session and hand the redirect URL back to the client."""
    redirect_url = start_payment(provider, nomination_id, current_app.extensions.get('raceclub.payments'))
    current_app.logger.info("payment_session provider=%s nomination=%s", provider, nomination_id)
    return {'redirectUrl': redirect_url}
