import os
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor, execute_values

from .errors import NotFoundError, PersistenceError


_POOL: Optional[pg_pool.AbstractConnectionPool] = None

_DRIVER_COLUMNS = """
    d.id, d.membership_id, d.first_name, d.last_name, d.is_junior,
    d.transponder_number, d.membership_type,
    hm.membership_type AS household_membership_type,
    dp.transponders
"""

_DRIVER_FROM = """
    FROM drivers d
    LEFT JOIN household_memberships hm ON hm.id = d.membership_id
    LEFT JOIN driver_profiles dp ON dp.driver_id = d.id
"""


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Connection kwargs shared by the pool and direct connects.

    connect_timeout defaults to 10s (DB_CONNECT_TIMEOUT). TCP keepalives are on
    unless DB_KEEPALIVES is 0/false; IDLE/INTERVAL/COUNT tunables pass through.
    """
    kwargs: Dict[str, Any] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10)}
    ka_env = os.environ.get("DB_KEEPALIVES")
    kwargs["keepalives"] = 0 if ka_env is not None and ka_env.lower() in ("0", "false") else 1
    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        val = _env_int(env_name)
        if val is not None:
            kwargs[key] = val
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the global connection pool from DATABASE_URL (idempotent)."""
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _ping(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
        return True
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False


@contextmanager
def _get_conn():
    """Yield a healthy connection from the pool, or a direct one without a pool.

    A pooled connection that fails the liveness ping is discarded and one more
    is tried. Any exception raised inside the block rolls the transaction
    back before the connection is returned.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is None:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return

    conn = _POOL.getconn()
    if not _ping(conn):
        _POOL.putconn(conn, close=True)
        conn = _POOL.getconn()
        if not _ping(conn):
            _POOL.putconn(conn, close=True)
            raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        # status 1 = active, 2 = in transaction, 3 = in error
        if getattr(conn, "closed", 0) == 0 and getattr(conn, "status", 0) in (1, 2, 3):
            conn.rollback()
        _POOL.putconn(conn)


def _fetchall(sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        return [dict(r) for r in (cur.fetchall() or [])]


def _fetchone(sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        row = cur.fetchone()
        return dict(row) if row else None


def get_household_for_user(user_id: str) -> Optional[Dict[str, Any]]:
    return _fetchone(
        "SELECT id, membership_type, status, user_id FROM household_memberships WHERE user_id = %s",
        (user_id,),
    )


def list_household_drivers(membership_id: Any) -> List[Dict[str, Any]]:
    return _fetchall(
        f"SELECT {_DRIVER_COLUMNS} {_DRIVER_FROM} WHERE d.membership_id = %s ORDER BY d.last_name, d.first_name, d.id",
        (membership_id,),
    )


def get_driver(driver_id: Any) -> Optional[Dict[str, Any]]:
    return _fetchone(f"SELECT {_DRIVER_COLUMNS} {_DRIVER_FROM} WHERE d.id = %s", (driver_id,))


def list_drivers(driver_ids: Iterable[Any]) -> List[Dict[str, Any]]:
    ids = list(driver_ids)
    if not ids:
        return []
    return _fetchall(f"SELECT {_DRIVER_COLUMNS} {_DRIVER_FROM} WHERE d.id = ANY(%s)", (ids,))


def get_event(event_id: Any) -> Optional[Dict[str, Any]]:
    return _fetchone("SELECT * FROM events WHERE id = %s", (event_id,))


def list_events(upcoming_from: Optional[str] = None) -> List[Dict[str, Any]]:
    """Events newest first, or soonest first from ``upcoming_from`` (YYYY-MM-DD)."""
    if upcoming_from:
        return _fetchall(
            "SELECT * FROM events WHERE event_date >= %s ORDER BY event_date ASC",
            (upcoming_from,),
        )
    return _fetchall("SELECT * FROM events ORDER BY event_date DESC NULLS LAST")


def list_nomination_classes(event_id: Any, enabled_only: bool = True) -> List[Dict[str, Any]]:
    sql = """
        SELECT nc.event_id, nc.class_id, nc.is_enabled, nc.order_index, ec.class_name
        FROM nomination_classes nc
        JOIN event_classes ec ON ec.id = nc.class_id
        WHERE nc.event_id = %s
    """
    if enabled_only:
        sql += " AND nc.is_enabled"
    sql += " ORDER BY nc.order_index, ec.class_name"
    return _fetchall(sql, (event_id,))


def list_nominations(event_id: Any, driver_ids: Optional[Iterable[Any]] = None) -> List[Dict[str, Any]]:
    if driver_ids is None:
        return _fetchall(
            "SELECT id, driver_id, event_id, group_id, paid FROM nominations WHERE event_id = %s ORDER BY created_at, id",
            (event_id,),
        )
    ids = list(driver_ids)
    if not ids:
        return []
    return _fetchall(
        """
        SELECT id, driver_id, event_id, group_id, paid FROM nominations
        WHERE event_id = %s AND driver_id = ANY(%s)
        ORDER BY created_at, id
        """,
        (event_id, ids),
    )


def get_nomination(nomination_id: Any) -> Optional[Dict[str, Any]]:
    return _fetchone(
        "SELECT id, driver_id, event_id, group_id, paid FROM nominations WHERE id = %s",
        (nomination_id,),
    )


def list_group_nominations(event_id: Any, group_id: str) -> List[Dict[str, Any]]:
    return _fetchall(
        "SELECT id, driver_id, event_id, group_id, paid FROM nominations WHERE event_id = %s AND group_id = %s ORDER BY created_at, id",
        (event_id, group_id),
    )


def list_entries(nomination_ids: Iterable[Any]) -> List[Dict[str, Any]]:
    ids = list(nomination_ids)
    if not ids:
        return []
    return _fetchall(
        """
        SELECT id, nomination_id, class_id, is_preference, order_index
        FROM nomination_entries
        WHERE nomination_id = ANY(%s)
        ORDER BY nomination_id, order_index
        """,
        (ids,),
    )


class NominationWriter:
    """Statements for rewriting one driver's nomination inside a transaction."""

    def __init__(self, cur, driver_id: Any, event_id: Any):
        self.cur = cur
        self.driver_id = driver_id
        self.event_id = event_id

    def lock(self) -> None:
        """Row-lock the driver so concurrent saves for it run one after another."""
        self.cur.execute("SELECT id FROM drivers WHERE id = %s FOR UPDATE", (self.driver_id,))
        if self.cur.fetchone() is None:
            raise NotFoundError("driver", self.driver_id)

    def existing(self) -> List[Dict[str, Any]]:
        self.cur.execute(
            """
            SELECT id, driver_id, event_id, group_id, paid FROM nominations
            WHERE driver_id = %s AND event_id = %s
            ORDER BY created_at, id
            """,
            (self.driver_id, self.event_id),
        )
        return [dict(r) for r in (self.cur.fetchall() or [])]

    def household_group(self, membership_id: Any) -> Optional[str]:
        """Group id of an unpaid nomination held by another driver of the household."""
        self.cur.execute(
            """
            SELECT n.group_id FROM nominations n
            JOIN drivers d ON d.id = n.driver_id
            WHERE n.event_id = %s AND d.membership_id = %s AND n.driver_id <> %s
              AND NOT n.paid AND n.group_id IS NOT NULL
            ORDER BY n.created_at, n.id
            LIMIT 1
            """,
            (self.event_id, membership_id, self.driver_id),
        )
        row = self.cur.fetchone()
        return row["group_id"] if row else None

    def delete(self, nomination_ids: List[Any]) -> None:
        if not nomination_ids:
            return
        self.cur.execute("DELETE FROM nomination_entries WHERE nomination_id = ANY(%s)", (nomination_ids,))
        self.cur.execute("DELETE FROM nominations WHERE id = ANY(%s)", (nomination_ids,))

    def insert_nomination(self, group_id: str, paid: bool) -> Dict[str, Any]:
        self.cur.execute(
            """
            INSERT INTO nominations (driver_id, event_id, group_id, paid)
            VALUES (%s, %s, %s, %s)
            RETURNING id, driver_id, event_id, group_id, paid
            """,
            (self.driver_id, self.event_id, group_id, paid),
        )
        row = self.cur.fetchone()
        if not row:
            raise PersistenceError("Nomination insert returned no row")
        return dict(row)

    def insert_entries(self, nomination_id: Any, rows: List[Tuple[Any, bool, int]]) -> None:
        if not rows:
            return
        execute_values(
            self.cur,
            "INSERT INTO nomination_entries (nomination_id, class_id, is_preference, order_index) VALUES %s",
            [(nomination_id, cid, is_pref, idx) for (cid, is_pref, idx) in rows],
        )


@contextmanager
def nomination_writer(driver_id: Any, event_id: Any):
    """Yield a locked ``NominationWriter``; commit on success, roll back on error.

    Database failures are re-raised as ``PersistenceError`` so callers can
    report a retryable save failure. The previous nomination survives any
    failure because nothing is committed until the block completes.
    """
    try:
        with _get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                writer = NominationWriter(cur, driver_id, event_id)
                writer.lock()
                yield writer
            conn.commit()
    except psycopg2.Error as exc:
        raise PersistenceError(f"Failed to save nomination: {exc}") from exc
