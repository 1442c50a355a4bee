#!/usr/bin/env python3
"""
Create the nomination tables in PostgreSQL.

Run with DATABASE_URL set:  python -m raceclub.schema
"""
import logging
import os

import psycopg2

logger = logging.getLogger(__name__)

TABLES = [
    (
        "household_memberships",
        """
        CREATE TABLE IF NOT EXISTS household_memberships (
            id SERIAL PRIMARY KEY,
            membership_type VARCHAR(20) NOT NULL DEFAULT 'non_member',
            status VARCHAR(20),
            user_id UUID UNIQUE
        )
        """,
    ),
    (
        "drivers",
        """
        CREATE TABLE IF NOT EXISTS drivers (
            id SERIAL PRIMARY KEY,
            membership_id INTEGER REFERENCES household_memberships(id) ON DELETE CASCADE,
            first_name VARCHAR(100) NOT NULL DEFAULT '',
            last_name VARCHAR(100) NOT NULL DEFAULT '',
            is_junior BOOLEAN NOT NULL DEFAULT FALSE,
            membership_type VARCHAR(20),
            transponder_number VARCHAR(30)
        )
        """,
    ),
    (
        "driver_profiles",
        """
        CREATE TABLE IF NOT EXISTS driver_profiles (
            id SERIAL PRIMARY KEY,
            driver_id INTEGER UNIQUE REFERENCES drivers(id) ON DELETE CASCADE,
            nickname VARCHAR(100),
            country_code VARCHAR(2),
            avatar_url TEXT,
            transponders TEXT[]
        )
        """,
    ),
    (
        "events",
        """
        CREATE TABLE IF NOT EXISTS events (
            id SERIAL PRIMARY KEY,
            name VARCHAR(200) NOT NULL,
            event_date DATE,
            description TEXT,
            track VARCHAR(100),
            nominations_open TIMESTAMPTZ,
            nominations_close TIMESTAMPTZ,
            member_price NUMERIC(10, 2) NOT NULL DEFAULT 10,
            non_member_price NUMERIC(10, 2) NOT NULL DEFAULT 20,
            junior_price NUMERIC(10, 2) NOT NULL DEFAULT 0,
            preference_enabled BOOLEAN NOT NULL DEFAULT TRUE,
            class_limit INTEGER DEFAULT 3 CHECK (class_limit IS NULL OR class_limit >= 0)
        )
        """,
    ),
    (
        "event_classes",
        """
        CREATE TABLE IF NOT EXISTS event_classes (
            id SERIAL PRIMARY KEY,
            class_name VARCHAR(100) NOT NULL,
            track VARCHAR(100),
            is_enabled BOOLEAN NOT NULL DEFAULT TRUE
        )
        """,
    ),
    (
        "nomination_classes",
        """
        CREATE TABLE IF NOT EXISTS nomination_classes (
            id SERIAL PRIMARY KEY,
            event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
            class_id INTEGER NOT NULL REFERENCES event_classes(id) ON DELETE CASCADE,
            is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
            order_index INTEGER NOT NULL DEFAULT 0,
            UNIQUE (event_id, class_id)
        )
        """,
    ),
    (
        "nominations",
        """
        CREATE TABLE IF NOT EXISTS nominations (
            id SERIAL PRIMARY KEY,
            driver_id INTEGER NOT NULL REFERENCES drivers(id) ON DELETE CASCADE,
            event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
            group_id VARCHAR(64) NOT NULL,
            paid BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
    ),
    (
        "nomination_entries",
        """
        CREATE TABLE IF NOT EXISTS nomination_entries (
            id SERIAL PRIMARY KEY,
            nomination_id INTEGER NOT NULL REFERENCES nominations(id) ON DELETE CASCADE,
            class_id INTEGER NOT NULL REFERENCES event_classes(id) ON DELETE CASCADE,
            is_preference BOOLEAN NOT NULL DEFAULT FALSE,
            order_index INTEGER NOT NULL,
            UNIQUE (nomination_id, class_id)
        )
        """,
    ),
]

INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_nomination_entries_one_preference ON nomination_entries (nomination_id) WHERE is_preference",
    "CREATE INDEX IF NOT EXISTS idx_nominations_event_driver ON nominations (event_id, driver_id)",
    "CREATE INDEX IF NOT EXISTS idx_nominations_group ON nominations (event_id, group_id)",
    "CREATE INDEX IF NOT EXISTS idx_drivers_membership ON drivers (membership_id)",
    "CREATE INDEX IF NOT EXISTS idx_nomination_classes_event ON nomination_classes (event_id, order_index)",
]


def create_tables(conn) -> None:
    """Create every table and index that does not exist yet, then commit."""
    with conn.cursor() as cur:
        for name, ddl in TABLES:
            cur.execute(ddl)
            logger.debug("ensured table %s", name)
        for ddl in INDEXES:
            cur.execute(ddl)
    conn.commit()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise SystemExit("DATABASE_URL is required")
    conn = psycopg2.connect(url)
    try:
        create_tables(conn)
        logger.info("Database schema created successfully")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
