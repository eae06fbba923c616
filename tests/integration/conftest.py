"""Integration test fixtures.

Applies migrations 0001-0002 against an ephemeral PostgreSQL database
provided by pytest-postgresql before any integration test runs.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

from show_etl.catalog import insert_artist, insert_show, insert_show_artist, insert_show_venue, insert_venue
from show_etl.records import KnownVenue, VenueReference

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_catalog.sql",
    PROJECT_ROOT / "migrations" / "0002_review_state_machine.sql",
]


# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (psycopg connection, dsn) with schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            sql = migration.read_text(encoding="utf-8")
            conn.execute(sql)
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

class Seeder:
    """Inserts catalog rows directly and commits, so other connections see them."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    def venue(self, name, city="Phoenix", state="AZ", is_verified=True, address=None) -> int:
        vid = insert_venue(self.conn, VenueReference(name, city, state, address), is_verified).id
        self.conn.commit()
        return vid

    def artist(self, name) -> int:
        aid = insert_artist(self.conn, name).id
        self.conn.commit()
        return aid

    def show(
        self,
        title: str,
        event_date: datetime,
        venue_ids=(),
        headliner_ids=(),
        status: str = "approved",
        source: str = "manual",
        source_venue: str | None = None,
        source_event_id: str | None = None,
        rejection_reason: str | None = None,
    ) -> int:
        sid = insert_show(
            self.conn,
            title=title,
            slug=None,
            event_date=event_date,
            city="Phoenix",
            state="AZ",
            price=None,
            age_requirement=None,
            description=None,
            image_url=None,
            ticket_url=None,
            status=status,
            source=source,
            source_venue=source_venue,
            source_event_id=source_event_id,
            scraped_at=None,
            duplicate_of_show_id=None,
        )
        for position, vid in enumerate(venue_ids):
            insert_show_venue(self.conn, sid, vid, position)
        for position, aid in enumerate(headliner_ids):
            insert_show_artist(self.conn, sid, aid, position, "headliner")
        self.conn.commit()
        return sid


@pytest.fixture
def seed(db_conn):
    conn, _ = db_conn
    return Seeder(conn)


@pytest.fixture
def known_venues():
    return {
        "valley-bar": KnownVenue("valley-bar", "Valley Bar", "Phoenix", "AZ", "130 N Central Ave"),
        "crescent-ballroom": KnownVenue(
            "crescent-ballroom", "Crescent Ballroom", "Phoenix", "AZ", "308 N 2nd Ave"
        ),
    }
