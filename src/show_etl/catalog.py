"""show_etl.catalog

Relational catalog access for the import pipeline.

Read side: the CatalogReader protocol is everything the resolver and the
dedup guard need to know about stored venues, artists and shows.  PgCatalog
implements it over a psycopg connection; tests may pass any object with the
same methods.  Readers never write.

Write side: plain helper functions taking a psycopg connection.  Callers
manage the transaction.

Entities reference each other by integer id only (show_venues,
show_artists); no row type embeds another.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol

import psycopg

from show_etl.normalize import normalize_name, normalize_state, slug_name
from show_etl.records import VenueReference

_SLUG_TABLES = {
    "shows": "shows",
    "venues": "venues",
    "artists": "artists",
}


# ---------------------------------------------------------------------------
# Row types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VenueRow:
    id: int
    name: str
    normalized_name: str
    city: str
    state: str
    is_verified: bool


@dataclass(frozen=True)
class ArtistRow:
    id: int
    name: str
    normalized_name: str


@dataclass(frozen=True)
class ShowRow:
    id: int
    title: str
    event_date: datetime
    status: str
    source_venue: str | None = None
    source_event_id: str | None = None
    rejection_reason: str | None = None


@dataclass
class ShowDetail:
    """A show with its venues and artists, as returned to callers."""

    id: int
    slug: str | None
    title: str
    event_date: datetime
    city: str | None
    state: str | None
    price: Decimal | None
    age_requirement: str | None
    description: str | None
    status: str
    source: str
    source_venue: str | None
    source_event_id: str | None
    rejection_reason: str | None
    duplicate_of_show_id: int | None
    venues: list[dict[str, Any]] = field(default_factory=list)
    artists: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "event_date": self.event_date.isoformat(),
            "city": self.city,
            "state": self.state,
            "price": str(self.price) if self.price is not None else None,
            "age_requirement": self.age_requirement,
            "description": self.description,
            "status": self.status,
            "source": self.source,
            "source_venue": self.source_venue,
            "source_event_id": self.source_event_id,
            "rejection_reason": self.rejection_reason,
            "duplicate_of_show_id": self.duplicate_of_show_id,
            "venues": self.venues,
            "artists": self.artists,
        }


# ---------------------------------------------------------------------------
# Read protocol
# ---------------------------------------------------------------------------

class CatalogReader(Protocol):
    def venues_by_normalized_name(self, normalized_name: str) -> list[VenueRow]: ...

    def artists_by_normalized_name(self, normalized_name: str) -> list[ArtistRow]: ...

    def venue_by_id(self, venue_id: int) -> VenueRow | None: ...

    def show_by_source(self, source_venue: str, source_event_id: str) -> ShowRow | None: ...

    def rejected_show_at_venue(
        self, venue_id: int, local_date: date, tz_name: str
    ) -> ShowRow | None: ...

    def headliner_show_at_venue(
        self, artist_id: int, venue_id: int, local_date: date, tz_name: str
    ) -> ShowRow | None: ...


_SHOW_COLS = (
    "s.id, s.title, s.event_date, s.status::text, "
    "s.source_venue, s.source_event_id, s.rejection_reason"
)


def _show_row(row: tuple) -> ShowRow:
    return ShowRow(
        id=row[0],
        title=row[1],
        event_date=row[2],
        status=row[3],
        source_venue=row[4],
        source_event_id=row[5],
        rejection_reason=row[6],
    )


class PgCatalog:
    """CatalogReader over a psycopg connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    def venues_by_normalized_name(self, normalized_name: str) -> list[VenueRow]:
        rows = self.conn.execute(
            """
            SELECT id, name, normalized_name, city, state, is_verified
            FROM venues
            WHERE normalized_name = %s
            ORDER BY id ASC
            """,
            (normalized_name,),
        ).fetchall()
        return [VenueRow(*row) for row in rows]

    def artists_by_normalized_name(self, normalized_name: str) -> list[ArtistRow]:
        rows = self.conn.execute(
            """
            SELECT id, name, normalized_name
            FROM artists
            WHERE normalized_name = %s
            ORDER BY id ASC
            """,
            (normalized_name,),
        ).fetchall()
        return [ArtistRow(*row) for row in rows]

    def venue_by_id(self, venue_id: int) -> VenueRow | None:
        row = self.conn.execute(
            """
            SELECT id, name, normalized_name, city, state, is_verified
            FROM venues WHERE id = %s
            """,
            (venue_id,),
        ).fetchone()
        return VenueRow(*row) if row else None

    def show_by_source(self, source_venue: str, source_event_id: str) -> ShowRow | None:
        row = self.conn.execute(
            f"""
            SELECT {_SHOW_COLS}
            FROM shows s
            WHERE s.source_venue = %s AND s.source_event_id = %s
            """,
            (source_venue, source_event_id),
        ).fetchone()
        return _show_row(row) if row else None

    def rejected_show_at_venue(
        self, venue_id: int, local_date: date, tz_name: str
    ) -> ShowRow | None:
        row = self.conn.execute(
            f"""
            SELECT {_SHOW_COLS}
            FROM shows s
            JOIN show_venues sv ON sv.show_id = s.id
            WHERE sv.venue_id = %s
              AND s.status = 'rejected'
              AND (s.event_date AT TIME ZONE %s)::date = %s
            ORDER BY s.id ASC
            LIMIT 1
            """,
            (venue_id, tz_name, local_date),
        ).fetchone()
        return _show_row(row) if row else None

    def headliner_show_at_venue(
        self, artist_id: int, venue_id: int, local_date: date, tz_name: str
    ) -> ShowRow | None:
        row = self.conn.execute(
            f"""
            SELECT {_SHOW_COLS}
            FROM shows s
            JOIN show_venues sv ON sv.show_id = s.id
            JOIN show_artists sa ON sa.show_id = s.id
            WHERE sv.venue_id = %s
              AND sa.artist_id = %s
              AND sa.is_headliner
              AND s.status NOT IN ('rejected', 'private')
              AND (s.event_date AT TIME ZONE %s)::date = %s
            ORDER BY s.id ASC
            LIMIT 1
            """,
            (venue_id, artist_id, tz_name, local_date),
        ).fetchone()
        return _show_row(row) if row else None


# ---------------------------------------------------------------------------
# Write helpers
# ---------------------------------------------------------------------------

def unique_slug(conn: psycopg.Connection, table: str, base: str | None) -> str:
    """Return base, or base-2, base-3 ... whichever is unused in table.slug."""
    tbl = _SLUG_TABLES[table]
    root = base or "item"
    candidate = root
    suffix = 1
    while conn.execute(
        f"SELECT 1 FROM {tbl} WHERE slug = %s", (candidate,)
    ).fetchone():
        suffix += 1
        candidate = f"{root}-{suffix}"
    return candidate


def insert_venue(
    conn: psycopg.Connection,
    ref: VenueReference,
    is_verified: bool = False,
) -> VenueRow:
    name = ref.name or ""
    norm = normalize_name(name) or ""
    state = normalize_state(ref.state) or ""
    slug = unique_slug(conn, "venues", slug_name(f"{name} {ref.city or ''}"))
    row = conn.execute(
        """
        INSERT INTO venues (name, normalized_name, slug, address, city, state, is_verified)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (name, norm, slug, ref.address, ref.city, state, is_verified),
    ).fetchone()
    return VenueRow(row[0], name, norm, ref.city or "", state, is_verified)


def insert_artist(conn: psycopg.Connection, name: str) -> ArtistRow:
    norm = normalize_name(name) or ""
    slug = unique_slug(conn, "artists", slug_name(name))
    row = conn.execute(
        """
        INSERT INTO artists (name, normalized_name, slug)
        VALUES (%s, %s, %s)
        RETURNING id
        """,
        (name, norm, slug),
    ).fetchone()
    return ArtistRow(row[0], name, norm)


def insert_show(
    conn: psycopg.Connection,
    *,
    title: str,
    slug: str,
    event_date: datetime,
    city: str | None,
    state: str | None,
    price: Decimal | None,
    age_requirement: str | None,
    description: str | None,
    image_url: str | None,
    ticket_url: str | None,
    status: str,
    source: str,
    source_venue: str | None,
    source_event_id: str | None,
    scraped_at: datetime | None,
    duplicate_of_show_id: int | None,
) -> int:
    row = conn.execute(
        """
        INSERT INTO shows
            (title, slug, event_date, city, state, price, age_requirement,
             description, image_url, ticket_url, status, source,
             source_venue, source_event_id, scraped_at, duplicate_of_show_id)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (title, slug, event_date, city, state, price, age_requirement,
         description, image_url, ticket_url, status, source,
         source_venue, source_event_id, scraped_at, duplicate_of_show_id),
    ).fetchone()
    return row[0]


def insert_show_venue(
    conn: psycopg.Connection, show_id: int, venue_id: int, position: int
) -> None:
    conn.execute(
        """
        INSERT INTO show_venues (show_id, venue_id, position)
        VALUES (%s, %s, %s)
        ON CONFLICT (show_id, venue_id) DO NOTHING
        """,
        (show_id, venue_id, position),
    )


def insert_show_artist(
    conn: psycopg.Connection,
    show_id: int,
    artist_id: int,
    position: int,
    set_type: str,
) -> None:
    conn.execute(
        """
        INSERT INTO show_artists (show_id, artist_id, position, set_type, is_headliner)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (show_id, artist_id) DO NOTHING
        """,
        (show_id, artist_id, position, set_type, set_type == "headliner"),
    )


# ---------------------------------------------------------------------------
# Show detail
# ---------------------------------------------------------------------------

def load_show(conn: psycopg.Connection, show_id: int) -> ShowDetail | None:
    row = conn.execute(
        """
        SELECT id, slug, title, event_date, city, state, price, age_requirement,
               description, status::text, source::text, source_venue,
               source_event_id, rejection_reason, duplicate_of_show_id
        FROM shows WHERE id = %s
        """,
        (show_id,),
    ).fetchone()
    if row is None:
        return None
    show = ShowDetail(*row)

    for v in conn.execute(
        """
        SELECT v.id, v.name, v.slug, v.address, v.city, v.state, v.is_verified
        FROM show_venues sv JOIN venues v ON v.id = sv.venue_id
        WHERE sv.show_id = %s
        ORDER BY sv.position ASC, v.id ASC
        """,
        (show_id,),
    ).fetchall():
        show.venues.append({
            "id": v[0],
            "name": v[1],
            "slug": v[2],
            # Unverified venues are shown city-only.
            "address": v[3] if v[6] else None,
            "city": v[4],
            "state": v[5],
            "is_verified": v[6],
        })

    for a in conn.execute(
        """
        SELECT a.id, a.name, a.slug, sa.position, sa.set_type, sa.is_headliner
        FROM show_artists sa JOIN artists a ON a.id = sa.artist_id
        WHERE sa.show_id = %s
        ORDER BY sa.position ASC
        """,
        (show_id,),
    ).fetchall():
        show.artists.append({
            "id": a[0],
            "name": a[1],
            "slug": a[2],
            "position": a[3],
            "set_type": a[4],
            "is_headliner": a[5],
        })
    return show
