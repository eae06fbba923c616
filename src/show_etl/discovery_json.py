"""show_etl.discovery_json

Source adapter for venue-calendar scraper output (--mode discovery_import).

Accepted layouts:
  - a JSON array of events
  - a JSON object keyed by venue slug, each value an array of events (or an
    object with an "events" array)

Event keys (scraper camelCase; snake_case aliases also accepted):
    id, title, date, venue, venueSlug, city, state, imageUrl, doorsTime,
    showTime, ticketUrl, price, ageRequirement, artists[], scrapedAt

An entry that is not an object still becomes a record (with no fields), so
the planner blocks it and the rest of the file is imported.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

import psycopg

from show_etl.normalize import normalize_space, parse_iso_timestamp, trim
from show_etl.records import (
    SET_TYPE_HEADLINER,
    SET_TYPE_SUPPORT,
    SOURCE_DISCOVERY,
    ArtistReference,
    RawEventRecord,
    VenueReference,
    artists_from_names,
)
from show_etl.shared import DocumentParseError

log = logging.getLogger(__name__)

_ALIASES = {
    "id": ("id", "source_event_id", "sourceEventId"),
    "title": ("title",),
    "date": ("date", "event_date", "eventDate"),
    "venue": ("venue", "venue_name", "venueName"),
    "venue_slug": ("venueSlug", "venue_slug", "source_venue_key", "source_venue"),
    "city": ("city", "venue_city", "venueCity"),
    "state": ("state", "venue_state", "venueState"),
    "image_url": ("imageUrl", "image_url"),
    "doors_time": ("doorsTime", "doors_time"),
    "show_time": ("showTime", "show_time"),
    "ticket_url": ("ticketUrl", "ticket_url"),
    "price": ("price",),
    "age_requirement": ("ageRequirement", "age_requirement"),
    "artists": ("artists", "artist_names", "artistNames"),
    "scraped_at": ("scrapedAt", "scraped_at"),
}

UNKNOWN_SOURCE = "unknown"


def _get(event: dict[str, Any], key: str) -> Any:
    for alias in _ALIASES[key]:
        if alias in event and event[alias] not in (None, ""):
            return event[alias]
    return None


def _text(value: Any) -> str | None:
    return trim(str(value)) if value is not None else None


def _artist_refs(value: Any) -> list[ArtistReference]:
    if not isinstance(value, list):
        return []
    if all(isinstance(v, str) for v in value):
        return artists_from_names([v for v in value if normalize_space(v)])

    refs: list[ArtistReference] = []
    for position, item in enumerate(value):
        if isinstance(item, dict):
            set_type = item.get("set_type") or item.get("setType")
            if set_type not in (SET_TYPE_HEADLINER, SET_TYPE_SUPPORT):
                set_type = SET_TYPE_HEADLINER if position == 0 else SET_TYPE_SUPPORT
            refs.append(ArtistReference(_text(item.get("name")), set_type))
        elif isinstance(item, str):
            refs.append(ArtistReference(
                item, SET_TYPE_HEADLINER if position == 0 else SET_TYPE_SUPPORT
            ))
    return refs


def event_to_record(event: Any, venue_slug: str | None = None) -> RawEventRecord:
    """Map one scraper event object to a RawEventRecord."""
    if not isinstance(event, dict):
        return RawEventRecord(
            source=SOURCE_DISCOVERY, title=None, event_date=None,
            source_venue_key=venue_slug, raw={"value": event},
        )

    slug = _text(_get(event, "venue_slug")) or venue_slug
    city = _text(_get(event, "city"))
    state = _text(_get(event, "state"))
    venue = _text(_get(event, "venue"))
    venues = [VenueReference(venue, city, state)] if venue else []
    scraped = _get(event, "scraped_at")

    return RawEventRecord(
        source=SOURCE_DISCOVERY,
        title=_text(_get(event, "title")),
        event_date=_text(_get(event, "date")),
        venues=venues,
        artists=_artist_refs(_get(event, "artists")),
        source_venue_key=slug,
        source_event_id=_text(_get(event, "id")),
        city=city,
        state=state,
        show_time=_text(_get(event, "show_time")),
        doors_time=_text(_get(event, "doors_time")),
        image_url=_text(_get(event, "image_url")),
        ticket_url=_text(_get(event, "ticket_url")),
        price=_get(event, "price"),
        age_requirement=_text(_get(event, "age_requirement")),
        scraped_at=parse_iso_timestamp(str(scraped)) if scraped else None,
        raw=event,
    )


def parse_discovery_payload(data: Any) -> list[RawEventRecord]:
    if isinstance(data, list):
        return [event_to_record(event) for event in data]
    if isinstance(data, dict):
        records: list[RawEventRecord] = []
        for slug, events in data.items():
            if isinstance(events, dict):
                events = events.get("events", [])
            if not isinstance(events, list):
                raise DocumentParseError(f"venue '{slug}': expected a list of events")
            records.extend(event_to_record(event, str(slug)) for event in events)
        return records
    raise DocumentParseError("discovery JSON must be an array or an object keyed by venue slug")


def load_discovery_file(path: Path) -> list[RawEventRecord]:
    """Parse one scraper output file.

    Raises:
        DocumentParseError: If the file is not valid JSON of a supported shape.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise DocumentParseError(f"{path}: invalid JSON: {exc}") from exc
    records = parse_discovery_payload(data)
    log.debug("loaded %d event(s) from %s", len(records), path)
    return records


def group_by_source(records: Iterable[RawEventRecord]) -> dict[str, list[RawEventRecord]]:
    """Group records by venue slug, keeping first-seen order of slugs and records."""
    groups: dict[str, list[RawEventRecord]] = {}
    for record in records:
        groups.setdefault(record.source_venue_key or UNKNOWN_SOURCE, []).append(record)
    return groups


def check_events(
    conn: psycopg.Connection,
    events: Iterable[tuple[str | None, str | None]],
) -> dict[str, dict[str, Any]]:
    """Look up which (venue_slug, event_id) pairs are already imported.

    Returns a mapping "venue_slug:event_id" -> {exists, show_id, status}
    holding only the pairs that exist.  Pairs missing either id are ignored.
    """
    slugs: list[str] = []
    ids: list[str] = []
    for slug, event_id in events:
        if slug and event_id:
            slugs.append(slug)
            ids.append(event_id)
    if not slugs:
        return {}

    rows = conn.execute(
        """
        SELECT s.id, s.source_venue, s.source_event_id, s.status::text
        FROM shows s
        WHERE (s.source_venue, s.source_event_id) IN (
            SELECT * FROM unnest(%s::text[], %s::text[])
        )
        ORDER BY s.id ASC
        """,
        (slugs, ids),
    ).fetchall()
    return {
        f"{row[1]}:{row[2]}": {"exists": True, "show_id": row[0], "status": row[3]}
        for row in rows
    }
