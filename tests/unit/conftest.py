"""Unit test fixtures: an in-memory catalog and resolver contexts."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from show_etl.catalog import ArtistRow, ShowRow, VenueRow
from show_etl.normalize import normalize_name
from show_etl.records import KnownVenue
from show_etl.resolution_entities import ResolverContext

TODAY = date(2026, 1, 10)

PHOENIX = ZoneInfo("America/Phoenix")


class FakeCatalog:
    """CatalogReader over plain dicts."""

    def __init__(self) -> None:
        self.venues: dict[int, VenueRow] = {}
        self.artists: dict[int, ArtistRow] = {}
        self.shows: dict[int, dict] = {}
        self._next_id = 100

    def _id(self, given: int | None) -> int:
        if given is not None:
            return given
        self._next_id += 1
        return self._next_id

    # -- seeding -----------------------------------------------------------

    def add_venue(self, name, city="Phoenix", state="AZ", is_verified=True, id=None) -> int:
        vid = self._id(id)
        self.venues[vid] = VenueRow(vid, name, normalize_name(name), city, state, is_verified)
        return vid

    def add_artist(self, name, id=None) -> int:
        aid = self._id(id)
        self.artists[aid] = ArtistRow(aid, name, normalize_name(name))
        return aid

    def add_show(
        self,
        title,
        event_date: datetime,
        venue_ids,
        status="approved",
        headliner_ids=(),
        source_venue=None,
        source_event_id=None,
        rejection_reason=None,
        id=None,
    ) -> int:
        sid = self._id(id)
        self.shows[sid] = {
            "row": ShowRow(sid, title, event_date, status, source_venue,
                           source_event_id, rejection_reason),
            "venue_ids": list(venue_ids),
            "headliner_ids": list(headliner_ids),
        }
        return sid

    # -- CatalogReader -----------------------------------------------------

    def venues_by_normalized_name(self, normalized_name):
        return sorted(
            (v for v in self.venues.values() if v.normalized_name == normalized_name),
            key=lambda v: v.id,
        )

    def artists_by_normalized_name(self, normalized_name):
        return sorted(
            (a for a in self.artists.values() if a.normalized_name == normalized_name),
            key=lambda a: a.id,
        )

    def venue_by_id(self, venue_id):
        return self.venues.get(venue_id)

    def show_by_source(self, source_venue, source_event_id):
        for show in self.shows.values():
            row = show["row"]
            if (row.source_venue, row.source_event_id) == (source_venue, source_event_id):
                return row
        return None

    def _local_day(self, row, tz_name):
        return row.event_date.astimezone(ZoneInfo(tz_name)).date()

    def rejected_show_at_venue(self, venue_id, local_date, tz_name):
        for sid in sorted(self.shows):
            show = self.shows[sid]
            row = show["row"]
            if (row.status == "rejected" and venue_id in show["venue_ids"]
                    and self._local_day(row, tz_name) == local_date):
                return row
        return None

    def headliner_show_at_venue(self, artist_id, venue_id, local_date, tz_name):
        for sid in sorted(self.shows):
            show = self.shows[sid]
            row = show["row"]
            if (row.status not in ("rejected", "private")
                    and venue_id in show["venue_ids"]
                    and artist_id in show["headliner_ids"]
                    and self._local_day(row, tz_name) == local_date):
                return row
        return None


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def known_venues():
    return {
        "valley-bar": KnownVenue("valley-bar", "Valley Bar", "Phoenix", "AZ", "130 N Central Ave"),
        "crescent-ballroom": KnownVenue(
            "crescent-ballroom", "Crescent Ballroom", "Phoenix", "AZ", "308 N 2nd Ave"
        ),
    }


@pytest.fixture
def ctx(catalog, known_venues):
    return ResolverContext(catalog=catalog, known_venues=known_venues, today=TODAY)


@pytest.fixture
def phoenix():
    return PHOENIX
