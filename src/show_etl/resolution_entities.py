"""show_etl.resolution_entities

Entity resolution for incoming venue and artist references.

Matching is exact on normalize_name():
  venue:  normalized name, scoped to the same normalized city and state
  artist: normalized name, catalog-wide
When several rows match, the lowest id wins.  No match yields New, carrying
the normalized name the row would be created under.

Resolvers never write and hold no state beyond the ResolverContext they are
given, so they may be called repeatedly and from several threads at once
(each with its own connection-backed catalog).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Mapping, Union

from show_etl.catalog import CatalogReader
from show_etl.normalize import normalize_name, normalize_space, normalize_state
from show_etl.records import ArtistReference, KnownVenue, RawEventRecord, VenueReference


# ---------------------------------------------------------------------------
# MatchResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Existing:
    id: int


@dataclass(frozen=True)
class New:
    normalized_name: str


MatchResult = Union[Existing, New]


def match_to_dict(match: MatchResult) -> dict[str, object]:
    if isinstance(match, Existing):
        return {"kind": "existing", "id": match.id}
    return {"kind": "new", "normalized_name": match.normalized_name}


# ---------------------------------------------------------------------------
# Call context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolverContext:
    """Everything resolution needs, passed explicitly per call.

    known_venues is the read-only scrape-target table keyed by venue slug.
    today anchors date-relative warnings so plans are reproducible.
    """

    catalog: CatalogReader
    known_venues: Mapping[str, KnownVenue]
    today: date


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------

def resolve_venue(ctx: ResolverContext, ref: VenueReference) -> MatchResult:
    norm = normalize_name(ref.name)
    if norm is None:
        raise ValueError("venue reference has no name")
    city = normalize_name(ref.city)
    state = normalize_state(ref.state)

    ids = [
        row.id
        for row in ctx.catalog.venues_by_normalized_name(norm)
        if normalize_name(row.city) == city and normalize_state(row.state) == state
    ]
    if ids:
        return Existing(min(ids))
    return New(norm)


def resolve_artist(ctx: ResolverContext, ref: ArtistReference) -> MatchResult:
    norm = normalize_name(ref.name)
    if norm is None:
        raise ValueError("artist reference has no name")

    rows = ctx.catalog.artists_by_normalized_name(norm)
    if rows:
        return Existing(min(row.id for row in rows))
    return New(norm)


def complete_venue_reference(
    ctx: ResolverContext, record: RawEventRecord
) -> VenueReference | None:
    """Venue reference for a record, filled in from the known-venue table.

    Fields the record carries win; the known venue supplies the rest.  Returns
    None when neither the record nor the table names a venue.
    """
    known = ctx.known_venues.get(record.source_venue_key or "")
    given = record.venues[0] if record.venues else None

    if known is None:
        return given
    if given is None:
        return VenueReference(known.name, record.city or known.city,
                              record.state or known.state, known.address)
    return VenueReference(
        normalize_space(given.name) or known.name,
        normalize_space(given.city) or record.city or known.city,
        normalize_space(given.state) or record.state or known.state,
        given.address or known.address,
    )
