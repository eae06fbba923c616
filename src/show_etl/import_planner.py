"""show_etl.import_planner

Per-record import planning (shared by preview and commit).

plan_record() validates one RawEventRecord, resolves every venue and artist
reference, runs the dedup guard and returns an ImportPlan:

  blocked:            missing/invalid required field  (can_import=False)
  skip duplicate:     same source ids already imported (can_import=False)
  skip rejected:      rejected show at venue on date  (can_import=False)
  create:             everything else                  (can_import=True)

Required fields: a parseable event date, city, state, at least one named
venue, at least one named artist and a title (falls back to the artist
names).  Discovery records also need both source ids (venue slug and event
id).  Blocking errors are also listed in warnings so callers that only show
warnings still explain the outcome.

Planning reads the catalog and never writes to it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from show_etl.dedup_guard import (
    SKIP_DUPLICATE,
    SKIP_REJECTED,
    check_record,
    find_headliner_conflict,
)
from show_etl.normalize import (
    local_event_date,
    normalize_name,
    normalize_space,
    normalize_state,
    parse_artists_from_title,
    parse_event_date,
    parse_iso_timestamp,
    parse_price,
    trim,
)
from show_etl.records import (
    SET_TYPE_HEADLINER,
    SOURCE_DISCOVERY,
    VALID_SOURCES,
    ArtistReference,
    RawEventRecord,
    VenueReference,
    artists_from_names,
)
from show_etl.resolution_entities import (
    MatchResult,
    New,
    ResolverContext,
    complete_venue_reference,
    resolve_artist,
    resolve_venue,
)
from show_etl.shared import (
    OUTCOME_BLOCKED,
    OUTCOME_CREATED,
    OUTCOME_SKIPPED_DUPLICATE,
    OUTCOME_SKIPPED_REJECTED,
)


# ---------------------------------------------------------------------------
# Plan types
# ---------------------------------------------------------------------------

@dataclass
class ShowDraft:
    title: str | None
    event_date: datetime | None
    city: str | None
    state: str | None
    price: Decimal | None = None
    age_requirement: str | None = None
    description: str | None = None
    image_url: str | None = None
    ticket_url: str | None = None
    scraped_at: datetime | None = None


@dataclass
class ImportPlan:
    record: RawEventRecord
    show_draft: ShowDraft
    venues: list[VenueReference] = field(default_factory=list)
    venue_matches: list[MatchResult] = field(default_factory=list)
    artists: list[ArtistReference] = field(default_factory=list)
    artist_matches: list[MatchResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    blocking_errors: list[str] = field(default_factory=list)
    can_import: bool = False
    skip_reason: str | None = None
    existing_show_id: int | None = None
    rejection_reason: str | None = None
    duplicate_of_show_id: int | None = None
    venues_verified: bool = False

    @property
    def outcome(self) -> str:
        """Outcome this plan leads to if committed now."""
        if self.skip_reason == SKIP_DUPLICATE:
            return OUTCOME_SKIPPED_DUPLICATE
        if self.skip_reason == SKIP_REJECTED:
            return OUTCOME_SKIPPED_REJECTED
        if not self.can_import:
            return OUTCOME_BLOCKED
        return OUTCOME_CREATED

    @property
    def flagged_for_review(self) -> bool:
        return self.duplicate_of_show_id is not None

    def new_venue_count(self) -> int:
        return sum(1 for m in self.venue_matches if isinstance(m, New))

    def new_artist_count(self) -> int:
        return sum(1 for m in self.artist_matches if isinstance(m, New))


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def build_description(record: RawEventRecord) -> str | None:
    """Record description, or 'Doors: x | Show: y | Tickets: z' from its parts."""
    given = trim(record.description)
    if given:
        return given
    parts = []
    if trim(record.doors_time):
        parts.append(f"Doors: {trim(record.doors_time)}")
    if trim(record.show_time):
        parts.append(f"Show: {trim(record.show_time)}")
    if trim(record.ticket_url):
        parts.append(f"Tickets: {trim(record.ticket_url)}")
    return " | ".join(parts) if parts else None


def _venue_refs(
    ctx: ResolverContext,
    record: RawEventRecord,
    city: str | None,
    state: str | None,
    blocking: list[str],
) -> list[VenueReference]:
    first = complete_venue_reference(ctx, record)
    raw_refs = ([first] if first else []) + list(record.venues[1:])

    refs: list[VenueReference] = []
    seen: set[tuple[str | None, ...]] = set()
    for ref in raw_refs:
        name = normalize_space(ref.name)
        if name is None:
            continue
        filled = VenueReference(
            name,
            normalize_space(ref.city) or city,
            normalize_state(ref.state) or state,
            trim(ref.address),
        )
        key = (normalize_name(filled.name), normalize_name(filled.city), filled.state)
        if key in seen:
            continue
        seen.add(key)
        refs.append(filled)
    if not refs:
        blocking.append("At least one venue is required")
    return refs


def _artist_refs(
    record: RawEventRecord,
    warnings: list[str],
) -> list[ArtistReference]:
    given = record.artists or artists_from_names(parse_artists_from_title(record.title))

    refs: list[ArtistReference] = []
    seen: set[str] = set()
    for ref in given:
        name = normalize_space(ref.name)
        norm = normalize_name(name)
        if norm is None:
            continue
        if norm in seen:
            warnings.append(f"Artist '{name}' is listed more than once; keeping the first entry")
            continue
        seen.add(norm)
        refs.append(ArtistReference(name, ref.set_type))
    return refs


def _headliner_index(artists: list[ArtistReference]) -> int | None:
    for idx, ref in enumerate(artists):
        if ref.set_type == SET_TYPE_HEADLINER:
            return idx
    return 0 if artists else None


# ---------------------------------------------------------------------------
# plan_record
# ---------------------------------------------------------------------------

def plan_record(ctx: ResolverContext, record: RawEventRecord) -> ImportPlan:
    blocking: list[str] = []
    warnings: list[str] = []

    if record.source not in VALID_SOURCES:
        blocking.append(f"Unknown source '{record.source}'")
    if record.source == SOURCE_DISCOVERY and not (
        normalize_space(record.source_venue_key) and normalize_space(record.source_event_id)
    ):
        blocking.append("Missing required fields (id, venueSlug)")

    known = ctx.known_venues.get(record.source_venue_key or "")
    city = (
        normalize_space(record.city)
        or normalize_space(record.venue_city)
        or (known.city if known else None)
    )
    state = (
        normalize_state(record.state)
        or normalize_state(record.venue_state)
        or (normalize_state(known.state) if known else None)
    )
    if city is None:
        blocking.append("City is required")
    if state is None:
        blocking.append("State is required")

    venues = _venue_refs(ctx, record, city, state, blocking)
    artists = _artist_refs(record, warnings)
    if not artists:
        blocking.append("At least one artist is required")

    title = normalize_space(record.title) or (
        ", ".join(a.name for a in artists if a.name) or None
    )
    if title is None:
        blocking.append("Title is required")

    event_date = parse_event_date(record.event_date, record.show_time, state)
    if event_date is None:
        blocking.append(f"Invalid or missing event date: {record.event_date!r}")
    elif local_event_date(event_date, state) < ctx.today:
        warnings.append(
            f"Event date {local_event_date(event_date, state).isoformat()} is in the past"
        )

    price = parse_price(record.price)
    if record.price not in (None, "") and price is None:
        warnings.append(f"Could not parse price {record.price!r}; leaving it empty")

    scraped_at = record.scraped_at
    if scraped_at is None and record.raw.get("scrapedAt"):
        scraped_at = parse_iso_timestamp(str(record.raw["scrapedAt"]))

    draft = ShowDraft(
        title=title,
        event_date=event_date,
        city=city,
        state=state,
        price=price,
        age_requirement=normalize_space(record.age_requirement),
        description=build_description(record),
        image_url=trim(record.image_url),
        ticket_url=trim(record.ticket_url),
        scraped_at=scraped_at,
    )
    plan = ImportPlan(record=record, show_draft=draft, venues=venues, artists=artists)

    # Resolve
    all_verified = True
    for ref in venues:
        match = resolve_venue(ctx, ref)
        plan.venue_matches.append(match)
        if isinstance(match, New):
            all_verified = False
            warnings.append(f"Venue '{ref.name}' will be created as new (unverified)")
        else:
            row = ctx.catalog.venue_by_id(match.id)
            if row is None or not row.is_verified:
                all_verified = False
                warnings.append(f"Venue '{ref.name}' is not verified; show will need review")
    plan.venues_verified = bool(venues) and all_verified

    for ref in artists:
        match = resolve_artist(ctx, ref)
        plan.artist_matches.append(match)
        if isinstance(match, New):
            warnings.append(f"Artist '{ref.name}' will be created as new")

    # Guard
    decision = check_record(ctx, record, plan.venue_matches, event_date, state)
    if decision.skip_reason == SKIP_DUPLICATE:
        warnings.append(
            f"Already imported as show #{decision.existing_show_id} "
            f"({record.source_venue_key}/{record.source_event_id})"
        )
    elif decision.skip_reason == SKIP_REJECTED:
        day = local_event_date(event_date, state).isoformat()
        warnings.append(
            f"A show at this venue on {day} was rejected "
            f"(show #{decision.existing_show_id}): "
            f"{decision.rejection_reason or 'no reason given'}"
        )
    plan.skip_reason = decision.skip_reason
    plan.existing_show_id = decision.existing_show_id
    plan.rejection_reason = decision.rejection_reason

    if decision.skip_reason is None and event_date is not None:
        idx = _headliner_index(artists)
        headliner = plan.artist_matches[idx] if idx is not None else None
        conflict = find_headliner_conflict(ctx, headliner, plan.venue_matches, event_date, state)
        if conflict is not None:
            plan.duplicate_of_show_id = conflict.id
            warnings.append(
                f"Possible duplicate of show #{conflict.id} '{conflict.title}' "
                "(same headliner, venue and date); will be held for review"
            )

    plan.blocking_errors = blocking
    plan.warnings = blocking + warnings
    plan.can_import = not blocking and plan.skip_reason is None
    return plan


def plan_summary(plan: ImportPlan) -> dict[str, Any]:
    """Compact per-record line used in reject rows and verbose CLI output."""
    return {
        "source": plan.record.source,
        "source_venue": plan.record.source_venue_key,
        "source_event_id": plan.record.source_event_id,
        "title": plan.show_draft.title,
        "event_date": plan.record.event_date,
        "outcome": plan.outcome,
        "warnings": plan.warnings,
    }
