"""show_etl.dedup_guard

Decides whether an incoming record duplicates an already-imported show or
lands on a day an admin already rejected.

  duplicate: a show with the same (source_venue, source_event_id) exists.
             Only checked when the record carries both identifiers.
  rejected:  a show with status 'rejected' is linked to one of the record's
             already-existing venues on the same local calendar date.  The
             rejected show's rejection_reason is surfaced.

The duplicate check wins when both apply.  A venue that does not exist yet
cannot have rejected shows, so New venue matches are never consulted.

The headliner-conflict check is advisory: it finds a live (not rejected, not
private) show at the same venue, same date, same headliner.  The planner turns
it into a warning and the commit executor routes the new show to review.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from show_etl.catalog import ShowRow
from show_etl.normalize import local_event_date, timezone_for_state
from show_etl.records import RawEventRecord
from show_etl.resolution_entities import Existing, MatchResult, ResolverContext

SKIP_DUPLICATE = "duplicate"
SKIP_REJECTED = "rejected"


@dataclass(frozen=True)
class GuardDecision:
    skip_reason: str | None = None
    existing_show_id: int | None = None
    rejection_reason: str | None = None

    @property
    def should_skip(self) -> bool:
        return self.skip_reason is not None


def check_record(
    ctx: ResolverContext,
    record: RawEventRecord,
    venue_matches: list[MatchResult],
    event_date: datetime | None,
    state: str | None = None,
) -> GuardDecision:
    """Run both skip checks for one record.

    event_date must be timezone-aware; the calendar date is taken in the
    timezone of ``state`` (falling back to the record's state).  Without an
    event date only the duplicate check runs.
    """
    if record.source_venue_key and record.source_event_id:
        existing = ctx.catalog.show_by_source(record.source_venue_key, record.source_event_id)
        if existing is not None:
            return GuardDecision(SKIP_DUPLICATE, existing_show_id=existing.id)

    if event_date is None:
        return GuardDecision()

    state = state or record.state or record.venue_state
    tz_name = timezone_for_state(state).key
    day = local_event_date(event_date, state)
    for match in venue_matches:
        if not isinstance(match, Existing):
            continue
        rejected = ctx.catalog.rejected_show_at_venue(match.id, day, tz_name)
        if rejected is not None:
            return GuardDecision(
                SKIP_REJECTED,
                existing_show_id=rejected.id,
                rejection_reason=rejected.rejection_reason,
            )
    return GuardDecision()


def find_headliner_conflict(
    ctx: ResolverContext,
    headliner: MatchResult | None,
    venue_matches: list[MatchResult],
    event_date: datetime,
    state: str | None,
) -> ShowRow | None:
    if not isinstance(headliner, Existing):
        return None
    tz_name = timezone_for_state(state).key
    day = local_event_date(event_date, state)
    for match in venue_matches:
        if isinstance(match, Existing):
            show = ctx.catalog.headliner_show_at_venue(headliner.id, match.id, day, tz_name)
            if show is not None:
                return show
    return None
