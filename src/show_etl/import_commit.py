"""show_etl.import_commit

Commit executor: turns one RawEventRecord into stored rows.

commit_record() never trusts an earlier plan.  Inside a SAVEPOINT it re-plans
the record against the live catalog, refuses anything whose plan cannot be
imported, then creates New venues (unverified) and artists, the show with its
provenance and join rows, and the audit row for its initial status:

  approved  every linked venue is verified and no headliner conflict was found
  pending   otherwise

Failure handling (per record, the batch continues):
  UniqueViolation, show now exists by source ids  -> skipped_duplicate (lost a race)
  UniqueViolation on a slug key                   -> re-planned once, so rows a
                                                     concurrent run committed
                                                     resolve as Existing
  any other error                                 -> rolled back to the savepoint,
                                                     outcome errored
  connection loss (OperationalError)              -> errored in run_import;
                                                     remaining records not
                                                     scheduled

run_import() drives a list of records on one connection, committing after
every record, counting outcomes and writing blocked/errored records to the
reject CSV.  A set cancel event stops scheduling further records; the record
in flight always finishes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping

import psycopg
import psycopg.errors

from show_etl.catalog import (
    PgCatalog,
    ShowDetail,
    insert_artist,
    insert_show,
    insert_show_artist,
    insert_show_venue,
    insert_venue,
    load_show,
    unique_slug,
)
from show_etl.import_planner import ImportPlan, plan_record
from show_etl.normalize import local_event_date, slug_name
from show_etl.records import SOURCE_DISCOVERY, KnownVenue, RawEventRecord
from show_etl.resolution_entities import Existing, ResolverContext
from show_etl.review_queue import initial_status, log_status_change
from show_etl.shared import (
    OUTCOME_BLOCKED,
    OUTCOME_CREATED,
    OUTCOME_ERRORED,
    OUTCOME_SKIPPED_DUPLICATE,
    ImportCounters,
    NullRejectWriter,
)

log = logging.getLogger(__name__)

SLUG_CONSTRAINTS = frozenset({"venues_slug_key", "artists_slug_key", "shows_slug_key"})
SLUG_RETRIES = 1


@dataclass
class CommitResult:
    outcome: str
    plan: ImportPlan | None = None
    show_id: int | None = None
    show: ShowDetail | None = None
    venues_created: int = 0
    artists_created: int = 0
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def status(self) -> str | None:
        return self.show.status if self.show else None


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------

def _show_slug(conn: psycopg.Connection, plan: ImportPlan) -> str:
    draft = plan.show_draft
    day = local_event_date(draft.event_date, draft.state).isoformat()
    venue = plan.venues[0].name if plan.venues else ""
    return unique_slug(conn, "shows", slug_name(f"{draft.title} {venue} {day}"))


def _apply_plan(conn: psycopg.Connection, plan: ImportPlan) -> CommitResult:
    record = plan.record
    draft = plan.show_draft
    result = CommitResult(OUTCOME_CREATED, plan=plan, warnings=list(plan.warnings))

    venue_ids: list[int] = []
    for ref, match in zip(plan.venues, plan.venue_matches):
        if isinstance(match, Existing):
            venue_ids.append(match.id)
        else:
            venue_ids.append(insert_venue(conn, ref, is_verified=False).id)
            result.venues_created += 1

    artist_ids: list[int] = []
    for ref, match in zip(plan.artists, plan.artist_matches):
        if isinstance(match, Existing):
            artist_ids.append(match.id)
        else:
            artist_ids.append(insert_artist(conn, ref.name).id)
            result.artists_created += 1

    scraped_at = draft.scraped_at
    if scraped_at is None and record.source == SOURCE_DISCOVERY:
        scraped_at = datetime.now(timezone.utc)

    status = initial_status(plan.venues_verified, plan.flagged_for_review)
    show_id = insert_show(
        conn,
        title=draft.title,
        slug=_show_slug(conn, plan),
        event_date=draft.event_date,
        city=draft.city,
        state=draft.state,
        price=draft.price,
        age_requirement=draft.age_requirement,
        description=draft.description,
        image_url=draft.image_url,
        ticket_url=draft.ticket_url,
        status=status,
        source=record.source,
        source_venue=record.source_venue_key,
        source_event_id=record.source_event_id,
        scraped_at=scraped_at,
        duplicate_of_show_id=plan.duplicate_of_show_id,
    )
    for position, venue_id in enumerate(venue_ids):
        insert_show_venue(conn, show_id, venue_id, position)
    for position, (artist_id, ref) in enumerate(zip(artist_ids, plan.artists)):
        insert_show_artist(conn, show_id, artist_id, position, ref.set_type)

    log_status_change(conn, show_id, None, status, action=f"import:{record.source}")

    result.show_id = show_id
    result.show = load_show(conn, show_id)
    return result


# ---------------------------------------------------------------------------
# commit_record
# ---------------------------------------------------------------------------

def _imported_concurrently(conn: psycopg.Connection, record: RawEventRecord) -> int | None:
    """Id of a show another run committed for the same source ids, if any."""
    if not (record.source_venue_key and record.source_event_id):
        return None
    found = PgCatalog(conn).show_by_source(record.source_venue_key, record.source_event_id)
    return found.id if found else None


def commit_record(
    conn: psycopg.Connection,
    record: RawEventRecord,
    known_venues: Mapping[str, KnownVenue],
    today: date | None = None,
) -> CommitResult:
    """Plan and apply one record atomically.

    The caller owns the surrounding transaction and decides when to commit;
    this function only ever releases or rolls back its own savepoint.
    """
    ctx = ResolverContext(PgCatalog(conn), known_venues, today or date.today())
    sp = "show_commit"
    attempt = 0
    while True:
        attempt += 1
        plan: ImportPlan | None = None
        conn.execute(f"SAVEPOINT {sp}")
        try:
            plan = plan_record(ctx, record)
            if not plan.can_import:
                conn.execute(f"RELEASE SAVEPOINT {sp}")
                return CommitResult(plan.outcome, plan=plan, warnings=list(plan.warnings))
            result = _apply_plan(conn, plan)
            conn.execute(f"RELEASE SAVEPOINT {sp}")
            return result
        except psycopg.errors.UniqueViolation as exc:
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
            conn.execute(f"RELEASE SAVEPOINT {sp}")
            constraint = exc.diag.constraint_name
            existing_id = _imported_concurrently(conn, record)
            if existing_id is not None:
                log.info(
                    "record %s already imported by a concurrent run (%s); skipped as duplicate",
                    record.label, constraint,
                )
                return CommitResult(
                    OUTCOME_SKIPPED_DUPLICATE,
                    plan=plan,
                    show_id=existing_id,
                    warnings=[f"Already imported by a concurrent run "
                              f"({record.source_venue_key}/{record.source_event_id})"],
                )
            if constraint in SLUG_CONSTRAINTS and attempt <= SLUG_RETRIES:
                log.info(
                    "record %s lost a slug race on %s; re-planning", record.label, constraint
                )
                continue
            log.error("record %s failed: %s; payload=%r", record.label, exc, record.raw)
            return CommitResult(OUTCOME_ERRORED, plan=plan, error=str(exc))
        except psycopg.OperationalError:
            # run_import decides whether the connection survived.
            raise
        except Exception as exc:
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
            log.error("record %s failed: %s; payload=%r", record.label, exc, record.raw)
            return CommitResult(OUTCOME_ERRORED, plan=plan, error=str(exc))


# ---------------------------------------------------------------------------
# run_import
# ---------------------------------------------------------------------------

def reject_row(record: RawEventRecord) -> dict[str, Any]:
    return {
        "source": record.source,
        "source_venue": record.source_venue_key,
        "source_event_id": record.source_event_id,
        "title": record.title,
        "event_date": record.event_date,
        "raw": record.raw,
    }


def run_import(
    conn: psycopg.Connection,
    records: list[RawEventRecord],
    known_venues: Mapping[str, KnownVenue],
    rejects: Any = None,
    today: date | None = None,
    cancel: threading.Event | None = None,
    on_result: Callable[[RawEventRecord, CommitResult], None] | None = None,
    counters: ImportCounters | None = None,
) -> ImportCounters:
    """Commit records one at a time, each in its own transaction.

    Args:
        conn: Open psycopg connection with autocommit off.
        records: Records in the order they should be applied.
        known_venues: Known-venue table for completing discovery records.
        rejects: RejectWriter-like sink for blocked and errored records.
        today: Reference date for past-date warnings.
        cancel: When set, records not yet started are counted as not scheduled.
        on_result: Called after each record (verbose CLI output).
        counters: Counters to accumulate into.  The caller keeps them when
            the connection is lost and this function re-raises.

    Returns:
        ImportCounters for this run.

    Raises:
        psycopg.OperationalError: the connection broke.  The record in flight
            is counted as errored and the rest as not scheduled first.
    """
    rejects = rejects or NullRejectWriter()
    ctrs = counters if counters is not None else ImportCounters()

    for idx, record in enumerate(records):
        if cancel is not None and cancel.is_set():
            ctrs.records_not_scheduled += len(records) - idx
            log.warning("cancelled; %d record(s) not scheduled", len(records) - idx)
            break

        ctrs.records_read += 1
        lost: psycopg.OperationalError | None = None
        try:
            result = commit_record(conn, record, known_venues, today)
            conn.commit()
        except psycopg.OperationalError as exc:
            log.error("record %s failed: %s; payload=%r", record.label, exc, record.raw)
            result = CommitResult(OUTCOME_ERRORED, error=str(exc))
            if conn.broken or conn.closed:
                lost = exc
            else:
                conn.rollback()

        ctrs.count_outcome(result.outcome)
        if result.outcome == OUTCOME_CREATED:
            ctrs.venues_created += result.venues_created
            ctrs.artists_created += result.artists_created
            if result.status == "pending" and result.plan and result.plan.flagged_for_review:
                ctrs.flagged_for_review += 1
        elif result.outcome == OUTCOME_BLOCKED:
            rejects.write(reject_row(record), "; ".join(result.plan.blocking_errors))
        elif result.outcome == OUTCOME_ERRORED:
            rejects.write(reject_row(record), f"db_error: {result.error}")
            ctrs.warnings.append(f"{record.label}: error: {result.error}")

        ctrs.warnings.extend(f"{record.label}: {w}" for w in result.warnings)
        if on_result is not None:
            on_result(record, result)

        if lost is not None:
            remaining = len(records) - idx - 1
            ctrs.records_not_scheduled += remaining
            log.error("connection lost; %d record(s) not scheduled", remaining)
            raise lost

    return ctrs
