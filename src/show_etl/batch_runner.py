"""show_etl.batch_runner

Runs several sources (venue calendars) concurrently.

Each source gets one worker from a bounded ThreadPoolExecutor and its own
psycopg connection; records within a source run one after another.  When a
source fails outright (connection refused, unexpected exception) the failure
is captured in its SourceResult, logged and summarised, and the other
sources carry on.

Dry runs plan each source on a read-only connection and never write.
Cancellation stops new records from being scheduled; a record already
committing always finishes.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping

import psycopg

from show_etl.catalog import PgCatalog
from show_etl.import_commit import CommitResult, run_import
from show_etl.import_planner import ImportPlan, plan_record
from show_etl.import_preview import preview_counters
from show_etl.records import KnownVenue, RawEventRecord
from show_etl.resolution_entities import ResolverContext
from show_etl.shared import ImportCounters, NullRejectWriter

log = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class SourceResult:
    source: str
    counters: ImportCounters = field(default_factory=ImportCounters)
    plans: list[ImportPlan] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def _preview_source(
    conn: psycopg.Connection,
    records: list[RawEventRecord],
    ctx: ResolverContext,
    cancel: threading.Event | None,
) -> tuple[list[ImportPlan], int]:
    plans: list[ImportPlan] = []
    for idx, record in enumerate(records):
        if cancel is not None and cancel.is_set():
            return plans, len(records) - idx
        plans.append(plan_record(ctx, record))
    return plans, 0


def run_source(
    db_dsn: str,
    source: str,
    records: list[RawEventRecord],
    known_venues: Mapping[str, KnownVenue],
    dry_run: bool = False,
    cancel: threading.Event | None = None,
    today: date | None = None,
    rejects: Any = None,
    on_result: Callable[[RawEventRecord, CommitResult], None] | None = None,
) -> SourceResult:
    """Import (or preview) one source on a dedicated connection.

    A failure is returned in SourceResult.error together with the counters
    accumulated before it, so committed records are still reported.
    """
    if cancel is not None and cancel.is_set():
        return SourceResult(source, ImportCounters(records_not_scheduled=len(records)))

    log.info("source %s: %d record(s) dry_run=%s", source, len(records), dry_run)
    counters = ImportCounters()
    try:
        conn = psycopg.connect(db_dsn, autocommit=False)
    except psycopg.Error as exc:
        log.error("source %s failed: %s", source, exc)
        counters.records_not_scheduled = len(records)
        return SourceResult(source, counters, error=str(exc))
    try:
        if dry_run:
            conn.read_only = True
            ctx = ResolverContext(PgCatalog(conn), known_venues, today or date.today())
            plans, not_scheduled = _preview_source(conn, records, ctx, cancel)
            conn.rollback()
            counters = preview_counters(plans)
            counters.records_not_scheduled = not_scheduled
            return SourceResult(source, counters, plans=plans)
        run_import(
            conn, records, known_venues,
            rejects=rejects, today=today, cancel=cancel, on_result=on_result,
            counters=counters,
        )
        return SourceResult(source, counters)
    except psycopg.Error as exc:
        log.error("source %s failed: %s", source, exc)
        return SourceResult(source, counters, error=str(exc))
    finally:
        conn.close()


def run_sources(
    db_dsn: str,
    sources: Mapping[str, list[RawEventRecord]],
    known_venues: Mapping[str, KnownVenue],
    max_workers: int = DEFAULT_MAX_WORKERS,
    dry_run: bool = False,
    cancel: threading.Event | None = None,
    today: date | None = None,
    rejects: Any = None,
    on_result: Callable[[RawEventRecord, CommitResult], None] | None = None,
) -> list[SourceResult]:
    """Run every source under a bounded worker pool.

    Returns one SourceResult per source, in the order sources were given.
    """
    rejects = rejects or NullRejectWriter()
    results: dict[str, SourceResult] = {}

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {
            executor.submit(
                run_source, db_dsn, name, records, known_venues,
                dry_run, cancel, today, rejects, on_result,
            ): name
            for name, records in sources.items()
        }
        for future in as_completed(futures):
            name = futures[future]
            try:
                results[name] = future.result()
            except Exception as exc:
                log.error("source %s failed: %s", name, exc)
                results[name] = SourceResult(name, error=str(exc))

    return [results[name] for name in sources]


def summarize(results: list[SourceResult]) -> ImportCounters:
    """Aggregate per-source counters into one batch summary."""
    total = ImportCounters()
    for result in results:
        total.merge(result.counters)
        if result.failed:
            total.sources_failed += 1
            total.warnings.append(f"source {result.source} failed: {result.error}")
        else:
            total.sources_processed += 1
    return total
