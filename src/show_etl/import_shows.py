"""show_etl.import_shows

Unified CLI entrypoint for show ingestion.

Modes (--mode):
  discovery_import  import venue-calendar scraper JSON (default)
  document_import   import markdown show documents
  review_apply      apply a CSV of admin review decisions

Usage (discovery_import):
    python -m show_etl.import_shows \\
        --mode discovery_import \\
        --db-dsn "$DB_DSN" \\
        --input "scrapes/2026-01-*.json" \\
        --workers 4 \\
        --dry-run

Usage (document_import):
    python -m show_etl.import_shows \\
        --mode document_import \\
        --input "shows/show-2026-03-14-loomer.md"

Usage (review_apply):
    python -m show_etl.import_shows \\
        --mode review_apply \\
        --decisions-path review/decisions.csv

Exit status is 0 when every record reached created / skipped_duplicate /
skipped_rejected / blocked and no source failed; 1 otherwise.
"""

from __future__ import annotations

import glob
import logging
import signal
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping

import click
import psycopg

from show_etl.batch_runner import DEFAULT_MAX_WORKERS, SourceResult, run_sources, summarize
from show_etl.discovery_json import group_by_source, load_discovery_file
from show_etl.import_commit import CommitResult
from show_etl.import_planner import plan_summary
from show_etl.records import (
    DEFAULT_KNOWN_VENUES_PATH,
    KnownVenue,
    RawEventRecord,
    load_known_venues,
)
from show_etl.review_queue import run_review_apply
from show_etl.shared import (
    ConfigValidationError,
    DocumentParseError,
    RejectWriter,
    build_import_report,
    write_run_report,
)
from show_etl.show_document import load_document_file

log = logging.getLogger(__name__)

MODES = ["discovery_import", "document_import", "review_apply"]


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _validate_import_flags(input_path: str | None, workers: int, run_id: str) -> None:
    if not input_path:
        _fatal(run_id, "import modes require: --input")
    if workers < 1:
        _fatal(run_id, "--workers must be at least 1")


def _validate_review_apply_flags(decisions_path: str | None, run_id: str) -> None:
    if not decisions_path:
        _fatal(run_id, "review_apply mode requires: --decisions-path")


def expand_input(input_path: str) -> list[Path]:
    """A literal path, or every file a glob pattern matches (sorted)."""
    literal = Path(input_path)
    if literal.is_file():
        return [literal]
    return [Path(p) for p in sorted(glob.glob(input_path)) if Path(p).is_file()]


# ---------------------------------------------------------------------------
# Source loading
# ---------------------------------------------------------------------------

def _load_sources(
    mode: str,
    files: list[Path],
    run_id: str,
) -> tuple[dict[str, list[RawEventRecord]], list[SourceResult]]:
    """Parse input files into sources; unparseable files become failed sources."""
    sources: dict[str, list[RawEventRecord]] = {}
    failed: list[SourceResult] = []
    for path in files:
        try:
            if mode == "discovery_import":
                for slug, records in group_by_source(load_discovery_file(path)).items():
                    sources.setdefault(slug, []).extend(records)
            else:
                sources[path.name] = [load_document_file(path)]
        except (DocumentParseError, OSError) as exc:
            log.error("failed to load %s: %s", path, exc)
            click.echo(f"[{run_id}] ERROR: {path}: {exc}", err=True)
            failed.append(SourceResult(str(path), error=str(exc)))
    return sources, failed


def _echo_result(run_id: str, record: RawEventRecord, result: CommitResult) -> None:
    suffix = f" show_id={result.show_id}" if result.show_id else ""
    click.echo(f"[{run_id}] {record.label}: {result.outcome}{suffix}")
    for warning in result.warnings:
        click.echo(f"[{run_id}]     {warning}")
    if result.error:
        click.echo(f"[{run_id}]     error: {result.error}")


def _echo_plans(run_id: str, results: list[SourceResult]) -> None:
    for source in results:
        for plan in source.plans:
            line = plan_summary(plan)
            click.echo(f"[{run_id}] {plan.record.label}: would be {line['outcome']}")
            for warning in line["warnings"]:
                click.echo(f"[{run_id}]     {warning}")


def _run_imports(
    mode: str,
    run_id: str,
    started_at: str,
    db_dsn: str,
    input_path: str,
    known_venues: Mapping[str, KnownVenue],
    workers: int,
    dry_run: bool,
    rejects_path: str,
    verbose: bool,
) -> None:
    files = expand_input(input_path)
    if not files:
        _fatal(run_id, f"--input matched no files: {input_path}")
    click.echo(f"[{run_id}] {len(files)} input file(s)")

    sources, failed = _load_sources(mode, files, run_id)
    rejects = RejectWriter(Path(rejects_path))
    cancel = threading.Event()

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        results = run_sources(
            db_dsn,
            sources,
            known_venues,
            max_workers=workers,
            dry_run=dry_run,
            cancel=cancel,
            rejects=rejects,
            on_result=(lambda rec, res: _echo_result(run_id, rec, res)) if verbose else None,
        )
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
        rejects.close()

    results = failed + results
    if verbose and dry_run:
        _echo_plans(run_id, results)
    for result in results:
        if result.failed:
            click.echo(f"[{run_id}] source {result.source} FAILED: {result.error}", err=True)

    counters = summarize(results)
    click.echo(build_import_report(counters, dry_run=dry_run))

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {
            "input": input_path,
            "files": [str(p) for p in files],
            "rejects_path": rejects_path,
            "failed_sources": {r.source: r.error for r in results if r.failed},
        },
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if counters.errored or counters.sources_failed:
        click.echo(
            f"[{run_id}] {counters.errored} errored record(s), "
            f"{counters.sources_failed} failed source(s) - exiting non-zero",
            err=True,
        )
        sys.exit(1)


def _run_review_apply(
    run_id: str,
    started_at: str,
    db_dsn: str,
    decisions_path: str,
    dry_run: bool,
) -> None:
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        ctrs = run_review_apply(conn, decisions_path)
        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] DRY RUN - rolled back.")
        else:
            conn.commit()
            click.echo(f"[{run_id}] Committed.")
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    click.echo(
        f"[{run_id}] review_apply: read={ctrs.rows_read} applied={ctrs.rows_applied} "
        f"invalid={ctrs.rows_invalid} db_errors={ctrs.db_errors}"
    )
    for warning in ctrs.warnings[:20]:
        click.echo(f"[{run_id}]   {warning}")

    report_path = write_run_report(
        run_id, started_at, "review_apply", dry_run,
        {"decisions_path": decisions_path}, ctrs,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    if ctrs.db_errors:
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="discovery_import",
    type=click.Choice(MODES),
    show_default=True,
    help="Ingestion mode",
)
@click.option("--db-dsn", envvar="DB_DSN", default=None, help="PostgreSQL DSN (env DB_DSN)")
@click.option(
    "--input", "input_path", default=None,
    help="[discovery_import|document_import] Input file path or glob",
)
@click.option(
    "--known-venues",
    default=str(DEFAULT_KNOWN_VENUES_PATH),
    type=click.Path(),
    show_default=True,
    help="[discovery_import|document_import] Known-venue lookup table (YAML)",
)
@click.option(
    "--workers",
    default=DEFAULT_MAX_WORKERS,
    type=int,
    show_default=True,
    help="[discovery_import|document_import] Sources processed concurrently",
)
@click.option(
    "--decisions-path", default=None, type=click.Path(),
    help="[review_apply] CSV of review decisions",
)
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="artifacts/rejects/show_import_rejects.csv",
    show_default=True,
    type=click.Path(),
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Per-record output and debug logging")
def main(
    mode: str,
    db_dsn: str | None,
    input_path: str | None,
    known_venues: str,
    workers: int,
    decisions_path: str | None,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Unified show ingestion CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")
    if not db_dsn:
        _fatal(run_id, "--db-dsn (or DB_DSN) is required")

    if mode == "review_apply":
        _validate_review_apply_flags(decisions_path, run_id)
        _run_review_apply(run_id, started_at, db_dsn, decisions_path, dry_run)
        return

    _validate_import_flags(input_path, workers, run_id)
    try:
        table = load_known_venues(Path(known_venues))
    except (ConfigValidationError, OSError) as exc:
        _fatal(run_id, f"known venues {known_venues}: {exc}")
    _run_imports(
        mode, run_id, started_at, db_dsn, input_path, table,
        workers, dry_run, rejects_path, verbose,
    )


if __name__ == "__main__":
    main()
