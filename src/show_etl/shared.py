"""show_etl.shared

Shared utilities used by the discovery, document and review modes.
Includes exceptions, RejectWriter, ImportCounters and report-writing
support.
"""

from __future__ import annotations

import csv
import json
import threading
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class DocumentParseError(ValueError):
    """Raised when import content cannot be decoded or parsed."""


class ConfigValidationError(ValueError):
    """Raised when a YAML config file fails schema validation."""


# ---------------------------------------------------------------------------
# Record outcomes
# ---------------------------------------------------------------------------

OUTCOME_CREATED = "created"
OUTCOME_SKIPPED_DUPLICATE = "skipped_duplicate"
OUTCOME_SKIPPED_REJECTED = "skipped_rejected"
OUTCOME_BLOCKED = "blocked"
OUTCOME_ERRORED = "errored"

OUTCOMES = (
    OUTCOME_CREATED,
    OUTCOME_SKIPPED_DUPLICATE,
    OUTCOME_SKIPPED_REJECTED,
    OUTCOME_BLOCKED,
    OUTCOME_ERRORED,
)


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for blocked and errored records.

    Safe to share between batch-runner worker threads.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self._lock = threading.Lock()

    def write(self, row: dict[str, Any], reason: str) -> None:
        with self._lock:
            self._write(row, reason)

    def _write(self, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = {
            k: json.dumps(v, default=str) if isinstance(v, (dict, list)) else v
            for k, v in row.items()
        }
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


class NullRejectWriter:
    """Drop-in RejectWriter that discards rows (dry runs, HTTP callers)."""

    def write(self, row: dict[str, Any], reason: str) -> None:
        return None

    def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# ImportCounters
# ---------------------------------------------------------------------------

@dataclass
class ImportCounters:
    records_read: int = 0
    created: int = 0
    skipped_duplicate: int = 0
    skipped_rejected: int = 0
    blocked: int = 0
    errored: int = 0
    # Sub-counts of created
    flagged_for_review: int = 0
    venues_created: int = 0
    artists_created: int = 0
    # Batch-level
    sources_processed: int = 0
    sources_failed: int = 0
    records_not_scheduled: int = 0
    warnings: list[str] = field(default_factory=list)

    def count_outcome(self, outcome: str) -> None:
        if outcome not in OUTCOMES:
            raise ValueError(f"unknown record outcome: {outcome!r}")
        setattr(self, outcome, getattr(self, outcome) + 1)

    def merge(self, other: ImportCounters) -> None:
        """Add another counter set into this one (batch aggregation)."""
        for f in fields(self):
            if f.name == "warnings":
                self.warnings.extend(other.warnings)
            else:
                setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def to_dict(self) -> dict[str, Any]:
        d = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "warnings"}
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Report builders
# ---------------------------------------------------------------------------

def build_import_report(counters: ImportCounters, dry_run: bool = False) -> str:
    created_label = "would create:" if dry_run else "created:     "
    lines = [
        "=" * 60,
        "DRY RUN - Show Import Summary (no changes written)" if dry_run
        else "Show Import Summary",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  records read:                   {counters.records_read}",
        f"  {created_label}                  {counters.created}",
        f"    flagged for review:           {counters.flagged_for_review}",
        f"    venues created:               {counters.venues_created}",
        f"    artists created:              {counters.artists_created}",
        f"  skipped_duplicate:              {counters.skipped_duplicate}",
        f"  skipped_rejected:               {counters.skipped_rejected}",
        f"  blocked:                        {counters.blocked}",
        f"  errored:                        {counters.errored}",
    ]
    if counters.sources_processed or counters.sources_failed:
        lines.append(f"  sources processed:              {counters.sources_processed}")
        lines.append(f"  sources failed:                 {counters.sources_failed}")
    if counters.records_not_scheduled:
        lines.append(f"  not scheduled (cancelled):      {counters.records_not_scheduled}")
    if counters.warnings:
        lines.append(f"\nWarnings ({len(counters.warnings)}):")
        for w in counters.warnings[:20]:
            lines.append(f"  {w}")
        if len(counters.warnings) > 20:
            lines.append(f"  ... and {len(counters.warnings) - 20} more")
    if dry_run:
        lines.append("\nThis was a DRY RUN - run without --dry-run to import.")
    lines.append("=" * 60)
    return "\n".join(lines)


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, Any],
    counters: Any,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
