"""show_etl.review_queue

Review queue state machine for shows (--mode review_apply).

States: pending | approved | rejected | private

  pending  --approve(verify_venues)--> approved  (optionally verifies venues)
  pending  --reject(reason)---------> rejected  (reason persisted)
  approved --unpublish--------------> pending
  approved --make_private-----------> private
  private  --publish----------------> approved if all venues verified,
                                      else pending

Imports only choose the initial status (initial_status).  Every later change
goes through the transition functions below, which lock the show row
(SELECT ... FOR UPDATE), write the new status and append a show_status_log
row.  The database trigger from migrations/0002 rejects any other status
change.

Decisions CSV format for run_review_apply (header row required):
    show_id,action,reason,actor,verify_venues

Required columns: show_id, action
Valid actions:    approve | reject | unpublish | make_private | publish
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import psycopg

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_PRIVATE = "private"

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
ACTION_UNPUBLISH = "unpublish"
ACTION_MAKE_PRIVATE = "make_private"
ACTION_PUBLISH = "publish"

_VALID_ACTIONS = frozenset({
    ACTION_APPROVE, ACTION_REJECT, ACTION_UNPUBLISH, ACTION_MAKE_PRIVATE, ACTION_PUBLISH,
})
_REQUIRED_COLS = frozenset({"show_id", "action"})

_FROM_STATUS = {
    ACTION_APPROVE: STATUS_PENDING,
    ACTION_REJECT: STATUS_PENDING,
    ACTION_UNPUBLISH: STATUS_APPROVED,
    ACTION_MAKE_PRIVATE: STATUS_APPROVED,
    ACTION_PUBLISH: STATUS_PRIVATE,
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class InvalidTransitionError(ValueError):
    """Raised when an action is not allowed from the show's current status."""


class ShowNotFoundError(LookupError):
    """Raised when a transition targets a show id that does not exist."""


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------

def initial_status(venues_verified: bool, flagged: bool = False) -> str:
    """Status a freshly imported show starts in."""
    if venues_verified and not flagged:
        return STATUS_APPROVED
    return STATUS_PENDING


def next_status(current: str, action: str, venues_verified: bool = False) -> str:
    if action not in _VALID_ACTIONS:
        raise InvalidTransitionError(f"unknown action {action!r}")
    if current != _FROM_STATUS[action]:
        raise InvalidTransitionError(f"cannot {action} a show in status '{current}'")
    if action == ACTION_APPROVE:
        return STATUS_APPROVED
    if action == ACTION_REJECT:
        return STATUS_REJECTED
    if action == ACTION_UNPUBLISH:
        return STATUS_PENDING
    if action == ACTION_MAKE_PRIVATE:
        return STATUS_PRIVATE
    return STATUS_APPROVED if venues_verified else STATUS_PENDING


# ---------------------------------------------------------------------------
# Storage helpers
# ---------------------------------------------------------------------------

def log_status_change(
    conn: psycopg.Connection,
    show_id: int,
    from_status: str | None,
    to_status: str,
    action: str,
    reason: str | None = None,
    actor: str | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO show_status_log (show_id, from_status, to_status, action, reason, actor)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (show_id, from_status, to_status, action, reason, actor),
    )


def _lock_status(conn: psycopg.Connection, show_id: int) -> str:
    row = conn.execute(
        "SELECT status::text FROM shows WHERE id = %s FOR UPDATE",
        (show_id,),
    ).fetchone()
    if row is None:
        raise ShowNotFoundError(f"show {show_id} not found")
    return row[0]


def _venues_verified(conn: psycopg.Connection, show_id: int) -> bool:
    row = conn.execute(
        """
        SELECT bool_and(v.is_verified)
        FROM show_venues sv JOIN venues v ON v.id = sv.venue_id
        WHERE sv.show_id = %s
        """,
        (show_id,),
    ).fetchone()
    return bool(row and row[0])


def _transition(
    conn: psycopg.Connection,
    show_id: int,
    action: str,
    reason: str | None = None,
    actor: str | None = None,
) -> str:
    current = _lock_status(conn, show_id)
    verified = _venues_verified(conn, show_id) if action == ACTION_PUBLISH else False
    target = next_status(current, action, verified)
    if action == ACTION_REJECT:
        conn.execute(
            "UPDATE shows SET status = %s, rejection_reason = %s, updated_at = now() WHERE id = %s",
            (target, reason, show_id),
        )
    else:
        conn.execute(
            "UPDATE shows SET status = %s, updated_at = now() WHERE id = %s",
            (target, show_id),
        )
    log_status_change(conn, show_id, current, target, action, reason, actor)
    return target


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def approve_show(
    conn: psycopg.Connection,
    show_id: int,
    verify_venues: bool = False,
    actor: str | None = None,
) -> str:
    current = _lock_status(conn, show_id)
    next_status(current, ACTION_APPROVE)
    if verify_venues:
        conn.execute(
            """
            UPDATE venues SET is_verified = true, updated_at = now()
            WHERE id IN (SELECT venue_id FROM show_venues WHERE show_id = %s)
            """,
            (show_id,),
        )
    return _transition(conn, show_id, ACTION_APPROVE, actor=actor)


def reject_show(
    conn: psycopg.Connection,
    show_id: int,
    reason: str,
    actor: str | None = None,
) -> str:
    if not reason or not reason.strip():
        raise ValueError("a rejection reason is required")
    return _transition(conn, show_id, ACTION_REJECT, reason.strip(), actor)


def unpublish_show(conn: psycopg.Connection, show_id: int, actor: str | None = None) -> str:
    return _transition(conn, show_id, ACTION_UNPUBLISH, actor=actor)


def make_private_show(conn: psycopg.Connection, show_id: int, actor: str | None = None) -> str:
    return _transition(conn, show_id, ACTION_MAKE_PRIVATE, actor=actor)


def publish_show(conn: psycopg.Connection, show_id: int, actor: str | None = None) -> str:
    return _transition(conn, show_id, ACTION_PUBLISH, actor=actor)


# ---------------------------------------------------------------------------
# Decisions CSV
# ---------------------------------------------------------------------------

@dataclass
class ReviewApplyCounters:
    rows_read: int = 0
    rows_applied: int = 0
    rows_invalid: int = 0
    db_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "rows_applied": self.rows_applied,
            "rows_invalid": self.rows_invalid,
            "db_errors": self.db_errors,
            "warnings": self.warnings[:50],
        }


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "y")


def _apply_decision(conn: psycopg.Connection, row: dict[str, str]) -> str:
    show_id = int((row.get("show_id") or "").strip())
    action = (row.get("action") or "").strip().lower()
    reason = (row.get("reason") or "").strip() or None
    actor = (row.get("actor") or "").strip() or None

    if action == ACTION_APPROVE:
        return approve_show(conn, show_id, _truthy(row.get("verify_venues")), actor)
    if action == ACTION_REJECT:
        return reject_show(conn, show_id, reason or "", actor)
    if action == ACTION_UNPUBLISH:
        return unpublish_show(conn, show_id, actor)
    if action == ACTION_MAKE_PRIVATE:
        return make_private_show(conn, show_id, actor)
    if action == ACTION_PUBLISH:
        return publish_show(conn, show_id, actor)
    raise InvalidTransitionError(f"unknown action {action!r}")


def run_review_apply(
    conn: psycopg.Connection,
    decisions_path: Path | str,
) -> ReviewApplyCounters:
    """Apply a CSV of review decisions, one SAVEPOINT per row.

    Invalid rows (bad id, unknown show, illegal transition) are counted and
    skipped; the caller commits or rolls back the whole run.
    """
    ctrs = ReviewApplyCounters()
    path = Path(decisions_path)
    with path.open(newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        if reader.fieldnames is None:
            raise ValueError(f"decisions CSV is empty or has no header: {path}")
        missing = _REQUIRED_COLS - set(reader.fieldnames)
        if missing:
            raise ValueError(f"decisions CSV missing required columns: {sorted(missing)}")

        for idx, raw_row in enumerate(reader):
            ctrs.rows_read += 1
            sp = f"review_apply_{idx}"
            conn.execute(f"SAVEPOINT {sp}")
            try:
                _apply_decision(conn, raw_row)
                conn.execute(f"RELEASE SAVEPOINT {sp}")
                ctrs.rows_applied += 1
            except (ValueError, LookupError) as exc:
                conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
                ctrs.rows_invalid += 1
                ctrs.warnings.append(f"row {idx}: {exc}")
            except Exception as exc:
                conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
                ctrs.db_errors += 1
                ctrs.warnings.append(f"row {idx} db error: {exc}")
    return ctrs
