"""show_etl.api

Admin HTTP endpoints for show import and discovery.

    POST /admin/shows/import/preview   {"content": <base64 document>}
    POST /admin/shows/import/confirm   {"content": <base64 document>}
    POST /admin/discovery/check        {"events": [{"id", "venueSlug"}, ...]}
    POST /admin/discovery/import       {"events": [...], "dry_run": bool}

Preview and dry-run requests use a read-only connection.  Confirm re-plans
the decoded document inside the commit; nothing from a previous preview is
trusted.  Errors are returned as {"error", "message", "warnings"}:

    400 invalid_content   content missing, not base64 or not a document
    409 duplicate         already imported
    409 rejected          a rejected show exists at the venue on that date
    422 blocked           required fields missing or invalid
    500 storage_error     database failure

Every request needs "Authorization: Bearer <ADMIN_API_TOKEN>".  With no
token configured all requests are refused.
"""

from __future__ import annotations

import hmac
import logging
import os
from datetime import date
from typing import Any, Mapping

import psycopg
from flask import Blueprint, Flask, current_app, jsonify, request

from show_etl.catalog import PgCatalog
from show_etl.discovery_json import check_events, parse_discovery_payload
from show_etl.import_commit import CommitResult, commit_record, run_import
from show_etl.import_planner import plan_record
from show_etl.import_preview import plan_to_payload, preview_batch, preview_counters
from show_etl.records import DEFAULT_KNOWN_VENUES_PATH, KnownVenue, RawEventRecord, load_known_venues
from show_etl.resolution_entities import ResolverContext
from show_etl.shared import (
    OUTCOME_BLOCKED,
    OUTCOME_CREATED,
    OUTCOME_SKIPPED_DUPLICATE,
    OUTCOME_SKIPPED_REJECTED,
    DocumentParseError,
)
from show_etl.show_document import record_from_content

log = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def create_app(
    db_dsn: str | None = None,
    known_venues: Mapping[str, KnownVenue] | None = None,
    admin_token: str | None = None,
    today: date | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["DB_DSN"] = db_dsn or os.environ.get("DB_DSN")
    app.config["ADMIN_API_TOKEN"] = (
        admin_token if admin_token is not None else os.environ.get("ADMIN_API_TOKEN")
    )
    app.config["KNOWN_VENUES"] = (
        known_venues if known_venues is not None
        else load_known_venues(DEFAULT_KNOWN_VENUES_PATH)
    )
    app.config["TODAY"] = today
    app.register_blueprint(admin_bp)
    return app


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error(error: str, message: str, status: int, warnings: list[str] | None = None):
    return jsonify({"error": error, "message": message, "warnings": warnings or []}), status


def _connect(read_only: bool = False) -> psycopg.Connection:
    conn = psycopg.connect(current_app.config["DB_DSN"], autocommit=False)
    if read_only:
        conn.read_only = True
    return conn


def _today() -> date:
    return current_app.config.get("TODAY") or date.today()


def _context(conn: psycopg.Connection) -> ResolverContext:
    return ResolverContext(PgCatalog(conn), current_app.config["KNOWN_VENUES"], _today())


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@admin_bp.before_request
def _require_token():
    expected = current_app.config.get("ADMIN_API_TOKEN")
    if not expected:
        log.warning("ADMIN_API_TOKEN is not configured; refusing %s", request.path)
        return _error("unauthorized", "admin API token is not configured", 401)
    header = request.headers.get("Authorization", "")
    supplied = header[len("Bearer "):] if header.startswith("Bearer ") else ""
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        return _error("unauthorized", "missing or invalid bearer token", 401)
    return None


# ---------------------------------------------------------------------------
# Show documents
# ---------------------------------------------------------------------------

@admin_bp.route("/shows/import/preview", methods=["POST"])
def preview_show_import():
    """Plan a show document without writing anything."""
    try:
        record = record_from_content(_json_body().get("content"))
    except DocumentParseError as exc:
        return _error("invalid_content", str(exc), 400)

    try:
        conn = _connect(read_only=True)
    except psycopg.Error as exc:
        log.error("preview: database unavailable: %s", exc)
        return _error("storage_error", "database unavailable", 500)
    try:
        plan = plan_record(_context(conn), record)
    except psycopg.Error as exc:
        log.error("preview: storage error: %s", exc)
        return _error("storage_error", str(exc), 500)
    finally:
        if not conn.broken:
            conn.rollback()
        conn.close()
    return jsonify(plan_to_payload(plan))


def _confirm_response(result: CommitResult):
    warnings = result.warnings
    if result.outcome == OUTCOME_CREATED:
        return jsonify({"show": result.show.to_dict(), "warnings": warnings}), 201
    if result.outcome == OUTCOME_SKIPPED_DUPLICATE:
        show_id = result.show_id or (result.plan.existing_show_id if result.plan else None)
        return _error("duplicate", f"show already imported (show #{show_id})", 409, warnings)
    if result.outcome == OUTCOME_SKIPPED_REJECTED:
        return _error(
            "rejected",
            f"a show at this venue on this date was rejected: "
            f"{result.plan.rejection_reason or 'no reason given'}",
            409,
            warnings,
        )
    if result.outcome == OUTCOME_BLOCKED:
        return _error("blocked", "; ".join(result.plan.blocking_errors), 422, warnings)
    return _error("storage_error", result.error or "import failed", 500, warnings)


@admin_bp.route("/shows/import/confirm", methods=["POST"])
def confirm_show_import():
    """Commit a show document; the plan is recomputed inside the transaction."""
    try:
        record = record_from_content(_json_body().get("content"))
    except DocumentParseError as exc:
        return _error("invalid_content", str(exc), 400)

    try:
        conn = _connect()
    except psycopg.Error as exc:
        log.error("confirm: database unavailable: %s", exc)
        return _error("storage_error", "database unavailable", 500)
    try:
        result = commit_record(conn, record, current_app.config["KNOWN_VENUES"], _today())
        conn.commit()
    except psycopg.Error as exc:
        conn.rollback()
        log.error("confirm: storage error: %s", exc)
        return _error("storage_error", str(exc), 500)
    finally:
        conn.close()

    log.info("confirm: %s -> %s (show %s)", record.label, result.outcome, result.show_id)
    return _confirm_response(result)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

@admin_bp.route("/discovery/check", methods=["POST"])
def check_discovered_events():
    events = _json_body().get("events")
    if not isinstance(events, list):
        return _error("invalid_content", "'events' must be a list", 400)
    pairs = [
        (e.get("venueSlug") or e.get("venue_slug"),
         str(e["id"]) if e.get("id") is not None else None)
        for e in events if isinstance(e, dict)
    ]
    try:
        conn = _connect(read_only=True)
    except psycopg.Error as exc:
        log.error("check: database unavailable: %s", exc)
        return _error("storage_error", "database unavailable", 500)
    try:
        found = check_events(conn, pairs)
    finally:
        conn.rollback()
        conn.close()
    return jsonify({"events": found})


def _result_line(record: RawEventRecord, result: CommitResult) -> dict[str, Any]:
    return {
        "source_venue": record.source_venue_key,
        "source_event_id": record.source_event_id,
        "title": record.title,
        "outcome": result.outcome,
        "show_id": result.show_id,
        "warnings": result.warnings,
    }


@admin_bp.route("/discovery/import", methods=["POST"])
def import_discovered_events():
    body = _json_body()
    dry_run = bool(body.get("dry_run", False))
    try:
        records = parse_discovery_payload(body.get("events"))
    except DocumentParseError as exc:
        return _error("invalid_content", str(exc), 400)

    known_venues = current_app.config["KNOWN_VENUES"]
    try:
        conn = _connect(read_only=dry_run)
    except psycopg.Error as exc:
        log.error("discovery import: database unavailable: %s", exc)
        return _error("storage_error", "database unavailable", 500)
    try:
        if dry_run:
            plans = preview_batch(_context(conn), records)
            conn.rollback()
            counters = preview_counters(plans)
            results = [plan_to_payload(plan) for plan in plans]
        else:
            results = []
            counters = run_import(
                conn, records, known_venues, today=_today(),
                on_result=lambda rec, res: results.append(_result_line(rec, res)),
            )
    finally:
        conn.close()

    return jsonify({"dry_run": dry_run, "counters": counters.to_dict(), "results": results})
