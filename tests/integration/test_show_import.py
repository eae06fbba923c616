"""Integration tests for planning and committing shows against real PostgreSQL."""

from __future__ import annotations

import csv
import threading
import time
from datetime import date, datetime
from zoneinfo import ZoneInfo

import psycopg
import pytest

from show_etl import import_commit
from show_etl.batch_runner import run_sources, summarize
from show_etl.catalog import PgCatalog
from show_etl.discovery_json import check_events, parse_discovery_payload
from show_etl.import_commit import commit_record, run_import
from show_etl.import_planner import plan_record
from show_etl.records import RawEventRecord, VenueReference, artists_from_names
from show_etl.resolution_entities import Existing, New, ResolverContext
from show_etl.review_queue import ShowNotFoundError
from show_etl.shared import RejectWriter
from show_etl.show_document import document_to_record, export_show_document, parse_show_document


PHOENIX = ZoneInfo("America/Phoenix")
TODAY = date(2026, 1, 10)


def _count(conn, sql, params=()):
    return conn.execute(sql, params).fetchone()[0]


def _scenario_a(**overrides) -> RawEventRecord:
    fields = dict(
        source="discovery",
        source_venue_key="valley-bar",
        source_event_id="6942",
        title="ANIMAL SHIN WITH DREAM 99 / LOOMER / BITTERHAZE",
        event_date="2026-01-20",
        venues=[VenueReference("Valley Bar", None, None)],
    )
    fields.update(overrides)
    return RawEventRecord(**fields)


def _document(**overrides) -> RawEventRecord:
    fields = dict(
        source="import",
        title="Loomer with Bitterhaze",
        event_date="2026-03-14",
        show_time="8:00 pm",
        city="Phoenix",
        state="AZ",
        price="$15",
        venues=[VenueReference("Valley Bar", "Phoenix", "AZ")],
        artists=artists_from_names(["Loomer", "Bitterhaze"]),
    )
    fields.update(overrides)
    return RawEventRecord(**fields)


def _commit(conn, record, known_venues):
    result = commit_record(conn, record, known_venues, TODAY)
    conn.commit()
    return result


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class TestScenarios:
    def test_a_verified_venue_auto_approves(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        venue_id = seed.venue("Valley Bar", address="130 N Central Ave")

        result = _commit(conn, _scenario_a(), known_venues)

        assert result.outcome == "created"
        assert result.status == "approved"
        assert result.artists_created == 3
        assert result.venues_created == 0
        assert [v["id"] for v in result.show.venues] == [venue_id]
        assert [a["name"] for a in result.show.artists] == [
            "ANIMAL SHIN WITH DREAM 99", "LOOMER", "BITTERHAZE",
        ]
        assert result.show.artists[0]["is_headliner"] is True
        assert result.show.source == "discovery"
        assert _count(conn, "SELECT count(*) FROM venues") == 1
        row = conn.execute(
            "SELECT scraped_at, source_venue, source_event_id FROM shows WHERE id = %s",
            (result.show_id,),
        ).fetchone()
        assert row[0] is not None
        assert row[1:] == ("valley-bar", "6942")

    def test_a_logs_initial_status(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        result = _commit(conn, _scenario_a(), known_venues)
        row = conn.execute(
            "SELECT from_status, to_status::text, action FROM show_status_log WHERE show_id = %s",
            (result.show_id,),
        ).fetchone()
        assert row == (None, "approved", "import:discovery")

    def test_b_second_submission_is_duplicate(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        first = _commit(conn, _scenario_a(), known_venues)
        second = _commit(conn, _scenario_a(), known_venues)

        assert second.outcome == "skipped_duplicate"
        assert second.plan.existing_show_id == first.show_id
        assert _count(conn, "SELECT count(*) FROM shows WHERE source_event_id = '6942'") == 1
        assert _count(conn, "SELECT count(*) FROM artists") == 3

    def test_c_rejected_show_same_local_day(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        venue_id = seed.venue("Crescent Ballroom")
        seed.show(
            "Somebody Else",
            datetime(2026, 2, 1, 20, 0, tzinfo=PHOENIX),
            venue_ids=[venue_id],
            status="rejected",
            source="discovery",
            source_venue="crescent-ballroom",
            source_event_id="500",
            rejection_reason="duplicate of X",
        )
        record = _scenario_a(
            source_venue_key="crescent-ballroom",
            source_event_id="501",
            title="Loomer",
            event_date="2026-02-01",
            show_time="7:00 pm",
            venues=[],
        )

        result = _commit(conn, record, known_venues)

        assert result.outcome == "skipped_rejected"
        assert any("duplicate of X" in w for w in result.warnings)
        assert _count(conn, "SELECT count(*) FROM shows") == 1

    def test_d_confirm_picks_up_venue_created_after_preview(self, db_conn, seed, known_venues):
        conn, dsn = db_conn
        record = _document(venues=[VenueReference("The Rebel Lounge", "Phoenix", "AZ")])

        with psycopg.connect(dsn) as preview_conn:
            preview_conn.read_only = True
            ctx = ResolverContext(PgCatalog(preview_conn), known_venues, TODAY)
            plan = plan_record(ctx, record)
            preview_conn.rollback()
        assert plan.venue_matches == [New("the rebel lounge")]

        venue_id = seed.venue("The Rebel Lounge")
        result = _commit(conn, record, known_venues)

        assert result.outcome == "created"
        assert result.plan.venue_matches == [Existing(venue_id)]
        assert result.venues_created == 0
        assert _count(
            conn, "SELECT count(*) FROM venues WHERE normalized_name = 'the rebel lounge'"
        ) == 1


# ---------------------------------------------------------------------------
# Status and provenance
# ---------------------------------------------------------------------------

class TestInitialStatus:
    def test_new_venue_is_unverified_and_pending(self, db_conn, known_venues):
        conn, _ = db_conn
        record = _document(
            venues=[VenueReference("The Rebel Lounge", "Phoenix", "AZ", "2303 E Indian School Rd")]
        )
        result = _commit(conn, record, known_venues)

        assert result.status == "pending"
        assert result.venues_created == 1
        venue = result.show.venues[0]
        assert venue["is_verified"] is False
        assert venue["address"] is None
        stored = conn.execute(
            "SELECT address, is_verified FROM venues WHERE id = %s", (venue["id"],)
        ).fetchone()
        assert stored == ("2303 E Indian School Rd", False)

    def test_document_import_provenance(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        result = _commit(conn, _document(), known_venues)
        row = conn.execute(
            "SELECT source::text, source_venue, source_event_id, scraped_at, price "
            "FROM shows WHERE id = %s",
            (result.show_id,),
        ).fetchone()
        assert row[:4] == ("import", None, None, None)
        assert str(row[4]) == "15.00"

    def test_headliner_conflict_held_for_review(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        venue_id = seed.venue("Valley Bar")
        loomer = seed.artist("Loomer")
        existing = seed.show(
            "Loomer (early show)",
            datetime(2026, 3, 14, 18, 0, tzinfo=PHOENIX),
            venue_ids=[venue_id],
            headliner_ids=[loomer],
        )

        result = _commit(conn, _document(), known_venues)

        assert result.outcome == "created"
        assert result.status == "pending"
        assert result.show.duplicate_of_show_id == existing
        assert result.artists_created == 1

    def test_show_slug_is_unique(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        first = _commit(conn, _document(), known_venues)
        second = _commit(conn, _document(), known_venues)
        assert first.show.slug == "loomer-with-bitterhaze-valley-bar-2026-03-14"
        assert second.show.slug == "loomer-with-bitterhaze-valley-bar-2026-03-14-2"


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

class TestFailureHandling:
    def test_blocked_record_writes_nothing(self, db_conn, known_venues):
        conn, _ = db_conn
        result = _commit(conn, _document(event_date=None), known_venues)
        assert result.outcome == "blocked"
        for table in ("shows", "venues", "artists", "show_status_log"):
            assert _count(conn, f"SELECT count(*) FROM {table}") == 0

    def test_failure_rolls_back_whole_record(self, db_conn, known_venues, monkeypatch):
        conn, _ = db_conn

        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(import_commit, "insert_show", boom)
        result = _commit(conn, _document(), known_venues)

        assert result.outcome == "errored"
        assert "disk on fire" in result.error
        assert _count(conn, "SELECT count(*) FROM venues") == 0
        assert _count(conn, "SELECT count(*) FROM artists") == 0

        monkeypatch.undo()
        assert _commit(conn, _document(), known_venues).outcome == "created"


# ---------------------------------------------------------------------------
# Concurrent runs
# ---------------------------------------------------------------------------

def _wait_for_lock_wait(dsn, timeout=10.0):
    """True once some backend in this database is waiting on a row lock."""
    deadline = time.monotonic() + timeout
    with psycopg.connect(dsn, autocommit=True) as watcher:
        while time.monotonic() < deadline:
            waiting = watcher.execute(
                "SELECT count(*) FROM pg_stat_activity "
                "WHERE datname = current_database() AND wait_event_type = 'Lock'"
            ).fetchone()[0]
            if waiting:
                return True
            time.sleep(0.05)
    return False


def _race(conn, dsn, first, second, known_venues):
    """Apply first on conn, start second on another connection, then commit conn.

    The second connection plans before the first commits, so it blocks on the
    first one's uncommitted rows and only then sees them.
    """
    winner = commit_record(conn, first, known_venues, TODAY)
    outcome = {}

    def other_run():
        with psycopg.connect(dsn) as other:
            outcome["result"] = commit_record(other, second, known_venues, TODAY)
            other.commit()

    worker = threading.Thread(target=other_run)
    worker.start()
    blocked = _wait_for_lock_wait(dsn)
    conn.commit()
    worker.join(timeout=30)
    return winner, outcome.get("result"), blocked


class TestConcurrentRuns:
    def test_same_record_loser_skips_as_duplicate(self, db_conn, seed, known_venues):
        conn, dsn = db_conn
        seed.venue("Valley Bar")

        winner, loser, blocked = _race(conn, dsn, _scenario_a(), _scenario_a(), known_venues)

        assert blocked
        assert winner.outcome == "created"
        assert loser.outcome == "skipped_duplicate"
        assert loser.show_id == winner.show_id
        assert any("concurrent run" in w for w in loser.warnings)
        assert _count(conn, "SELECT count(*) FROM shows") == 1
        assert _count(conn, "SELECT count(*) FROM artists") == 3

    def test_same_record_with_known_artists(self, db_conn, seed, known_venues):
        conn, dsn = db_conn
        seed.venue("Valley Bar")
        for name in ("ANIMAL SHIN WITH DREAM 99", "LOOMER", "BITTERHAZE"):
            seed.artist(name)

        winner, loser, blocked = _race(conn, dsn, _scenario_a(), _scenario_a(), known_venues)

        assert blocked
        assert winner.outcome == "created"
        assert loser.outcome == "skipped_duplicate"
        assert _count(conn, "SELECT count(*) FROM shows") == 1

    def test_shared_new_artist_is_reused(self, db_conn, seed, known_venues):
        conn, dsn = db_conn
        seed.venue("Valley Bar")
        seed.venue("Crescent Ballroom")
        valley = _scenario_a(title="LOOMER")
        crescent = _scenario_a(
            title="LOOMER",
            source_venue_key="crescent-ballroom",
            source_event_id="77",
            venues=[VenueReference("Crescent Ballroom", None, None)],
        )

        winner, other, blocked = _race(conn, dsn, valley, crescent, known_venues)

        assert blocked
        assert winner.outcome == "created"
        assert other.outcome == "created"
        assert other.artists_created == 0
        assert _count(conn, "SELECT count(*) FROM artists") == 1
        assert _count(conn, "SELECT count(*) FROM shows") == 2
        assert _count(conn, "SELECT count(*) FROM show_artists") == 2

    def test_parallel_sources_sharing_new_artist(self, db_conn, seed, known_venues):
        conn, dsn = db_conn
        seed.venue("Valley Bar")
        seed.venue("Crescent Ballroom")
        sources = {
            "valley-bar": [_scenario_a(title="LOOMER")],
            "crescent-ballroom": [_scenario_a(
                title="LOOMER",
                source_venue_key="crescent-ballroom",
                source_event_id="77",
                venues=[VenueReference("Crescent Ballroom", None, None)],
            )],
        }

        total = summarize(run_sources(dsn, sources, known_venues, max_workers=2, today=TODAY))

        assert (total.created, total.errored, total.sources_failed) == (2, 0, 0)
        assert _count(conn, "SELECT count(*) FROM artists") == 1


# ---------------------------------------------------------------------------
# run_import
# ---------------------------------------------------------------------------

class TestRunImport:
    def test_rerun_is_idempotent(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        records = [_scenario_a(), _scenario_a(source_event_id="6943", event_date="2026-01-21")]

        first = run_import(conn, records, known_venues, today=TODAY)
        second = run_import(conn, records, known_venues, today=TODAY)

        assert (first.created, first.skipped_duplicate) == (2, 0)
        assert (second.created, second.skipped_duplicate) == (0, 2)
        assert first.artists_created == 3
        assert _count(conn, "SELECT count(*) FROM shows") == 2

    def test_discovery_without_source_ids_never_imports(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        records = parse_discovery_payload([
            {"title": "LOOMER", "date": "2026-01-22", "venue": "Valley Bar",
             "city": "Phoenix", "state": "AZ"},
            {"id": "6950", "title": "LOOMER", "date": "2026-01-23", "venue": "Valley Bar",
             "city": "Phoenix", "state": "AZ"},
        ])

        first = run_import(conn, records, known_venues, today=TODAY)
        second = run_import(conn, records, known_venues, today=TODAY)

        assert (first.created, first.blocked) == (0, 2)
        assert (second.created, second.blocked) == (0, 2)
        assert _count(conn, "SELECT count(*) FROM shows") == 0

    def test_blocked_records_go_to_rejects(self, db_conn, seed, known_venues, tmp_path):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        rejects_path = tmp_path / "rejects.csv"
        rejects = RejectWriter(rejects_path)
        records = [_scenario_a(), _scenario_a(source_event_id="7000", event_date="soon")]

        ctrs = run_import(conn, records, known_venues, rejects=rejects, today=TODAY)
        rejects.close()

        assert (ctrs.records_read, ctrs.created, ctrs.blocked) == (2, 1, 1)
        with open(rejects_path, newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert len(rows) == 1
        assert rows[0]["source_event_id"] == "7000"
        assert "event date" in rows[0]["_reject_reason"]

    def test_cancel_stops_scheduling(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        cancel = threading.Event()
        records = [_scenario_a(source_event_id=str(i)) for i in range(3)]

        ctrs = run_import(
            conn, records, known_venues, today=TODAY, cancel=cancel,
            on_result=lambda rec, res: cancel.set(),
        )

        assert ctrs.created == 1
        assert ctrs.records_not_scheduled == 2
        assert _count(conn, "SELECT count(*) FROM shows") == 1

    def test_flagged_for_review_counted(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        venue_id = seed.venue("Valley Bar")
        loomer = seed.artist("Loomer")
        seed.show(
            "Loomer", datetime(2026, 3, 14, 21, 0, tzinfo=PHOENIX),
            venue_ids=[venue_id], headliner_ids=[loomer],
        )
        ctrs = run_import(conn, [_document()], known_venues, today=TODAY)
        assert ctrs.created == 1
        assert ctrs.flagged_for_review == 1


# ---------------------------------------------------------------------------
# Discovery check and export
# ---------------------------------------------------------------------------

class TestCheckEvents:
    def test_reports_only_existing_pairs(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar")
        created = _commit(conn, _scenario_a(), known_venues)

        found = check_events(conn, [("valley-bar", "6942"), ("valley-bar", "1"), (None, "6942")])

        assert found == {
            "valley-bar:6942": {"exists": True, "show_id": created.show_id, "status": "approved"},
        }

    def test_empty(self, db_conn):
        conn, _ = db_conn
        assert check_events(conn, []) == {}


class TestExport:
    def test_round_trip(self, db_conn, seed, known_venues):
        conn, _ = db_conn
        seed.venue("Valley Bar", address="130 N Central Ave")
        created = _commit(conn, _document(description="Loud night."), known_venues)

        text, filename = export_show_document(conn, created.show_id)
        record = document_to_record(parse_show_document(text))

        assert filename == "show-2026-03-14-loomer-with-bitterhaze.md"
        assert record.title == "Loomer with Bitterhaze"
        assert [(a.name, a.set_type) for a in record.artists] == [
            ("Loomer", "headliner"), ("Bitterhaze", "support"),
        ]
        assert record.venues == [VenueReference("Valley Bar", "Phoenix", "AZ", "130 N Central Ave")]
        assert record.description == "Loud night."
        assert record.event_date == "2026-03-15T03:00:00Z"

    def test_missing_show(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(ShowNotFoundError):
            export_show_document(conn, 424242)
