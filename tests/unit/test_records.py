"""Unit tests for show_etl.records (known-venue table and references)."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from show_etl.records import (
    KnownVenue,
    RawEventRecord,
    VenueReference,
    known_venues_from_dict,
    load_known_venues,
)
from show_etl.shared import ConfigValidationError

PROJECT_ROOT = Path(__file__).parent.parent.parent

VALID_YAML = textwrap.dedent("""\
    version: "1"
    venues:
      valley-bar:
        name: Valley Bar
        city: Phoenix
        state: AZ
        address: 130 N Central Ave
      rebel-lounge:
        name: The Rebel Lounge
        city: Phoenix
        state: AZ
""")


class TestLoadKnownVenues:
    def test_valid_file(self, tmp_path):
        path = tmp_path / "venues.yml"
        path.write_text(VALID_YAML)
        table = load_known_venues(path)
        assert table["valley-bar"] == KnownVenue(
            "valley-bar", "Valley Bar", "Phoenix", "AZ", "130 N Central Ave"
        )
        assert table["rebel-lounge"].address is None

    def test_table_is_read_only(self, tmp_path):
        path = tmp_path / "venues.yml"
        path.write_text(VALID_YAML)
        table = load_known_venues(path)
        with pytest.raises(TypeError):
            table["new"] = table["valley-bar"]

    def test_shipped_config_loads(self):
        table = load_known_venues(PROJECT_ROOT / "config" / "known_venues.yml")
        assert table["valley-bar"].city == "Phoenix"
        assert "crescent-ballroom" in table

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "venues.yml"
        path.write_text("venues: [unclosed")
        with pytest.raises(ConfigValidationError, match="invalid YAML"):
            load_known_venues(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_known_venues(tmp_path / "nope.yml")


class TestKnownVenuesFromDict:
    def test_root_must_be_mapping(self):
        with pytest.raises(ConfigValidationError, match="root"):
            known_venues_from_dict(["valley-bar"])

    def test_venues_must_be_mapping(self):
        with pytest.raises(ConfigValidationError, match="'venues'"):
            known_venues_from_dict({"venues": ["valley-bar"]})

    def test_missing_required_key(self):
        with pytest.raises(ConfigValidationError, match="state"):
            known_venues_from_dict({"venues": {"x": {"name": "X", "city": "Mesa"}}})

    def test_blank_required_value(self):
        with pytest.raises(ConfigValidationError, match="city"):
            known_venues_from_dict({"venues": {"x": {"name": "X", "city": "", "state": "AZ"}}})


class TestReferences:
    def test_to_reference(self):
        known = KnownVenue("valley-bar", "Valley Bar", "Phoenix", "AZ")
        assert known.to_reference() == VenueReference("Valley Bar", "Phoenix", "AZ", None)

    def test_label_prefers_source_ids(self):
        record = RawEventRecord(
            source="discovery", title="Loomer", event_date=None,
            source_venue_key="valley-bar", source_event_id="6942",
        )
        assert record.label == "valley-bar/6942"

    def test_label_falls_back_to_title(self):
        record = RawEventRecord(source="import", title="Loomer", event_date=None)
        assert record.label == "Loomer"
