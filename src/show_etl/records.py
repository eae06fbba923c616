"""show_etl.records

Staging types for incoming event data and the known-venue lookup table.

RawEventRecord is the single input shape for the planner and the commit
executor, whichever adapter produced it (discovery scraper JSON or a show
document).  Records are ephemeral: they are rebuilt from their payload on
every call and never persisted.

The known-venue table maps a scraper's venue slug to the venue's display
name, city, state and address:

    version: "1"
    venues:
      valley-bar:
        name: Valley Bar
        city: Phoenix
        state: AZ
        address: 130 N Central Ave
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from show_etl.shared import ConfigValidationError

DEFAULT_KNOWN_VENUES_PATH = Path("config/known_venues.yml")

SOURCE_MANUAL = "manual"
SOURCE_DISCOVERY = "discovery"
SOURCE_IMPORT = "import"
VALID_SOURCES = frozenset({SOURCE_MANUAL, SOURCE_DISCOVERY, SOURCE_IMPORT})

SET_TYPE_HEADLINER = "headliner"
SET_TYPE_SUPPORT = "support"

REQUIRED_VENUE_KEYS = frozenset({"name", "city", "state"})


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VenueReference:
    name: str | None
    city: str | None
    state: str | None
    address: str | None = None


@dataclass(frozen=True)
class ArtistReference:
    name: str | None
    set_type: str = SET_TYPE_SUPPORT

    @property
    def is_headliner(self) -> bool:
        return self.set_type == SET_TYPE_HEADLINER


def artists_from_names(names: list[str]) -> list[ArtistReference]:
    """First name is the headliner, the rest are support."""
    return [
        ArtistReference(name, SET_TYPE_HEADLINER if position == 0 else SET_TYPE_SUPPORT)
        for position, name in enumerate(names)
    ]


# ---------------------------------------------------------------------------
# RawEventRecord
# ---------------------------------------------------------------------------

@dataclass
class RawEventRecord:
    source: str
    title: str | None
    event_date: str | None
    venues: list[VenueReference] = field(default_factory=list)
    artists: list[ArtistReference] = field(default_factory=list)
    source_venue_key: str | None = None
    source_event_id: str | None = None
    city: str | None = None
    state: str | None = None
    show_time: str | None = None
    doors_time: str | None = None
    image_url: str | None = None
    ticket_url: str | None = None
    price: Any = None
    age_requirement: str | None = None
    description: str | None = None
    scraped_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def venue_name(self) -> str | None:
        return self.venues[0].name if self.venues else None

    @property
    def venue_city(self) -> str | None:
        return self.venues[0].city if self.venues else None

    @property
    def venue_state(self) -> str | None:
        return self.venues[0].state if self.venues else None

    @property
    def label(self) -> str:
        """Short identifier used in messages and log lines."""
        if self.source_venue_key or self.source_event_id:
            return f"{self.source_venue_key or '?'}/{self.source_event_id or '?'}"
        return self.title or "<untitled>"


# ---------------------------------------------------------------------------
# Known-venue lookup table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KnownVenue:
    slug: str
    name: str
    city: str
    state: str
    address: str | None = None

    def to_reference(self) -> VenueReference:
        return VenueReference(self.name, self.city, self.state, self.address)


def load_known_venues(yaml_path: Path) -> Mapping[str, KnownVenue]:
    """Load and validate the known-venue table; return a read-only mapping.

    Raises:
        ConfigValidationError: If the file does not match the schema.
        FileNotFoundError: If the YAML file does not exist.
    """
    try:
        data = yaml.safe_load(yaml_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"{yaml_path}: invalid YAML: {exc}") from exc
    return known_venues_from_dict(data)


def known_venues_from_dict(data: Any) -> Mapping[str, KnownVenue]:
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")
    venues = data.get("venues")
    if not isinstance(venues, dict):
        raise ConfigValidationError("'venues' must be a mapping of slug -> venue.")

    table: dict[str, KnownVenue] = {}
    for slug, entry in venues.items():
        if not isinstance(entry, dict):
            raise ConfigValidationError(f"venue '{slug}' must be a mapping.")
        missing = REQUIRED_VENUE_KEYS - {k for k, v in entry.items() if v}
        if missing:
            raise ConfigValidationError(
                f"venue '{slug}' missing required keys: {sorted(missing)}"
            )
        table[str(slug)] = KnownVenue(
            slug=str(slug),
            name=str(entry["name"]),
            city=str(entry["city"]),
            state=str(entry["state"]),
            address=str(entry["address"]) if entry.get("address") else None,
        )
    return MappingProxyType(table)
