"""show_etl.show_document

Source adapter for show documents (--mode document_import and the admin
import endpoints), plus the matching exporter.

A show document is markdown with YAML frontmatter:

    ---
    version: "1.0"
    show:
      title: Loomer with Bitterhaze
      event_date: "2026-03-14"
      show_time: 8:00 pm
      city: Phoenix
      state: AZ
      price: 15
      age_requirement: 21+
    venues:
      - name: Valley Bar
        city: Phoenix
        state: AZ
    artists:
      - name: Loomer
        position: 0
        set_type: headliner
      - name: Bitterhaze
        position: 1
        set_type: support
    ---

    ## Description

    Free text up to the next '##' heading.

Over HTTP the document arrives base64-encoded.  Documents are hand-authored
or extracted, so they carry no source ids and import with source='import'.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import psycopg
import yaml

from show_etl.catalog import load_show
from show_etl.normalize import local_event_date, trim
from show_etl.records import (
    SET_TYPE_HEADLINER,
    SET_TYPE_SUPPORT,
    SOURCE_IMPORT,
    ArtistReference,
    RawEventRecord,
    VenueReference,
)
from show_etl.review_queue import ShowNotFoundError
from show_etl.shared import DocumentParseError

DOCUMENT_VERSION = "1.0"

_DESCRIPTION_HEADING = "## Description"


@dataclass
class ShowDocument:
    frontmatter: dict[str, Any]
    description: str | None = None
    show: dict[str, Any] = field(default_factory=dict)
    venues: list[dict[str, Any]] = field(default_factory=list)
    artists: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Decoding and parsing
# ---------------------------------------------------------------------------

def decode_content(content: str | bytes | None) -> str:
    """Decode base64 document content to text.

    Raises:
        DocumentParseError: If content is empty, not base64 or not UTF-8.
    """
    if not content:
        raise DocumentParseError("content is required")
    try:
        raw = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DocumentParseError(f"content is not valid base64: {exc}") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DocumentParseError("content is not UTF-8 text") from exc


def _extract_description(body: str) -> str | None:
    lines: list[str] = []
    inside = False
    for line in body.splitlines():
        if line.startswith(_DESCRIPTION_HEADING):
            inside = True
            continue
        if inside:
            if line.startswith("##"):
                break
            lines.append(line)
    return trim("\n".join(lines))


def parse_show_document(text: str) -> ShowDocument:
    if not text.startswith("---"):
        raise DocumentParseError("invalid document: missing frontmatter delimiter")
    parts = text[3:].split("\n---", 1)
    if len(parts) < 2:
        raise DocumentParseError("invalid document: missing closing frontmatter delimiter")

    try:
        frontmatter = yaml.safe_load(parts[0])
    except yaml.YAMLError as exc:
        raise DocumentParseError(f"failed to parse frontmatter: {exc}") from exc
    if not isinstance(frontmatter, dict):
        raise DocumentParseError("frontmatter must be a mapping")

    show = frontmatter.get("show")
    if not isinstance(show, dict):
        raise DocumentParseError("frontmatter 'show' must be a mapping")
    venues = frontmatter.get("venues") or []
    artists = frontmatter.get("artists") or []
    if not isinstance(venues, list) or not all(isinstance(v, dict) for v in venues):
        raise DocumentParseError("frontmatter 'venues' must be a list of mappings")
    if not isinstance(artists, list) or not all(isinstance(a, dict) for a in artists):
        raise DocumentParseError("frontmatter 'artists' must be a list of mappings")

    body = parts[1].lstrip("-")
    return ShowDocument(
        frontmatter=frontmatter,
        description=_extract_description(body),
        show=show,
        venues=venues,
        artists=artists,
    )


# ---------------------------------------------------------------------------
# Document -> RawEventRecord
# ---------------------------------------------------------------------------

def _scalar_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return trim(str(value))


def _artist_position(item: tuple[int, dict[str, Any]]) -> tuple[int, int]:
    idx, artist = item
    position = artist.get("position")
    return (position if isinstance(position, int) else idx, idx)


def document_to_record(doc: ShowDocument) -> RawEventRecord:
    show = doc.show
    venues = [
        VenueReference(
            _scalar_text(v.get("name")),
            _scalar_text(v.get("city")),
            _scalar_text(v.get("state")),
            _scalar_text(v.get("address")),
        )
        for v in doc.venues
    ]

    artists: list[ArtistReference] = []
    for rank, (_, artist) in enumerate(sorted(enumerate(doc.artists), key=_artist_position)):
        set_type = artist.get("set_type")
        if set_type not in (SET_TYPE_HEADLINER, SET_TYPE_SUPPORT):
            set_type = SET_TYPE_HEADLINER if rank == 0 else SET_TYPE_SUPPORT
        artists.append(ArtistReference(_scalar_text(artist.get("name")), set_type))

    return RawEventRecord(
        source=SOURCE_IMPORT,
        title=_scalar_text(show.get("title")),
        event_date=_scalar_text(show.get("event_date")),
        venues=venues,
        artists=artists,
        city=_scalar_text(show.get("city")),
        state=_scalar_text(show.get("state")),
        show_time=_scalar_text(show.get("show_time")),
        doors_time=_scalar_text(show.get("doors_time")),
        image_url=_scalar_text(show.get("image_url")),
        ticket_url=_scalar_text(show.get("ticket_url")),
        price=show.get("price"),
        age_requirement=_scalar_text(show.get("age_requirement")),
        description=doc.description,
        raw=doc.frontmatter,
    )


def record_from_content(content: str | bytes | None) -> RawEventRecord:
    """Base64 document content -> RawEventRecord (raises DocumentParseError)."""
    return document_to_record(parse_show_document(decode_content(content)))


def load_document_file(path: Path) -> RawEventRecord:
    text = Path(path).read_text(encoding="utf-8")
    try:
        return document_to_record(parse_show_document(text))
    except DocumentParseError as exc:
        raise DocumentParseError(f"{path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_filename(title: str, day: date) -> str:
    slug = re.sub(r"[^a-z0-9-]", "", title.lower().replace(" ", "-"))
    return f"show-{day.isoformat()}-{slug}.md"


def export_show_document(conn: psycopg.Connection, show_id: int) -> tuple[str, str]:
    """Render a stored show as a document; returns (text, suggested filename).

    Raises:
        ShowNotFoundError: If no show has this id.
    """
    show = load_show(conn, show_id)
    if show is None:
        raise ShowNotFoundError(f"show {show_id} not found")

    show_data: dict[str, Any] = {
        "title": show.title,
        "event_date": show.event_date.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "status": show.status,
    }
    if show.city:
        show_data["city"] = show.city
    if show.state:
        show_data["state"] = show.state
    if show.price is not None:
        show_data["price"] = float(show.price)
    if show.age_requirement:
        show_data["age_requirement"] = show.age_requirement

    venues = []
    for v in show.venues:
        venue = {"name": v["name"], "city": v["city"], "state": v["state"]}
        if v["address"]:
            venue["address"] = v["address"]
        venues.append(venue)

    frontmatter = {
        "version": DOCUMENT_VERSION,
        "exported_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
        "show": show_data,
        "venues": venues,
        "artists": [
            {"name": a["name"], "position": a["position"], "set_type": a["set_type"]}
            for a in show.artists
        ],
    }

    lines = ["---", yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True).rstrip(), "---", ""]
    if show.description:
        lines += [_DESCRIPTION_HEADING, "", show.description]
    return "\n".join(lines) + "\n", export_filename(
        show.title, local_event_date(show.event_date, show.state)
    )
