"""Normalization functions for show import.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Phoenix"

STATE_TIMEZONES = {
    "AZ": "America/Phoenix",
    "CA": "America/Los_Angeles",
    "NV": "America/Los_Angeles",
    "OR": "America/Los_Angeles",
    "WA": "America/Los_Angeles",
    "CO": "America/Denver",
    "NM": "America/Denver",
    "UT": "America/Denver",
    "TX": "America/Chicago",
    "IL": "America/Chicago",
    "NY": "America/New_York",
}

_SHOW_TIME_RE = re.compile(
    r"^(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<period>[ap])\.?\s*m\.?$"
)
_SHOW_TIME_24H_RE = re.compile(r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})$")
_WITH_RE = re.compile(r"\s+with\s+", re.IGNORECASE)
_TITLE_SEPARATORS = (" / ", " | ", " + ")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_name  (venue / artist matching key)
# ---------------------------------------------------------------------------

def normalize_name(value: str | None) -> str | None:
    """Case-fold, remove punctuation except spaces, collapse spaces.

    This is the exact-match key stored in venues.normalized_name and
    artists.normalized_name, and the key the resolver compares against.
    """
    v = trim(value)
    if v is None:
        return None
    # Decompose unicode (e.g. accented chars) then drop combining marks
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.casefold()
    v = re.sub(r"[^\w\s]", "", v)
    v = re.sub(r"\s+", " ", v).strip()
    return v if v else None


def normalize_state(value: str | None) -> str | None:
    """Upper-case two-letter style state code; None when blank."""
    v = normalize_space(value)
    return v.upper() if v else None


# ---------------------------------------------------------------------------
# Rule 4: slug_name  (URL slugs for shows / venues / artists)
# ---------------------------------------------------------------------------

def slug_name(value: str | None) -> str | None:
    """Lowercase alnum with '-' separators."""
    v = trim(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.lower()
    v = re.sub(r"[^a-z0-9]+", "-", v)
    v = v.strip("-")
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 5: price
# ---------------------------------------------------------------------------

def parse_price(value: str | float | int | None) -> Decimal | None:
    """Parse '$15', '15.00' or a number into a Decimal, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    v = trim(value)
    if v is None:
        return None
    v = v.replace("$", "").replace(",", "")
    try:
        return Decimal(v)
    except InvalidOperation:
        return None


# ---------------------------------------------------------------------------
# Rule 6: event dates
# ---------------------------------------------------------------------------

def timezone_for_state(state: str | None) -> ZoneInfo:
    """IANA zone for a US state abbreviation; Phoenix when unknown."""
    key = normalize_state(state) or ""
    return ZoneInfo(STATE_TIMEZONES.get(key, DEFAULT_TIMEZONE))


def parse_show_time(value: str | None) -> time | None:
    """Parse '7:00 pm', '7pm', '7:30 P.M.' or '19:30'; None when unparseable."""
    v = normalize_space(value)
    if v is None:
        return None
    v = v.lower()
    m = _SHOW_TIME_RE.match(v)
    if m:
        hour = int(m.group("hour"))
        minute = int(m.group("minute") or 0)
        if not 1 <= hour <= 12 or minute > 59:
            return None
        if m.group("period") == "p" and hour != 12:
            hour += 12
        elif m.group("period") == "a" and hour == 12:
            hour = 0
        return time(hour, minute)
    m = _SHOW_TIME_24H_RE.match(v)
    if m:
        hour, minute = int(m.group("hour")), int(m.group("minute"))
        if hour > 23 or minute > 59:
            return None
        return time(hour, minute)
    return None


def parse_event_date(
    value: str | None,
    show_time: str | None = None,
    state: str | None = None,
) -> datetime | None:
    """Return a UTC datetime for an event, or None when unparseable.

    Accepts 'YYYY-MM-DD', naive ISO datetimes and offset-bearing ISO/RFC3339
    strings (trailing 'Z' included).  Date-only values and naive datetimes are
    wall-clock times in the venue state's timezone.  A parseable show_time
    replaces the time of day for date-only values; date-only values without a
    show time land on local midnight.
    """
    v = trim(value)
    if v is None:
        return None
    tz = timezone_for_state(state)

    if len(v) == 10:
        try:
            day = date.fromisoformat(v)
        except ValueError:
            return None
        at = parse_show_time(show_time) or time(0, 0)
        return datetime.combine(day, at, tzinfo=tz).astimezone(timezone.utc)

    iso = v[:-1] + "+00:00" if v.endswith(("Z", "z")) else v
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(timezone.utc)


def local_event_date(event_date: datetime, state: str | None) -> date:
    """Calendar date of an event in its venue's timezone."""
    return event_date.astimezone(timezone_for_state(state)).date()


def parse_iso_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC3339 scrape timestamp; None on failure."""
    v = trim(value)
    if v is None:
        return None
    if v.endswith(("Z", "z")):
        v = v[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(v)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Helper: parse_artists_from_title
# ---------------------------------------------------------------------------

def _split_and_trim(value: str, sep: str) -> list[str]:
    return [p for p in (normalize_space(part) for part in value.split(sep)) if p]


def parse_artists_from_title(title: str | None) -> list[str]:
    """Return ordered artist names parsed from a calendar event title.

    Separator precedence: ',' then ' / ', ' | ', ' + ', then a
    case-insensitive ' with ', then ' & ' only when both sides are longer
    than ten characters (keeps names like 'Tom & Jerry' whole).  A title
    with no separator is a single artist.  The first name is the headliner.
    """
    v = normalize_space(title)
    if not v:
        return []

    if "," in v:
        return _split_and_trim(v, ",")

    for sep in _TITLE_SEPARATORS:
        if sep in v:
            return _split_and_trim(v, sep)

    parts = _WITH_RE.split(v, maxsplit=1)
    if len(parts) == 2 and parts[0].strip():
        return [parts[0].strip()] + _split_and_trim(parts[1], ",")

    if " & " in v:
        amp = v.split(" & ")
        if len(amp) == 2 and len(amp[0]) > 10 and len(amp[1]) > 10:
            return _split_and_trim(v, " & ")

    return [v]
