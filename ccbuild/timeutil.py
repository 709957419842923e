"""Duration and timestamp helpers.

Parsing follows the same shape for durations and instants: an ordered list of
small parser functions, each returning the parsed value or None; the first hit
wins.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from .errors import ConfigurationError

_SIMPLE_DURATION = re.compile(r"^(\d+)([smhdw])$", re.IGNORECASE)
_ISO_DURATION = re.compile(
    r"^([-+]?)P(?:([-+]?\d+)D)?(?:T(?=[-+]?\d)(?:([-+]?\d+)H)?(?:([-+]?\d+)M)?(?:([-+]?\d+)(?:[.,](\d{1,9}))?S)?)?$",
    re.IGNORECASE,
)
# date-time with a "T" separator; the zone suffix (if any) is validated by fromisoformat
_DATE_TIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")
_FRACTION = re.compile(r"(\.\d{6})\d+")

_SIMPLE_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(days=7),
}

_RELATIVE_UNITS: List[Tuple[timedelta, str]] = [
    (timedelta(days=365), "year"),
    (timedelta(days=30), "month"),
    (timedelta(days=7), "week"),
    (timedelta(days=1), "day"),
    (timedelta(hours=1), "hour"),
    (timedelta(minutes=1), "minute"),
    (timedelta(seconds=1), "second"),
]


def _parse_simple_duration(text: str) -> Optional[timedelta]:
    m = _SIMPLE_DURATION.match(text)
    if not m:
        return None
    return int(m.group(1)) * _SIMPLE_UNITS[m.group(2).lower()]


def _parse_iso_duration(text: str) -> Optional[timedelta]:
    m = _ISO_DURATION.match(text)
    if not m:
        return None
    sign, days, hours, minutes, seconds, fraction = m.groups()
    if days is None and hours is None and minutes is None and seconds is None:
        return None
    micros = int(fraction.ljust(6, "0")[:6]) if fraction else 0
    # a signed seconds component carries its sign into the fraction ("PT-0.5S")
    if seconds is not None and seconds.startswith("-"):
        micros = -micros
    try:
        result = timedelta(
            days=int(days or 0),
            hours=int(hours or 0),
            minutes=int(minutes or 0),
            seconds=int(seconds or 0),
            microseconds=micros,
        )
    except OverflowError:
        return None
    return -result if sign == "-" else result


_DURATION_PARSERS: List[Callable[[str], Optional[timedelta]]] = [
    _parse_simple_duration,
    _parse_iso_duration,
]


def parse_duration(value: Optional[str]) -> timedelta:
    """Parse ``30d`` / ``12h`` / ``2w`` style values or ISO-8601 (``PT2H30M``).

    Raises ConfigurationError for blank or unrecognised input.
    """
    if value is None or not value.strip():
        raise ConfigurationError("Duration value must not be blank")
    text = value.strip()
    for parser in _DURATION_PARSERS:
        parsed = parser(text)
        if parsed is not None:
            return parsed
    raise ConfigurationError(f"Unsupported duration format: {value}")


def _from_iso(text: str) -> Optional[datetime]:
    if not _DATE_TIME.match(text):
        return None
    try:
        return datetime.fromisoformat(_FRACTION.sub(r"\1", text))
    except ValueError:
        return None


def _parse_utc_instant(text: str) -> Optional[datetime]:
    if not text.endswith(("Z", "z")):
        return None
    parsed = _from_iso(text[:-1])
    if parsed is None or parsed.tzinfo is not None:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def _parse_offset_date_time(text: str) -> Optional[datetime]:
    parsed = _from_iso(text)
    if parsed is None or parsed.tzinfo is None:
        return None
    return _to_utc(parsed)


def _parse_local_date_time(text: str) -> Optional[datetime]:
    parsed = _from_iso(text)
    if parsed is None or parsed.tzinfo is not None:
        return None
    # naive values are taken as system local time
    return _to_utc(parsed)


def _to_utc(parsed: datetime) -> Optional[datetime]:
    # shifting 0001-01-01 / 9999-12-31 across zones leaves datetime's year range
    try:
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError, OSError):
        return None


_INSTANT_PARSERS: List[Callable[[str], Optional[datetime]]] = [
    _parse_utc_instant,
    _parse_offset_date_time,
    _parse_local_date_time,
]


def parse_instant(value: Optional[str]) -> Optional[datetime]:
    """Return an aware UTC datetime, or None when the value can't be parsed."""
    if value is None or not value.strip():
        return None
    text = value.strip()
    for parser in _INSTANT_PARSERS:
        parsed = parser(text)
        if parsed is not None:
            return parsed
    return None


def format_instant(instant: Optional[datetime]) -> str:
    if instant is None:
        return "n/a"
    return instant.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def pluralize(word: str, count: int) -> str:
    return word if count == 1 else word + "s"


def format_relative(instant: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Render ``instant`` as a coarse age such as ``3 months ago``."""
    if instant is None:
        return "unknown"
    elapsed = (now or datetime.now(timezone.utc)) - instant
    if elapsed <= timedelta(0):
        return "just now"
    for unit, name in _RELATIVE_UNITS:
        count = elapsed // unit
        if count > 0:
            return f"{count} {pluralize(name, count)} ago"
    return "just now"


def format_duration(duration: timedelta) -> str:
    """ISO-8601 rendering in hours/minutes/seconds, e.g. ``PT720H``."""
    total = duration.total_seconds()
    if total == 0:
        return "PT0S"
    sign = "-" if total < 0 else ""
    remaining = abs(duration)
    hours, rest = divmod(remaining, timedelta(hours=1))
    minutes, rest = divmod(rest, timedelta(minutes=1))
    seconds = rest.total_seconds()
    out = "PT"
    if hours:
        out += f"{sign}{hours}H"
    if minutes:
        out += f"{sign}{minutes}M"
    if seconds:
        secs = f"{seconds:.6f}".rstrip("0").rstrip(".")
        out += f"{sign}{secs}S"
    return out
