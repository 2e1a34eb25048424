"""
Recurrence calculator.

Turns a schedule expression and a reference instant into the next fire
instant. Supported forms (keywords are case-insensitive):

    every 5m                          pure interval (s, m, h, d; 1h30m and 0.5s accepted)
    at 08:30 [TZ]                     every day at a clock time
    every day at 08:30 [TZ]
    every weekday at 08:30 [TZ]       Monday to Friday only
    every 6h starting at 00:00 [TZ]   interval anchored on a daily clock time

TZ is an IANA zone name such as ``Europe/Paris``. Without it the local zone
of the host is used. Naive reference instants are read as local time and the
result is returned in the same form as the reference instant.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crono.domain.job import Job
from crono.errors import ScheduleError

TICK = timedelta(seconds=1)

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_DURATION_RE = re.compile(r"(?:(?:\d+(?:\.\d*)?|\.\d+)[smhd])+")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)([smhd])")
_CLOCK_RE = re.compile(r"(\d+)(?::(\d+))?")

_INTERVAL_FORM = re.compile(r"every\s+(?P<interval>\S+)", re.IGNORECASE)
_AT_FORM = re.compile(
    r"(?:every\s+(?P<days>day|weekday)\s+)?at\s+(?P<clock>\S+)(?:\s+(?P<tz>\S+))?",
    re.IGNORECASE,
)
_ANCHORED_FORM = re.compile(
    r"every\s+(?P<interval>\S+)\s+starting\s+at\s+(?P<clock>\S+)(?:\s+(?P<tz>\S+))?",
    re.IGNORECASE,
)


def parse_duration(text: str) -> timedelta:
    """
    Parse a short duration such as ``30s``, ``5m``, ``1h30m`` or ``2d``.

    Raises:
        ScheduleError: If the text is not a duration.
    """
    s = text.strip().lower()
    if not _DURATION_RE.fullmatch(s):
        raise ScheduleError(f"invalid duration: {text!r} (expected e.g. 30s, 5m, 1h30m, 2d)")
    seconds = sum(float(n) * _UNIT_SECONDS[unit] for n, unit in _DURATION_PART_RE.findall(s))
    try:
        return timedelta(seconds=seconds)
    except OverflowError as e:
        raise ScheduleError(f"duration out of range: {text!r}") from e


def parse_clock(text: str) -> Tuple[int, int]:
    """
    Parse ``HH:MM`` into (hour, minute). Out-of-range values are clamped.
    """
    m = _CLOCK_RE.fullmatch(text.strip())
    if not m:
        raise ScheduleError(f"invalid time of day: {text!r} (expected HH:MM)")
    hour = min(max(int(m.group(1)), 0), 23)
    minute = min(max(int(m.group(2) or 0), 0), 59)
    return hour, minute


def _load_zone(name: Optional[str]) -> Optional[ZoneInfo]:
    if name is None:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise ScheduleError(f"unknown time zone: {name}") from e


def _localize(day: date, hour: int, minute: int, zone: Optional[ZoneInfo]) -> datetime:
    wall = datetime.combine(day, time(hour, minute))
    if zone is None:
        # naive wall time interpreted in the host's local zone
        return wall.astimezone()
    return wall.replace(tzinfo=zone)


def _classify(text: str) -> Tuple[Optional[str], Optional[re.Match]]:
    m = _INTERVAL_FORM.fullmatch(text)
    if m and m.group("interval")[-1].lower() in _UNIT_SECONDS:
        return "interval", m
    m = _AT_FORM.fullmatch(text)
    if m:
        days = (m.group("days") or "day").lower()
        return days, m
    m = _ANCHORED_FORM.fullmatch(text)
    if m:
        return "anchored", m
    return None, None


def _positive_interval(text: str) -> timedelta:
    interval = parse_duration(text)
    if interval <= timedelta(0):
        raise ScheduleError(f"interval must be positive: {text!r}")
    return interval


def _next_at(from_utc: datetime, clock: str, zone: Optional[ZoneInfo], weekdays_only: bool) -> datetime:
    hour, minute = parse_clock(clock)
    day = from_utc.astimezone(zone).date()
    candidate = _localize(day, hour, minute, zone)
    while candidate.astimezone(timezone.utc) <= from_utc or (weekdays_only and day.weekday() >= 5):
        day += timedelta(days=1)
        candidate = _localize(day, hour, minute, zone)
    return candidate.astimezone(timezone.utc)


def _next_anchored(from_utc: datetime, interval: timedelta, clock: str, zone: Optional[ZoneInfo]) -> datetime:
    hour, minute = parse_clock(clock)
    day = from_utc.astimezone(zone).date()
    anchor = _localize(day, hour, minute, zone).astimezone(timezone.utc)
    if anchor > from_utc:
        return anchor
    steps = (from_utc - anchor) // interval + 1
    return anchor + steps * interval


def next_run(expr: str, from_: datetime) -> datetime:
    """
    Compute the first occurrence of ``expr`` strictly after ``from_``.

    Args:
        expr (str): The schedule expression.
        from_ (datetime): The reference instant, naive (local time) or aware.

    Returns:
        datetime: The next fire instant, expressed like ``from_``.

    Raises:
        ScheduleError: If the expression is malformed, unsupported, or names an unknown time zone.
    """
    text = " ".join(expr.split())
    kind, m = _classify(text)
    if kind is None:
        raise ScheduleError(f"unsupported schedule expression: {expr!r}")

    naive = from_.tzinfo is None or from_.utcoffset() is None
    try:
        from_utc = from_.astimezone(timezone.utc)

        if kind == "interval":
            result = from_utc + _positive_interval(m.group("interval"))
        elif kind == "anchored":
            interval = _positive_interval(m.group("interval"))
            result = _next_anchored(from_utc, interval, m.group("clock"), _load_zone(m.group("tz")))
        else:
            result = _next_at(from_utc, m.group("clock"), _load_zone(m.group("tz")), kind == "weekday")

        if naive:
            return result.astimezone().replace(tzinfo=None)
        return result.astimezone(from_.tzinfo)
    except OverflowError as e:
        raise ScheduleError(f"next occurrence out of range: {expr!r}") from e


def upcoming(expr: str, start: datetime, count: int, tick: timedelta = TICK) -> List[datetime]:
    """
    Return the next ``count`` occurrences of ``expr`` after ``start``.

    Each occurrence is computed from the previous one plus ``tick``.
    """
    occurrences: List[datetime] = []
    current = start
    for _ in range(count):
        nxt = next_run(expr, current)
        occurrences.append(nxt)
        try:
            current = nxt + tick
        except OverflowError as e:
            raise ScheduleError(f"next occurrence out of range: {expr!r}") from e
    return occurrences


def describe(expr: str) -> str:
    """Return a one-line human phrasing of a schedule expression."""
    text = " ".join(expr.split())
    kind, m = _classify(text)
    if kind == "interval":
        return f"every {m.group('interval').lower()}"
    if kind in ("day", "weekday"):
        when = m.group("clock")
        if m.group("tz"):
            when += f" {m.group('tz')}"
        return f"weekdays at {when}" if kind == "weekday" else f"every day at {when}"
    if kind == "anchored":
        phrase = f"periodic every {m.group('interval').lower()} starting at {m.group('clock')}"
        if m.group("tz"):
            phrase += f" {m.group('tz')}"
        return phrase
    return f"schedule: {expr}"


def explain(job: Job) -> str:
    """Return a one-line human explanation of a job's schedule."""
    return describe(job.schedule)
