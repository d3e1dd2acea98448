"""Shared time utilities used by task derivation and allocation."""

from __future__ import annotations

import re
from datetime import date

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
SHIFTS = ("AM", "PM")
DEFAULT_SHIFT_CUTOFF = 14 * 60
MINUTES_PER_DAY = 24 * 60


def parse_hhmm_to_minutes(value: str | None) -> int | None:
    """Parse HH:MM into minutes after midnight."""
    if not value or ":" not in str(value):
        return None
    try:
        hh, mm = str(value).split(":", 1)
        h = int(hh)
        m = int(mm)
    except (TypeError, ValueError):
        return None
    if h < 0 or h > 23 or m < 0 or m > 59:
        return None
    return h * 60 + m


def format_minutes(value: int | None) -> str | None:
    """Format minutes after midnight as HH:MM (wraps past midnight)."""
    if value is None:
        return None
    value = value % MINUTES_PER_DAY
    return f"{value // 60:02d}:{value % 60:02d}"


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open [start, end) overlap test on minute values."""
    return max(start_a, start_b) < min(end_a, end_b)


def span_minutes(start: int, end: int) -> int:
    """Length of [start, end) in minutes; an end before the start runs past midnight."""
    diff = end - start
    if diff < 0:
        diff += MINUTES_PER_DAY
    return diff


def time_overlap(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """Return True if two HH:MM time ranges overlap (supports overnight ranges)."""
    a0 = parse_hhmm_to_minutes(start_a)
    a1 = parse_hhmm_to_minutes(end_a)
    b0 = parse_hhmm_to_minutes(start_b)
    b1 = parse_hhmm_to_minutes(end_b)
    if None in (a0, a1, b0, b1):
        return False

    def intervals(start: int, end: int) -> list[tuple[int, int]]:
        if end > start:
            return [(start, end)]
        return [(start, MINUTES_PER_DAY), (0, end)]

    for x0, x1 in intervals(a0, a1):
        for y0, y1 in intervals(b0, b1):
            if intervals_overlap(x0, x1, y0, y1):
                return True
    return False


def parse_duration_minutes(value: str | int | float | None) -> int:
    """Extract every integer embedded in a free-form duration and return the largest.

    "15-20" -> 20, "approx 30 mins" -> 30. Returns 0 when nothing parses.
    """
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    numbers = [int(n) for n in re.findall(r"\d+", str(value))]
    return max(numbers) if numbers else 0


def infer_shift(start: str | None, cutoff: int = DEFAULT_SHIFT_CUTOFF) -> str | None:
    """Map a start time to AM/PM relative to the cutoff."""
    start_min = parse_hhmm_to_minutes(start)
    if start_min is None:
        return None
    return "AM" if start_min < cutoff else "PM"


def normalize_shift(shift: str) -> str:
    value = str(shift or "").strip().upper()
    if value not in SHIFTS:
        raise ValueError(f"Unknown shift: {shift!r}. Choose from {SHIFTS}")
    return value


def day_name(datum: str) -> str:
    return DAY_NAMES[date.fromisoformat(datum).weekday()]


def week_key(datum: str) -> str:
    d = date.fromisoformat(datum)
    monday = d.fromordinal(d.toordinal() - d.weekday())
    return monday.isoformat()
