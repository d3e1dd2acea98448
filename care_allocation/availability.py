"""Resolve which staff can work a shift from overrides and static flags."""

from __future__ import annotations

from typing import Any

UNAVAILABLE = "Unavailable"


def _override_key(staff_id: Any, datum: str, shift: str) -> tuple[str, str, str]:
    return str(staff_id), str(datum)[:10], str(shift).upper()


def index_overrides(overrides: list[dict[str, Any]]) -> dict[tuple[str, str, str], dict[str, Any]]:
    """Key overrides by (staff_id, date, shift). Later entries win."""
    out: dict[tuple[str, str, str], dict[str, Any]] = {}
    for ov in overrides:
        if not ov.get("staff_id") or not ov.get("date") or not ov.get("shift"):
            continue
        out[_override_key(ov["staff_id"], ov["date"], ov["shift"])] = ov
    return out


def filter_available_staff(
    staff: list[dict[str, Any]],
    overrides: list[dict[str, Any]],
    *,
    shift_date: str,
    shift: str,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Return (eligible staff, per-staff decisions) for the shift.

    An override for the exact (date, shift) beats the static availability
    flags in both directions. Input order is preserved, so it stays the
    pool order used for tie-breaks later on.
    """
    by_key = index_overrides(overrides)
    flag = "am" if shift.upper() == "AM" else "pm"

    eligible: list[dict[str, Any]] = []
    decisions: list[dict[str, Any]] = []
    for member in staff:
        staff_id = str(member.get("staff_id"))
        if not member.get("active", True):
            decisions.append({"staff_id": staff_id, "included": False, "reason": "inactive"})
            continue

        override = by_key.get(_override_key(staff_id, shift_date, shift))
        if override is not None:
            included = override.get("status") != UNAVAILABLE
            reason = "override_available" if included else "override_unavailable"
        else:
            availability = member.get("availability") or {}
            included = bool(availability.get(flag))
            reason = "static_available" if included else "static_unavailable"

        decisions.append({"staff_id": staff_id, "included": included, "reason": reason})
        if included:
            eligible.append(member)

    return eligible, decisions
