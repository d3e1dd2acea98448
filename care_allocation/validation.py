"""Post-hoc validation of allocation plans.

Checks a plan dict against the hard invariants of the engine: per-staff
capacity and non-overlapping timed work. A breach is only acceptable when
the plan's trace carries the matching soft-fail event, which is what the
fallback path records. Used to audit committed plans and manually
overridden assignments after the fact.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any

from .time_utils import MINUTES_PER_DAY, parse_hhmm_to_minutes
from .trace import CAPACITY_EXCEEDED, TIME_COLLISION


def _events_by_staff(plan: dict[str, Any], kind: str) -> dict[str, set[str]]:
    out: dict[str, set[str]] = defaultdict(set)
    for e in plan.get("trace", {}).get("events", []):
        if e.get("kind") == kind and e.get("staff_id") is not None:
            out[str(e["staff_id"])].add(str(e.get("assignment_id", "")))
    return out


def validate_plan(plan: dict[str, Any], snapshot: dict[str, Any]) -> list[dict[str, Any]]:
    """Return a list of violation dicts {assignment_id, staff_id, violation, detail}."""
    violations: list[dict[str, Any]] = []
    staff_by_id = {str(s.get("staff_id")): s for s in snapshot.get("staff", [])}
    capacity_flags = _events_by_staff(plan, CAPACITY_EXCEEDED)
    collision_flags = _events_by_staff(plan, TIME_COLLISION)

    by_staff: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for a in plan.get("assignments", []):
        staff_id = str(a.get("staff_id", ""))
        if staff_id not in staff_by_id:
            violations.append({
                "assignment_id": a.get("assignment_id"),
                "staff_id": staff_id,
                "violation": "unknown_staff",
                "detail": f"Staff {staff_id} not found in snapshot",
            })
            continue
        by_staff[staff_id].append(a)

    for staff_id, rows in by_staff.items():
        cap = int(staff_by_id[staff_id]["max_minutes_per_shift"])
        total = sum(int(r.get("minutes_allocated") or 0) for r in rows)
        if total > cap and not capacity_flags.get(staff_id):
            violations.append({
                "assignment_id": None,
                "staff_id": staff_id,
                "violation": "capacity_exceeded_unflagged",
                "detail": f"{total} minutes allocated > max {cap}",
            })

        timed = []
        for r in rows:
            start = parse_hhmm_to_minutes(r.get("start"))
            end = parse_hhmm_to_minutes(r.get("end"))
            if start is not None and end is not None:
                if end <= start:
                    end += MINUTES_PER_DAY
                timed.append((start, end, r))
        timed.sort(key=lambda item: item[0])
        for i, (s1, e1, r1) in enumerate(timed):
            for s2, e2, r2 in timed[i + 1:]:
                if s2 >= e1:
                    break
                flagged = collision_flags.get(staff_id, set())
                if r1.get("assignment_id") in flagged or r2.get("assignment_id") in flagged:
                    continue
                violations.append({
                    "assignment_id": r2.get("assignment_id"),
                    "staff_id": staff_id,
                    "violation": "time_collision_unflagged",
                    "detail": f"{r1.get('start')}-{r1.get('end')} overlaps {r2.get('start')}-{r2.get('end')}",
                })

    primaries = Counter(
        a.get("task_key") for a in plan.get("assignments", []) if a.get("role") == "Primary"
    )
    for task_key in {a.get("task_key") for a in plan.get("assignments", [])}:
        if primaries.get(task_key, 0) != 1:
            violations.append({
                "assignment_id": None,
                "staff_id": None,
                "violation": "primary_count",
                "detail": f"Task {task_key} has {primaries.get(task_key, 0)} primary assignments",
            })

    return violations
