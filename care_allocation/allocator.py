from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

from .availability import filter_available_staff
from .errors import NoStaffAvailable, ShiftLocked
from .policy import AllocationPolicy, policy_to_dict, validate_policy
from .tasks import Task, derive_tasks, order_tasks, task_summary
from .time_utils import format_minutes, intervals_overlap, normalize_shift, week_key
from .trace import (
    CAPACITY_EXCEEDED,
    INACTIVE_WARD,
    TIME_COLLISION,
    UNASSIGNED_SLOT,
    WARD_WITHOUT_STAFF,
    AuditTrace,
)

logger = logging.getLogger(__name__)

UTC = timezone.utc

PRIMARY = "Primary"
SECONDARY = "Secondary"

GLOBAL_POOL = "*"
FACILITY_POOL = "facility"


def now_utc_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class StaffLoad:
    member: dict[str, Any]
    minutes_allocated: int = 0
    history_minutes: int = 0
    timeline: list[tuple[int, int]] = field(default_factory=list)

    @property
    def staff_id(self) -> str:
        return str(self.member["staff_id"])

    @property
    def max_minutes(self) -> int:
        return int(self.member["max_minutes_per_shift"])

    def rank(self) -> int:
        return self.minutes_allocated + self.history_minutes

    def fits(self, minutes: int) -> bool:
        return self.minutes_allocated + minutes <= self.max_minutes

    def collides(self, start: int, end: int) -> bool:
        return any(intervals_overlap(start, end, s, e) for s, e in self.timeline)

    def book(self, minutes: int, window: tuple[int, int] | None) -> None:
        self.minutes_allocated += minutes
        if window is not None:
            self.timeline.append(window)


def weekly_minutes_by_staff(
    history: list[dict[str, Any]],
    shift_date: str,
    shift: str,
) -> dict[str, int]:
    """Minutes already committed per staff this week (Monday start), up to the date.

    The (date, shift) being recomputed is excluded so a re-run does not
    count its own previous result.
    """
    wk = week_key(shift_date)
    totals: dict[str, int] = defaultdict(int)
    for row in history:
        datum = str(row.get("shift_date") or "")[:10]
        if not datum or week_key(datum) != wk or datum > shift_date:
            continue
        if datum == shift_date and str(row.get("shift", "")).upper() == shift:
            continue
        totals[str(row.get("staff_id"))] += int(row.get("minutes_allocated") or 0)
    return dict(totals)


def build_pools(
    loads: list[StaffLoad],
    tasks: list[Task],
    policy: AllocationPolicy,
) -> dict[str, list[StaffLoad]]:
    """Group staff loads by pool key. Loads are shared, so capacity is per staff."""
    if policy.pool_scope == "global":
        return {GLOBAL_POOL: list(loads)}

    pools: dict[str, list[StaffLoad]] = {FACILITY_POOL: list(loads)}
    for task in tasks:
        if task.ward_id and task.ward_id not in pools:
            pools[task.ward_id] = [l for l in loads if l.member.get("assigned_ward") == task.ward_id]
    return pools


def pool_key_for(task: Task, policy: AllocationPolicy) -> str:
    if policy.pool_scope == "global":
        return GLOBAL_POOL
    return task.ward_id or FACILITY_POOL


def _slots(task: Task, policy: AllocationPolicy) -> list[tuple[str, int, tuple[int, int] | None]]:
    slots = []
    window = (task.start, task.start + task.duration) if task.timed else None
    slots.append((PRIMARY, task.duration, window))
    for _ in range(task.staff_needed - 1):
        assist_window = (task.start, task.start + policy.assist_minutes) if task.timed else None
        slots.append((SECONDARY, policy.assist_minutes, assist_window))
    return slots


def _select(
    pool: list[StaffLoad],
    minutes: int,
    window: tuple[int, int] | None,
    taken: set[str],
) -> tuple[StaffLoad | None, list[str]]:
    members = [l for l in pool if l.staff_id not in taken]
    if not members:
        return None, []

    candidates = [
        l for l in members
        if l.fits(minutes) and not (window is not None and l.collides(*window))
    ]
    if candidates:
        # min() keeps the first of equal ranks, i.e. pool order
        return min(candidates, key=lambda l: l.rank()), []

    best = min(members, key=lambda l: l.rank())
    reasons = []
    if not best.fits(minutes):
        reasons.append(CAPACITY_EXCEEDED)
    if window is not None and best.collides(*window):
        reasons.append(TIME_COLLISION)
    return best, reasons


def allocate_tasks(
    queue: list[Task],
    loads: list[StaffLoad],
    *,
    wards: list[dict[str, Any]],
    policy: AllocationPolicy,
    shift_date: str,
    shift: str,
    trace: AuditTrace,
) -> list[dict[str, Any]]:
    """Greedy least-loaded-first assignment over the ordered task queue."""
    pools = build_pools(loads, queue, policy)
    active_wards = {str(w.get("ward_id")) for w in wards if w.get("active", True)}
    check_wards = policy.pool_scope == "ward" and bool(wards)

    assignments: list[dict[str, Any]] = []
    reported_empty: set[str] = set()

    for task in queue:
        key = pool_key_for(task, policy)

        if check_wards and task.ward_id and task.ward_id not in active_wards:
            trace.add(INACTIVE_WARD, task_key=task.task_key, ward_id=task.ward_id)
            logger.warning("Skipping task %s: ward %s is inactive or unknown", task.task_key, task.ward_id)
            continue

        trace.task_queues.setdefault(key, []).append(task_summary(task))
        pool = pools.get(key, [])

        if not pool and key not in reported_empty:
            reported_empty.add(key)
            trace.add(WARD_WITHOUT_STAFF, ward_id=task.ward_id, pool=key)
            logger.warning("No eligible staff in pool %s for %s %s", key, shift_date, shift)

        taken: set[str] = set()
        for role, minutes, window in _slots(task, policy):
            chosen, reasons = _select(pool, minutes, window, taken)
            if chosen is None:
                trace.add(
                    UNASSIGNED_SLOT,
                    task_key=task.task_key,
                    role=role,
                    ward_id=task.ward_id,
                    reason="empty_pool" if not pool else "no_distinct_staff",
                )
                logger.warning("Dropped %s slot of task %s: no staff in pool %s", role, task.task_key, key)
                continue

            assignment_id = f"{task.task_key}::{role.lower()}::{chosen.staff_id}"
            minutes_before = chosen.minutes_allocated
            for reason in reasons:
                trace.add(
                    reason,
                    assignment_id=assignment_id,
                    task_key=task.task_key,
                    role=role,
                    staff_id=chosen.staff_id,
                    minutes_before=minutes_before,
                    minutes_after=minutes_before + minutes,
                    max_minutes=chosen.max_minutes,
                )
            if reasons:
                logger.warning(
                    "Fallback assignment %s to %s (%s)", task.task_key, chosen.staff_id, ", ".join(reasons)
                )

            chosen.book(minutes, window)
            taken.add(chosen.staff_id)

            assignments.append(
                {
                    "assignment_id": assignment_id,
                    "shift_date": shift_date,
                    "shift": shift,
                    "staff_id": chosen.staff_id,
                    "staff_name": chosen.member.get("name") or chosen.staff_id,
                    "ward_id": task.ward_id or chosen.member.get("assigned_ward"),
                    "patient_id": task.patient_id,
                    "source_task_id": task.source_task_id,
                    "task_key": task.task_key,
                    "task_name": task.name,
                    "source": task.source,
                    "role": role,
                    "minutes_allocated": minutes,
                    "start": format_minutes(window[0]) if window else None,
                    "end": format_minutes(window[1]) if window else None,
                    "fallback": bool(reasons),
                }
            )

    return assignments


def staff_overview(
    assignments: list[dict[str, Any]],
    staff: list[dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """Group assignments per staff member with total minutes, busiest first."""
    caps = {str(s.get("staff_id")): s.get("max_minutes_per_shift") for s in staff or []}
    per_staff: dict[str, dict[str, Any]] = {}
    for row in assignments:
        staff_id = str(row.get("staff_id"))
        item = per_staff.setdefault(
            staff_id,
            {
                "staff_id": staff_id,
                "staff_name": row.get("staff_name") or staff_id,
                "total_minutes": 0,
                "assignments": [],
            },
        )
        item["total_minutes"] += int(row.get("minutes_allocated") or 0)
        item["assignments"].append(row)

    result = []
    for staff_id, item in per_staff.items():
        cap = caps.get(staff_id)
        item["assignment_count"] = len(item["assignments"])
        item["max_minutes_per_shift"] = cap
        item["over_capacity"] = cap is not None and item["total_minutes"] > int(cap)
        result.append(item)

    result.sort(key=lambda row: row["total_minutes"], reverse=True)
    return result


def generate_allocation(
    snapshot: dict[str, Any],
    *,
    shift_date: str,
    shift: str,
    policy: AllocationPolicy | None = None,
    locked: bool = False,
    history: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    if locked:
        raise ShiftLocked(shift_date, shift)

    shift = normalize_shift(shift)
    date.fromisoformat(shift_date)
    policy = validate_policy(policy or AllocationPolicy())
    trace = AuditTrace()

    eligible, decisions = filter_available_staff(
        snapshot.get("staff", []),
        snapshot.get("overrides", []),
        shift_date=shift_date,
        shift=shift,
    )
    trace.staff_decisions = decisions
    if not eligible:
        raise NoStaffAvailable(shift_date, shift)

    loads = [StaffLoad(member=m) for m in eligible]
    if policy.fairness == "weekly":
        prior = weekly_minutes_by_staff(history or [], shift_date, shift)
        for load in loads:
            load.history_minutes = prior.get(load.staff_id, 0)

    tasks = derive_tasks(snapshot, shift_date=shift_date, shift=shift, policy=policy, trace=trace)
    queue = order_tasks(tasks, policy.ordering)

    assignments = allocate_tasks(
        queue,
        loads,
        wards=snapshot.get("wards", []),
        policy=policy,
        shift_date=shift_date,
        shift=shift,
        trace=trace,
    )

    event_counts = Counter(e["kind"] for e in trace.events)
    minutes_by_staff = {l.staff_id: l.minutes_allocated for l in loads}

    logger.info(
        "Allocated %d slots for %d tasks on %s %s (%d fallback, %d unassigned)",
        len(assignments),
        len(queue),
        shift_date,
        shift,
        sum(1 for a in assignments if a["fallback"]),
        event_counts.get(UNASSIGNED_SLOT, 0),
    )

    return {
        "plan_id": f"plan-{uuid4().hex[:12]}",
        "generated_at": now_utc_iso(),
        "snapshot_id": snapshot.get("snapshot_id"),
        "shift_date": shift_date,
        "shift": shift,
        "policy": policy_to_dict(policy),
        "assignments": assignments,
        "trace": trace.as_dict(),
        "metrics": {
            "task_count": len(queue),
            "assignment_count": len(assignments),
            "primary_slots": sum(1 for a in assignments if a["role"] == PRIMARY),
            "secondary_slots": sum(1 for a in assignments if a["role"] == SECONDARY),
            "fallback_assignments": sum(1 for a in assignments if a["fallback"]),
            "unassigned_slots": event_counts.get(UNASSIGNED_SLOT, 0),
            "event_counts": dict(event_counts),
            "minutes_by_staff": minutes_by_staff,
        },
    }


def explain_assignment(plan: dict[str, Any], assignment_id: str) -> dict[str, Any]:
    for item in plan.get("assignments", []):
        if item.get("assignment_id") == assignment_id:
            events = [
                e for e in plan.get("trace", {}).get("events", [])
                if e.get("assignment_id") == assignment_id
            ]
            return {
                "assignment_id": assignment_id,
                "staff": item.get("staff_name"),
                "task": {
                    "task_key": item.get("task_key"),
                    "name": item.get("task_name"),
                    "role": item.get("role"),
                    "start": item.get("start"),
                    "end": item.get("end"),
                },
                "minutes_allocated": item.get("minutes_allocated"),
                "fallback": item.get("fallback", False),
                "events": events,
            }
    raise KeyError(f"assignment_id not found: {assignment_id}")
