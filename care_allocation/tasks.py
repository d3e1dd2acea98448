"""Task derivation: expand facility tasks and patient care needs for one shift.

Three sources feed the queue:

- facility-wide task definitions (trolley rounds, handover, ...),
- per-patient daily schedule slots (explicit activities on a given day),
- per-patient weekly base care (recurring by weekday, free-form durations).

Daily slots take precedence over weekly base care for the same patient and
shift. The two are never added together.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Any

from .policy import AllocationPolicy
from .time_utils import (
    day_name,
    format_minutes,
    infer_shift,
    parse_duration_minutes,
    parse_hhmm_to_minutes,
    span_minutes,
)
from .trace import MALFORMED_DURATION, UNKNOWN_SHIFT, ZERO_DURATION, AuditTrace

logger = logging.getLogger(__name__)

GLOBAL_TASK = "GlobalTask"
PATIENT_CARE = "PatientCare"
DAILY_SLOT = "DailySlot"

PRIORITY_FIXED = 1
PRIORITY_CONSTRAINED = 2
PRIORITY_FLEXIBLE = 3

ADMITTED = "Admitted"


@dataclass(frozen=True)
class Task:
    task_key: str
    source: str
    source_task_id: str
    name: str
    duration: int
    priority: int
    staff_needed: int = 1
    patient_id: str | None = None
    ward_id: str | None = None
    start: int | None = None
    end: int | None = None

    @property
    def timed(self) -> bool:
        return self.start is not None


def scale_minutes(minutes: float, complexity: float) -> int:
    """Multiply by the complexity score, rounding half up."""
    return int(math.floor(minutes * complexity + 0.5))


def complexity_of(patient: dict[str, Any]) -> float:
    raw = patient.get("complexity_score")
    if raw is None:
        return 1.0
    return min(max(float(raw), 1.0), 2.0)


def staff_needed_for(patient: dict[str, Any], policy: AllocationPolicy) -> int:
    aid = str(patient.get("mobility_aid") or "").strip().lower()
    return 2 if aid and aid in policy.two_staff_mobility_aids else 1


def admitted_patients(patients: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [p for p in patients if (p.get("status") or ADMITTED) == ADMITTED]


def _window(start: int | None, duration: int) -> tuple[int | None, int | None]:
    if start is None:
        return None, None
    return start, start + duration


# ---------------------------------------------------------------------------
# Facility-wide tasks
# ---------------------------------------------------------------------------


def _facility_priority(definition: dict[str, Any]) -> int:
    if definition.get("fixed_window"):
        return PRIORITY_FIXED
    if definition.get("latest_start_by") or definition.get("earliest_start_after"):
        return PRIORITY_CONSTRAINED
    return PRIORITY_FLEXIBLE


def _fixed_window_start(definition: dict[str, Any]) -> int | None:
    window = definition.get("fixed_window")
    if isinstance(window, dict):
        return parse_hhmm_to_minutes(window.get("start"))
    if window:
        return parse_hhmm_to_minutes(definition.get("start_time"))
    return None


def _facility_tasks(
    definitions: list[dict[str, Any]],
    patients: list[dict[str, Any]],
    *,
    shift: str,
    policy: AllocationPolicy,
    trace: AuditTrace,
) -> list[Task]:
    tasks: list[Task] = []
    for definition in definitions:
        if not definition.get("active", True):
            continue
        if str(definition.get("shift", "")).upper() != shift:
            continue

        task_id = str(definition["task_id"])
        name = str(definition.get("name") or task_id)
        duration = int(definition["duration_minutes"])
        if duration <= 0:
            trace.add(ZERO_DURATION, task_id=task_id, source=GLOBAL_TASK)
            continue

        priority = _facility_priority(definition)
        start, end = _window(_fixed_window_start(definition), duration)
        staff_needed = max(int(definition.get("required_staff") or 1), 1)
        ward_id = definition.get("ward_id")

        strategy = policy.facility_strategy if definition.get("scales_with_patients") else "single"
        scoped = [p for p in patients if not ward_id or p.get("current_ward") == ward_id]

        if strategy == "per_patient":
            for p in scoped:
                pid = str(p["patient_id"])
                tasks.append(
                    Task(
                        task_key=f"global:{task_id}:patient:{pid}",
                        source=GLOBAL_TASK,
                        source_task_id=task_id,
                        name=f"{name} for {p.get('name') or pid}",
                        duration=duration,
                        priority=priority,
                        staff_needed=staff_needed,
                        patient_id=pid,
                        ward_id=p.get("current_ward"),
                        start=start,
                        end=end,
                    )
                )
        elif strategy == "chunked":
            counts = Counter(p.get("current_ward") for p in scoped)
            for ward, count in counts.items():
                remaining = duration * count
                block = 0
                while remaining > 0:
                    block += 1
                    minutes = min(policy.chunk_minutes, remaining)
                    remaining -= minutes
                    tasks.append(
                        Task(
                            task_key=f"global:{task_id}:{ward}:chunk{block}",
                            source=GLOBAL_TASK,
                            source_task_id=task_id,
                            name=f"{name} ({ward} block {block})",
                            duration=minutes,
                            priority=priority,
                            staff_needed=staff_needed,
                            ward_id=ward,
                        )
                    )
        else:
            tasks.append(
                Task(
                    task_key=f"global:{task_id}",
                    source=GLOBAL_TASK,
                    source_task_id=task_id,
                    name=name,
                    duration=duration,
                    priority=priority,
                    staff_needed=staff_needed,
                    ward_id=ward_id,
                    start=start,
                    end=end,
                )
            )
    return tasks


# ---------------------------------------------------------------------------
# Patient care
# ---------------------------------------------------------------------------


def _slot_name(slot: dict[str, Any], patient_name: str) -> str:
    activities = slot.get("activities")
    if isinstance(activities, (list, tuple)):
        label = ", ".join(str(a) for a in activities if a)
    else:
        label = str(activities or "")
    return f"{label or 'Daily care'} for {patient_name}"


def _daily_tasks(
    patient: dict[str, Any],
    *,
    shift_date: str,
    shift: str,
    policy: AllocationPolicy,
    complexity: float,
    staff_needed: int,
    trace: AuditTrace,
) -> list[Task]:
    pid = str(patient["patient_id"])
    patient_name = patient.get("name") or pid
    tasks: list[Task] = []

    for idx, slot in enumerate(patient.get("daily_schedule") or []):
        if slot.get("date") and str(slot["date"])[:10] != shift_date:
            continue
        slot_shift = str(slot.get("shift") or "").upper() or infer_shift(slot.get("start_time"), policy.shift_cutoff)
        if slot_shift is None:
            trace.add(UNKNOWN_SHIFT, patient_id=pid, slot_index=idx, slot_id=slot.get("slot_id"))
            logger.debug("Daily slot %d of patient %s has neither shift nor start time", idx, pid)
            continue
        if slot_shift != shift:
            continue

        start = parse_hhmm_to_minutes(slot.get("start_time"))
        end = parse_hhmm_to_minutes(slot.get("end_time"))
        if slot.get("is_fixed_duration"):
            base = int(slot.get("duration_minutes") or 0)
        elif start is not None and end is not None:
            base = span_minutes(start, end)
        else:
            base = 0
        if base <= 0:
            base = policy.min_slot_minutes

        duration = scale_minutes(base, complexity)
        window_start, window_end = _window(start, duration)
        needed = max(int(slot.get("staff_needed") or staff_needed), 1)

        tasks.append(
            Task(
                task_key=f"daily:{pid}:{idx}",
                source=DAILY_SLOT,
                source_task_id=str(slot.get("slot_id") or f"{pid}:daily:{idx}"),
                name=_slot_name(slot, patient_name),
                duration=duration,
                priority=PRIORITY_FIXED if window_start is not None else PRIORITY_FLEXIBLE,
                staff_needed=needed,
                patient_id=pid,
                ward_id=patient.get("current_ward"),
                start=window_start,
                end=window_end,
            )
        )
    return tasks


def _weekly_tasks(
    patient: dict[str, Any],
    *,
    shift_date: str,
    shift: str,
    complexity: float,
    staff_needed: int,
    trace: AuditTrace,
) -> list[Task]:
    pid = str(patient["patient_id"])
    patient_name = patient.get("name") or pid
    day = day_name(shift_date).lower()
    duration_field = "am_duration" if shift == "AM" else "pm_duration"
    additional = int(patient.get("additional_time") or 0)
    tasks: list[Task] = []

    for idx, care in enumerate(patient.get("weekly_cares") or []):
        if str(care.get("day", "")).strip().lower() != day:
            continue
        raw = care.get(duration_field)
        if raw is None or str(raw).strip() == "":
            continue

        base = parse_duration_minutes(raw)
        if base == 0 and not any(ch.isdigit() for ch in str(raw)):
            trace.add(MALFORMED_DURATION, patient_id=pid, value=str(raw))
            logger.debug("Unparseable care duration %r for patient %s", raw, pid)

        duration = scale_minutes(base + additional, complexity)
        if duration <= 0:
            trace.add(ZERO_DURATION, patient_id=pid, source=PATIENT_CARE)
            continue

        start, end = _window(parse_hhmm_to_minutes(care.get("special_time")), duration)
        tasks.append(
            Task(
                task_key=f"weekly:{pid}:{idx}",
                source=PATIENT_CARE,
                source_task_id=str(care.get("care_id") or f"{pid}:{care.get('day')}:{idx}"),
                name=f"Base care for {patient_name}",
                duration=duration,
                priority=PRIORITY_FIXED if start is not None else PRIORITY_FLEXIBLE,
                staff_needed=staff_needed,
                patient_id=pid,
                ward_id=patient.get("current_ward"),
                start=start,
                end=end,
            )
        )
    return tasks


def derive_tasks(
    snapshot: dict[str, Any],
    *,
    shift_date: str,
    shift: str,
    policy: AllocationPolicy,
    trace: AuditTrace,
) -> list[Task]:
    """Flatten all task sources for (date, shift) into atomic task instances."""
    patients = admitted_patients(snapshot.get("patients", []))
    tasks = _facility_tasks(
        snapshot.get("global_tasks", []),
        patients,
        shift=shift,
        policy=policy,
        trace=trace,
    )

    for patient in patients:
        complexity = complexity_of(patient)
        needed = staff_needed_for(patient, policy)
        daily = _daily_tasks(
            patient,
            shift_date=shift_date,
            shift=shift,
            policy=policy,
            complexity=complexity,
            staff_needed=needed,
            trace=trace,
        )
        if daily:
            tasks.extend(daily)
            continue
        tasks.extend(
            _weekly_tasks(
                patient,
                shift_date=shift_date,
                shift=shift,
                complexity=complexity,
                staff_needed=needed,
                trace=trace,
            )
        )

    logger.debug("Derived %d tasks for %s %s", len(tasks), shift_date, shift)
    return tasks


def order_tasks(tasks: list[Task], ordering: str = "priority") -> list[Task]:
    """Total order for the allocation queue. Ties keep derivation order."""
    if ordering == "duration":
        return sorted(tasks, key=lambda t: -t.duration)
    return sorted(tasks, key=lambda t: (t.priority, -t.duration))


def task_summary(task: Task) -> dict[str, Any]:
    return {
        "task_key": task.task_key,
        "name": task.name,
        "source": task.source,
        "priority": task.priority,
        "duration": task.duration,
        "staff_needed": task.staff_needed,
        "patient_id": task.patient_id,
        "ward_id": task.ward_id,
        "start": format_minutes(task.start),
        "end": format_minutes(task.end),
    }
