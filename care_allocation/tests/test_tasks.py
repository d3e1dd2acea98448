"""Tests for task derivation and queue ordering."""

from care_allocation.policy import AllocationPolicy
from care_allocation.tasks import (
    DAILY_SLOT,
    GLOBAL_TASK,
    PATIENT_CARE,
    Task,
    derive_tasks,
    order_tasks,
    scale_minutes,
)
from care_allocation.trace import MALFORMED_DURATION, UNKNOWN_SHIFT, ZERO_DURATION, AuditTrace

MONDAY = "2026-10-19"


def _patient(pid="P1", ward="W1", **extra):
    base = {
        "patient_id": pid,
        "name": f"Patient {pid}",
        "current_ward": ward,
        "status": "Admitted",
        "complexity_score": 1.0,
        "additional_time": 0,
        "mobility_aid": "",
        "weekly_cares": [],
        "daily_schedule": [],
    }
    base.update(extra)
    return base


def _derive(snapshot, shift="AM", policy=None, shift_date=MONDAY):
    trace = AuditTrace()
    tasks = derive_tasks(
        snapshot,
        shift_date=shift_date,
        shift=shift,
        policy=policy or AllocationPolicy(),
        trace=trace,
    )
    return tasks, trace


class TestWeeklyBaseCare:
    def test_monday_am_care(self):
        p = _patient(weekly_cares=[{"day": "Monday", "am_duration": "20"}])
        tasks, _ = _derive({"patients": [p]})
        assert len(tasks) == 1
        task = tasks[0]
        assert task.source == PATIENT_CARE
        assert task.duration == 20
        assert task.patient_id == "P1"
        assert task.ward_id == "W1"
        assert task.priority == 3
        assert not task.timed

    def test_complexity_scales_duration(self):
        p = _patient(complexity_score=1.5, weekly_cares=[{"day": "Monday", "am_duration": "20"}])
        tasks, _ = _derive({"patients": [p]})
        assert tasks[0].duration == 30

    def test_range_plus_additional_time(self):
        p = _patient(
            complexity_score=1.25,
            additional_time=5,
            weekly_cares=[{"day": "Monday", "am_duration": "15-20"}],
        )
        tasks, _ = _derive({"patients": [p]})
        # (20 + 5) * 1.25 = 31.25
        assert tasks[0].duration == 31

    def test_other_day_ignored(self):
        p = _patient(weekly_cares=[{"day": "Tuesday", "am_duration": "20"}])
        tasks, _ = _derive({"patients": [p]})
        assert tasks == []

    def test_pm_uses_pm_duration(self):
        p = _patient(weekly_cares=[{"day": "Monday", "am_duration": "20", "pm_duration": "35"}])
        tasks, _ = _derive({"patients": [p]}, shift="PM")
        assert [t.duration for t in tasks] == [35]

    def test_missing_shift_duration_means_no_task(self):
        p = _patient(weekly_cares=[{"day": "Monday", "am_duration": "20"}])
        tasks, trace = _derive({"patients": [p]}, shift="PM")
        assert tasks == []
        assert trace.events == []

    def test_special_time_makes_task_timed(self):
        p = _patient(weekly_cares=[{"day": "Monday", "am_duration": "20", "special_time": "09:00"}])
        tasks, _ = _derive({"patients": [p]})
        assert tasks[0].priority == 1
        assert (tasks[0].start, tasks[0].end) == (540, 560)

    def test_malformed_duration_is_skipped(self):
        p = _patient(weekly_cares=[{"day": "Monday", "am_duration": "as needed"}])
        tasks, trace = _derive({"patients": [p]})
        assert tasks == []
        assert len(trace.of_kind(MALFORMED_DURATION)) == 1
        assert len(trace.of_kind(ZERO_DURATION)) == 1

    def test_malformed_duration_keeps_additional_time(self):
        p = _patient(additional_time=10, weekly_cares=[{"day": "Monday", "am_duration": "as needed"}])
        tasks, _ = _derive({"patients": [p]})
        assert [t.duration for t in tasks] == [10]

    def test_discharged_patient_ignored(self):
        p = _patient(status="Discharged", weekly_cares=[{"day": "Monday", "am_duration": "20"}])
        tasks, _ = _derive({"patients": [p]})
        assert tasks == []

    def test_hoist_needs_two_staff(self):
        p = _patient(mobility_aid="Hoist", weekly_cares=[{"day": "Monday", "am_duration": "20"}])
        tasks, _ = _derive({"patients": [p]})
        assert tasks[0].staff_needed == 2


class TestDailySchedule:
    def test_daily_slot_replaces_weekly_care(self):
        p = _patient(
            weekly_cares=[{"day": "Monday", "am_duration": "20"}],
            daily_schedule=[{"slot_id": "D1", "start_time": "08:00", "end_time": "08:30", "shift": "AM"}],
        )
        tasks, _ = _derive({"patients": [p]})
        assert len(tasks) == 1
        task = tasks[0]
        assert task.source == DAILY_SLOT
        assert task.source_task_id == "D1"
        assert task.duration == 30
        assert (task.start, task.end) == (480, 510)
        assert task.priority == 1

    def test_slot_in_other_shift_keeps_weekly_care(self):
        p = _patient(
            weekly_cares=[{"day": "Monday", "am_duration": "20"}],
            daily_schedule=[{"start_time": "15:00", "end_time": "15:30"}],
        )
        tasks, _ = _derive({"patients": [p]})
        assert [t.source for t in tasks] == [PATIENT_CARE]

    def test_shift_inferred_from_start_time(self):
        p = _patient(daily_schedule=[{"start_time": "14:30", "end_time": "15:00"}])
        am, _ = _derive({"patients": [p]}, shift="AM")
        pm, _ = _derive({"patients": [p]}, shift="PM")
        assert am == []
        assert len(pm) == 1

    def test_cutoff_is_configurable(self):
        p = _patient(daily_schedule=[{"start_time": "13:30", "end_time": "14:00"}])
        tasks, _ = _derive({"patients": [p]}, shift="PM", policy=AllocationPolicy(shift_cutoff=13 * 60))
        assert len(tasks) == 1

    def test_fixed_duration(self):
        p = _patient(
            complexity_score=2.0,
            daily_schedule=[{"start_time": "09:00", "end_time": "09:10", "is_fixed_duration": True, "duration_minutes": 45}],
        )
        tasks, _ = _derive({"patients": [p]})
        assert tasks[0].duration == 90
        assert (tasks[0].start, tasks[0].end) == (540, 630)

    def test_zero_length_slot_uses_minimum(self):
        p = _patient(daily_schedule=[{"shift": "AM", "start_time": "09:00", "end_time": "09:00"}])
        tasks, _ = _derive({"patients": [p]})
        assert tasks[0].duration == 15

    def test_untimed_slot(self):
        p = _patient(daily_schedule=[{"shift": "AM", "activities": ["Walk", "Tea"]}])
        tasks, _ = _derive({"patients": [p]})
        assert tasks[0].duration == 15
        assert tasks[0].priority == 3
        assert not tasks[0].timed
        assert tasks[0].name == "Walk, Tea for Patient P1"

    def test_slot_running_past_midnight(self):
        p = _patient(daily_schedule=[{"start_time": "23:30", "end_time": "00:30"}])
        tasks, _ = _derive({"patients": [p]}, shift="PM")
        assert tasks[0].duration == 60
        assert (tasks[0].start, tasks[0].end) == (1410, 1470)

    def test_slot_without_shift_or_time_is_noted(self):
        p = _patient(
            weekly_cares=[{"day": "Monday", "am_duration": "20"}],
            daily_schedule=[{"slot_id": "D9", "activities": ["Walk"]}],
        )
        tasks, trace = _derive({"patients": [p]})
        assert [t.source for t in tasks] == [PATIENT_CARE]
        events = trace.of_kind(UNKNOWN_SHIFT)
        assert events == [{"kind": UNKNOWN_SHIFT, "patient_id": "P1", "slot_index": 0, "slot_id": "D9"}]

    def test_dated_slot_only_on_its_day(self):
        p = _patient(daily_schedule=[{"shift": "AM", "date": "2026-10-20", "start_time": "09:00", "end_time": "09:30"}])
        tasks, _ = _derive({"patients": [p]})
        assert tasks == []


def _global(task_id, **extra):
    base = {
        "task_id": task_id,
        "name": task_id,
        "duration_minutes": 30,
        "required_staff": 1,
        "shift": "AM",
        "active": True,
    }
    base.update(extra)
    return base


class TestFacilityTasks:
    def test_priority_classes(self):
        snapshot = {
            "global_tasks": [
                _global("plain"),
                _global("constrained", latest_start_by="10:00"),
                _global("fixed", fixed_window={"start": "08:00", "end": "08:30"}),
            ]
        }
        tasks, _ = _derive(snapshot)
        by_id = {t.source_task_id: t for t in tasks}
        assert by_id["fixed"].priority == 1
        assert (by_id["fixed"].start, by_id["fixed"].end) == (480, 510)
        assert by_id["constrained"].priority == 2
        assert by_id["plain"].priority == 3
        assert all(t.source == GLOBAL_TASK for t in tasks)

    def test_inactive_and_other_shift_excluded(self):
        snapshot = {"global_tasks": [_global("off", active=False), _global("pm", shift="PM")]}
        tasks, _ = _derive(snapshot)
        assert tasks == []

    def test_required_staff(self):
        tasks, _ = _derive({"global_tasks": [_global("pair", required_staff=2)]})
        assert tasks[0].staff_needed == 2

    def test_per_patient_strategy(self):
        snapshot = {
            "global_tasks": [_global("trolley", duration_minutes=5, scales_with_patients=True)],
            "patients": [_patient("P1", "W1"), _patient("P2", "W2")],
        }
        tasks, _ = _derive(snapshot, policy=AllocationPolicy(facility_strategy="per_patient"))
        assert [(t.patient_id, t.ward_id, t.duration) for t in tasks] == [("P1", "W1", 5), ("P2", "W2", 5)]

    def test_chunked_strategy(self):
        snapshot = {
            "global_tasks": [_global("meds", duration_minutes=25, scales_with_patients=True)],
            "patients": [_patient("P1", "W1"), _patient("P2", "W1"), _patient("P3", "W1"), _patient("P4", "W2")],
        }
        tasks, _ = _derive(snapshot, policy=AllocationPolicy(facility_strategy="chunked"))
        assert [(t.ward_id, t.duration) for t in tasks] == [("W1", 60), ("W1", 15), ("W2", 25)]
        assert sum(t.duration for t in tasks) == 100
        assert not any(t.timed for t in tasks)

    def test_strategy_only_applies_to_scaled_tasks(self):
        snapshot = {
            "global_tasks": [_global("handover")],
            "patients": [_patient("P1"), _patient("P2")],
        }
        tasks, _ = _derive(snapshot, policy=AllocationPolicy(facility_strategy="per_patient"))
        assert len(tasks) == 1

    def test_ward_restricted_per_patient(self):
        snapshot = {
            "global_tasks": [_global("trolley", ward_id="W2", scales_with_patients=True)],
            "patients": [_patient("P1", "W1"), _patient("P2", "W2")],
        }
        tasks, _ = _derive(snapshot, policy=AllocationPolicy(facility_strategy="per_patient"))
        assert [t.patient_id for t in tasks] == ["P2"]


def _task(key, priority, duration):
    return Task(task_key=key, source=GLOBAL_TASK, source_task_id=key, name=key, duration=duration, priority=priority)


class TestOrdering:
    def test_priority_then_longest(self):
        tasks = [_task("a", 3, 10), _task("b", 1, 5), _task("c", 3, 40), _task("d", 2, 20)]
        ordered = order_tasks(tasks, "priority")
        assert [t.task_key for t in ordered] == ["b", "d", "c", "a"]

    def test_priority_never_inverted(self):
        tasks = [_task(str(i), (i * 7) % 3 + 1, (i * 13) % 50 + 1) for i in range(30)]
        ordered = order_tasks(tasks, "priority")
        priorities = [t.priority for t in ordered]
        assert priorities == sorted(priorities)

    def test_duration_ordering(self):
        tasks = [_task("a", 1, 10), _task("b", 3, 60), _task("c", 2, 30)]
        ordered = order_tasks(tasks, "duration")
        assert [t.task_key for t in ordered] == ["b", "c", "a"]

    def test_ties_keep_input_order(self):
        tasks = [_task("x", 3, 10), _task("y", 3, 10)]
        assert [t.task_key for t in order_tasks(tasks)] == ["x", "y"]


def test_scale_minutes_rounds_half_up():
    assert scale_minutes(20, 1.5) == 30
    assert scale_minutes(5, 1.1) == 6
    assert scale_minutes(15, 1.5) == 23
