"""Tests for the JSON artifact store."""

from __future__ import annotations

import os
import time

import pytest

from careshift import storage


class TestSnapshots:
    def test_save_and_load_latest(self, tmp_path):
        storage.save_snapshot(tmp_path, {"snapshot_id": "s1", "generated_at": "2026-10-18T07:00:00Z", "staff": [1]})
        storage.save_snapshot(tmp_path, {"snapshot_id": "s2", "generated_at": "2026-10-19T07:00:00Z", "staff": [1, 2]})
        assert storage.load_snapshot(tmp_path)["snapshot_id"] == "s2"
        assert storage.load_snapshot(tmp_path, "s1")["staff"] == [1]

    def test_list_newest_first(self, tmp_path):
        storage.save_snapshot(tmp_path, {"snapshot_id": "old", "generated_at": "2026-10-18T07:00:00Z"})
        storage.save_snapshot(tmp_path, {"snapshot_id": "new", "generated_at": "2026-10-19T07:00:00Z"})
        manifests = storage.list_snapshots(tmp_path)
        assert [m["snapshot_id"] for m in manifests] == ["new", "old"]
        assert manifests[0]["counts"]["patients"] == 0

    def test_missing_snapshot(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            storage.load_snapshot(tmp_path)


class TestPlans:
    def test_list_and_load(self, tmp_path):
        storage.save_plan(tmp_path, {"plan_id": "p1", "generated_at": "2026-10-19T06:00:00Z", "shift": "AM"})
        storage.save_plan(tmp_path, {"plan_id": "p2", "generated_at": "2026-10-19T07:00:00Z", "shift": "PM"})
        assert [m["plan_id"] for m in storage.list_plans(tmp_path)] == ["p2", "p1"]
        assert [m["plan_id"] for m in storage.list_plans(tmp_path, limit=1)] == ["p2"]
        assert storage.load_plan(tmp_path)["shift"] == "PM"
        assert storage.load_plan(tmp_path, "p1")["shift"] == "AM"


class TestAssignments:
    def test_replace_never_merges(self, tmp_path):
        storage.replace_assignments(tmp_path, "2026-10-19", "AM", [{"assignment_id": "a"}, {"assignment_id": "b"}])
        storage.replace_assignments(tmp_path, "2026-10-19", "am", [{"assignment_id": "c"}])
        rows = storage.load_assignments(tmp_path, "2026-10-19", "AM")
        assert [r["assignment_id"] for r in rows] == ["c"]

    def test_missing_shift_is_empty(self, tmp_path):
        assert storage.load_assignments(tmp_path, "2026-10-19", "PM") == []
        assert storage.delete_assignments(tmp_path, "2026-10-19", "PM") is False

    def test_week_history(self, tmp_path):
        storage.replace_assignments(tmp_path, "2026-10-18", "AM", [{"assignment_id": "sunday"}])
        storage.replace_assignments(tmp_path, "2026-10-19", "PM", [{"assignment_id": "monday"}])
        storage.replace_assignments(tmp_path, "2026-10-20", "AM", [{"assignment_id": "tuesday"}])
        storage.replace_assignments(tmp_path, "2026-10-22", "AM", [{"assignment_id": "thursday"}])
        rows = storage.load_week_assignments(tmp_path, "2026-10-20")
        assert [r["assignment_id"] for r in rows] == ["monday", "tuesday"]


class TestLocks:
    def test_lock_cycle(self, tmp_path):
        assert not storage.is_shift_locked(tmp_path, "2026-10-19", "AM")
        lock = storage.lock_shift(tmp_path, "2026-10-19", "AM", locked_by="nurse-in-charge")
        assert lock["locked_by"] == "nurse-in-charge"
        assert storage.is_shift_locked(tmp_path, "2026-10-19", "AM")
        assert not storage.is_shift_locked(tmp_path, "2026-10-19", "PM")
        with pytest.raises(ValueError):
            storage.lock_shift(tmp_path, "2026-10-19", "AM")
        assert storage.unlock_shift(tmp_path, "2026-10-19", "AM") is True
        assert storage.unlock_shift(tmp_path, "2026-10-19", "AM") is False


class TestReservation:
    def test_second_reservation_is_busy(self, tmp_path):
        with storage.reserve_shift(tmp_path, "2026-10-19", "AM"):
            with pytest.raises(storage.ReservationBusy):
                with storage.reserve_shift(tmp_path, "2026-10-19", "AM"):
                    pass
            # a different shift is independent
            with storage.reserve_shift(tmp_path, "2026-10-19", "PM"):
                pass

    def test_stale_reservation_is_taken_over(self, tmp_path):
        path = tmp_path / "reservations" / "2026-10-19_AM.lock"
        path.parent.mkdir(parents=True)
        path.write_text("4242 2026-10-19T06:00:00Z")
        old = time.time() - storage.RESERVATION_MAX_AGE_SECONDS - 60
        os.utime(path, (old, old))

        with storage.reserve_shift(tmp_path, "2026-10-19", "AM") as held:
            assert held == path
            assert path.read_text().startswith(f"{os.getpid()} ")
        assert not path.exists()

    def test_fresh_foreign_reservation_is_busy(self, tmp_path):
        path = tmp_path / "reservations" / "2026-10-19_AM.lock"
        path.parent.mkdir(parents=True)
        path.write_text("4242 2026-10-19T06:00:00Z")
        with pytest.raises(storage.ReservationBusy):
            with storage.reserve_shift(tmp_path, "2026-10-19", "AM"):
                pass
        assert path.exists()

    def test_released_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with storage.reserve_shift(tmp_path, "2026-10-19", "AM"):
                raise RuntimeError("boom")
        with storage.reserve_shift(tmp_path, "2026-10-19", "AM"):
            pass
