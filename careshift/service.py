"""Allocation operations on top of the artifact store.

Every operation that reads or writes a (date, shift) checks the shift lock
first, before any snapshot is loaded. Write-backs run under an exclusive
reservation so two commits for the same shift cannot interleave.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from uuid import uuid4

from care_allocation.allocator import generate_allocation, staff_overview
from care_allocation.errors import ShiftLocked
from care_allocation.time_utils import normalize_shift
from care_allocation.validation import validate_plan

from . import storage
from .config import get_profile

logger = logging.getLogger(__name__)


def _gate(artifact_root: Path, shift_date: str, shift: str) -> str:
    shift = normalize_shift(shift)
    if storage.is_shift_locked(artifact_root, shift_date, shift):
        raise ShiftLocked(shift_date, shift)
    return shift


def store_snapshot(artifact_root: Path, snapshot: dict[str, Any]) -> dict[str, Any]:
    if "snapshot_id" not in snapshot:
        snapshot = {**snapshot, "snapshot_id": f"snap-{uuid4().hex[:12]}"}
    target = storage.save_snapshot(artifact_root, snapshot)
    return {"snapshot_id": snapshot["snapshot_id"], "path": str(target)}


def dry_run(
    artifact_root: Path,
    shift_date: str,
    shift: str,
    *,
    profile_name: str = "default",
    snapshot_id: str | None = None,
    profiles: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Compute a plan for the shift without committing it."""
    shift = _gate(artifact_root, shift_date, shift)

    profile = get_profile(profile_name, profiles)
    snapshot = storage.load_snapshot(artifact_root, snapshot_id=snapshot_id)
    history = None
    if profile.policy.fairness == "weekly":
        history = storage.load_week_assignments(artifact_root, shift_date)

    plan = generate_allocation(
        snapshot,
        shift_date=shift_date,
        shift=shift,
        policy=profile.policy,
        history=history,
    )
    plan["variant"] = profile.variant
    plan["profile"] = profile.name

    violations = validate_plan(plan, snapshot)
    if violations:
        logger.warning("Plan %s has %d unexplained violations", plan["plan_id"], len(violations))
    plan["violations"] = violations

    storage.save_plan(artifact_root, plan)
    return plan


def commit(
    artifact_root: Path,
    shift_date: str,
    shift: str,
    *,
    assignments: list[dict[str, Any]] | None = None,
    profile_name: str = "default",
    snapshot_id: str | None = None,
    profiles: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Replace the stored assignments for the shift.

    Without explicit assignments a fresh dry run is computed and committed.
    """
    shift = _gate(artifact_root, shift_date, shift)
    with storage.reserve_shift(artifact_root, shift_date, shift):
        if assignments is None:
            plan = dry_run(
                artifact_root,
                shift_date,
                shift,
                profile_name=profile_name,
                snapshot_id=snapshot_id,
                profiles=profiles,
            )
            assignments = plan["assignments"]
        rows = [{**a, "shift_date": shift_date, "shift": shift} for a in assignments]
        storage.replace_assignments(artifact_root, shift_date, shift, rows)

    logger.info("Committed %d assignments for %s %s", len(rows), shift_date, shift)
    return rows


def reset(artifact_root: Path, shift_date: str, shift: str) -> bool:
    shift = _gate(artifact_root, shift_date, shift)
    with storage.reserve_shift(artifact_root, shift_date, shift):
        return storage.delete_assignments(artifact_root, shift_date, shift)


def result_table(artifact_root: Path, shift_date: str, shift: str) -> list[dict[str, Any]]:
    """Committed assignments for the shift grouped per staff member."""
    shift = normalize_shift(shift)
    rows = storage.load_assignments(artifact_root, shift_date, shift)
    try:
        staff = storage.load_snapshot(artifact_root).get("staff", [])
    except FileNotFoundError:
        staff = []
    return staff_overview(rows, staff)


def manual_override(
    artifact_root: Path,
    shift_date: str,
    shift: str,
    assignment_id: str,
    new_staff_id: str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Move one committed assignment to another staff member.

    The first override keeps the engine's choice in `original_staff_id`;
    later overrides do not replace it.
    """
    shift = _gate(artifact_root, shift_date, shift)
    try:
        names = {
            str(s.get("staff_id")): s.get("name")
            for s in storage.load_snapshot(artifact_root).get("staff", [])
        }
    except FileNotFoundError:
        names = {}

    with storage.reserve_shift(artifact_root, shift_date, shift):
        rows = storage.load_assignments(artifact_root, shift_date, shift)
        for row in rows:
            if row.get("assignment_id") != assignment_id:
                continue
            if not row.get("is_manual_override"):
                row["original_staff_id"] = row.get("staff_id")
            row["staff_id"] = str(new_staff_id)
            row["staff_name"] = names.get(str(new_staff_id)) or str(new_staff_id)
            row["is_manual_override"] = True
            row["override_reason"] = reason
            storage.replace_assignments(artifact_root, shift_date, shift, rows)
            return row
    raise KeyError(f"assignment_id not found: {assignment_id}")


def lock_shift(artifact_root: Path, shift_date: str, shift: str, locked_by: str | None = None) -> dict[str, Any]:
    return storage.lock_shift(artifact_root, shift_date, normalize_shift(shift), locked_by)


def unlock_shift(artifact_root: Path, shift_date: str, shift: str) -> bool:
    return storage.unlock_shift(artifact_root, shift_date, normalize_shift(shift))


def lock_status(artifact_root: Path, shift_date: str, shift: str) -> dict[str, Any]:
    lock = storage.get_lock(artifact_root, shift_date, normalize_shift(shift))
    return {"locked": lock is not None, "lock": lock}
