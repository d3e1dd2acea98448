"""JSON artifact store for snapshots, plans, committed assignments and shift locks.

Layout under the artifact root:

    snapshots/<snapshot_id>/{snapshot.json,manifest.json}, snapshots/latest.json
    plans/<plan_id>/{plan.json,manifest.json},             plans/latest.json
    assignments/<date>_<shift>.json
    locks/<date>_<shift>.json
    reservations/<date>_<shift>.lock      (pid and start time; stale after 15 minutes)
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)


class ReservationBusy(RuntimeError):
    """Another caller holds the (date, shift) reservation."""


def _json_dump(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)


def _json_load(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _shift_key(shift_date: str, shift: str) -> str:
    return f"{date.fromisoformat(shift_date).isoformat()}_{shift.upper()}"


def _root(artifact_root: Path, name: str) -> Path:
    path = artifact_root / name
    path.mkdir(parents=True, exist_ok=True)
    return path


def _list_manifests(root: Path, limit: int) -> list[dict[str, Any]]:
    manifests: list[dict[str, Any]] = []
    for child in root.iterdir():
        if not child.is_dir():
            continue
        manifest_file = child / "manifest.json"
        if not manifest_file.exists():
            continue
        try:
            manifests.append(_json_load(manifest_file))
        except (OSError, json.JSONDecodeError):
            logger.warning("Skipping unreadable manifest %s", manifest_file)
            continue
    manifests.sort(key=lambda row: row.get("generated_at", ""), reverse=True)
    return manifests[:limit]


# -- Snapshots --


def save_snapshot(artifact_root: Path, snapshot: dict[str, Any]) -> Path:
    root = _root(artifact_root, "snapshots")
    sid = snapshot["snapshot_id"]
    target = root / sid
    _json_dump(target / "snapshot.json", snapshot)

    manifest = {
        "snapshot_id": sid,
        "generated_at": snapshot.get("generated_at") or _now_iso(),
        "counts": {
            key: len(snapshot.get(key, []))
            for key in ("staff", "overrides", "global_tasks", "patients", "wards")
        },
        "path": str(target.resolve()),
    }
    _json_dump(target / "manifest.json", manifest)
    _json_dump(root / "latest.json", manifest)
    return target


def list_snapshots(artifact_root: Path, limit: int = 20) -> list[dict[str, Any]]:
    return _list_manifests(_root(artifact_root, "snapshots"), limit)


def load_snapshot(artifact_root: Path, snapshot_id: str | None = None) -> dict[str, Any]:
    root = _root(artifact_root, "snapshots")
    manifest_path = root / snapshot_id / "manifest.json" if snapshot_id else root / "latest.json"
    if not manifest_path.exists():
        raise FileNotFoundError("snapshot manifest not found")
    sid = _json_load(manifest_path)["snapshot_id"]
    path = root / sid / "snapshot.json"
    if not path.exists():
        raise FileNotFoundError(f"snapshot payload not found: {sid}")
    return _json_load(path)


# -- Plans (dry-run results) --


def save_plan(artifact_root: Path, plan: dict[str, Any]) -> Path:
    root = _root(artifact_root, "plans")
    pid = plan["plan_id"]
    target = root / pid
    _json_dump(target / "plan.json", plan)

    manifest = {
        "plan_id": pid,
        "snapshot_id": plan.get("snapshot_id"),
        "generated_at": plan.get("generated_at"),
        "shift_date": plan.get("shift_date"),
        "shift": plan.get("shift"),
        "variant": plan.get("variant"),
        "counts": plan.get("metrics", {}),
        "path": str(target.resolve()),
    }
    _json_dump(target / "manifest.json", manifest)
    _json_dump(root / "latest.json", manifest)
    return target


def list_plans(artifact_root: Path, limit: int = 20) -> list[dict[str, Any]]:
    return _list_manifests(_root(artifact_root, "plans"), limit)


def load_plan(artifact_root: Path, plan_id: str | None = None) -> dict[str, Any]:
    root = _root(artifact_root, "plans")
    manifest_path = root / plan_id / "manifest.json" if plan_id else root / "latest.json"
    if not manifest_path.exists():
        raise FileNotFoundError("plan manifest not found")
    pid = _json_load(manifest_path)["plan_id"]
    path = root / pid / "plan.json"
    if not path.exists():
        raise FileNotFoundError(f"plan payload not found: {pid}")
    return _json_load(path)


# -- Committed assignments --


def replace_assignments(
    artifact_root: Path,
    shift_date: str,
    shift: str,
    assignments: list[dict[str, Any]],
) -> Path:
    """Replace (never merge) the committed assignments for a (date, shift)."""
    path = _root(artifact_root, "assignments") / f"{_shift_key(shift_date, shift)}.json"
    _json_dump(
        path,
        {
            "shift_date": shift_date,
            "shift": shift.upper(),
            "committed_at": _now_iso(),
            "assignments": assignments,
        },
    )
    return path


def load_assignments(artifact_root: Path, shift_date: str, shift: str) -> list[dict[str, Any]]:
    path = _root(artifact_root, "assignments") / f"{_shift_key(shift_date, shift)}.json"
    if not path.exists():
        return []
    return _json_load(path).get("assignments", [])


def delete_assignments(artifact_root: Path, shift_date: str, shift: str) -> bool:
    path = _root(artifact_root, "assignments") / f"{_shift_key(shift_date, shift)}.json"
    if not path.exists():
        return False
    path.unlink()
    return True


def load_week_assignments(artifact_root: Path, shift_date: str) -> list[dict[str, Any]]:
    """Committed assignments from the Monday of the week up to and including the date."""
    d = date.fromisoformat(shift_date)
    monday = d - timedelta(days=d.weekday())
    rows: list[dict[str, Any]] = []
    current = monday
    while current <= d:
        for shift in ("AM", "PM"):
            rows.extend(load_assignments(artifact_root, current.isoformat(), shift))
        current += timedelta(days=1)
    return rows


# -- Shift locks --


def get_lock(artifact_root: Path, shift_date: str, shift: str) -> dict[str, Any] | None:
    path = _root(artifact_root, "locks") / f"{_shift_key(shift_date, shift)}.json"
    if not path.exists():
        return None
    return _json_load(path)


def is_shift_locked(artifact_root: Path, shift_date: str, shift: str) -> bool:
    return get_lock(artifact_root, shift_date, shift) is not None


def lock_shift(artifact_root: Path, shift_date: str, shift: str, locked_by: str | None = None) -> dict[str, Any]:
    if is_shift_locked(artifact_root, shift_date, shift):
        raise ValueError(f"Shift {shift_date} {shift} is already locked")
    lock = {
        "shift_date": shift_date,
        "shift": shift.upper(),
        "locked_at": _now_iso(),
        "locked_by": locked_by,
    }
    _json_dump(_root(artifact_root, "locks") / f"{_shift_key(shift_date, shift)}.json", lock)
    return lock


def unlock_shift(artifact_root: Path, shift_date: str, shift: str) -> bool:
    path = _root(artifact_root, "locks") / f"{_shift_key(shift_date, shift)}.json"
    if not path.exists():
        return False
    path.unlink()
    return True


RESERVATION_MAX_AGE_SECONDS = 15 * 60


def _open_reservation(path: Path) -> int:
    return os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)


@contextmanager
def reserve_shift(
    artifact_root: Path,
    shift_date: str,
    shift: str,
    max_age_seconds: float = RESERVATION_MAX_AGE_SECONDS,
) -> Iterator[Path]:
    """Exclusive reservation for a (date, shift) write-back.

    The lock file holds the owner's pid and start time. A file older than
    `max_age_seconds` is left over from a crashed run and is taken over.
    """
    path = _root(artifact_root, "reservations") / f"{_shift_key(shift_date, shift)}.lock"
    try:
        fd = _open_reservation(path)
    except FileExistsError as exc:
        try:
            age = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            age = None
        if age is not None and age <= max_age_seconds:
            raise ReservationBusy(f"Shift {shift_date} {shift} is reserved by another run") from exc
        if age is not None:
            logger.warning("Taking over stale reservation %s (%.0fs old)", path, age)
            path.unlink(missing_ok=True)
        try:
            fd = _open_reservation(path)
        except FileExistsError as retry_exc:
            raise ReservationBusy(f"Shift {shift_date} {shift} is reserved by another run") from retry_exc
    try:
        try:
            os.write(fd, f"{os.getpid()} {_now_iso()}".encode("ascii"))
        finally:
            os.close(fd)
        yield path
    finally:
        path.unlink(missing_ok=True)
