"""Allocation policy: the knobs that select between engine variants."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any

from .time_utils import DEFAULT_SHIFT_CUTOFF, parse_hhmm_to_minutes

POOL_SCOPES = ("global", "ward")
ORDERINGS = ("priority", "duration")
FACILITY_STRATEGIES = ("single", "per_patient", "chunked")
FAIRNESS_MODES = ("simple", "weekly")

TWO_STAFF_MOBILITY_AIDS = frozenset({
    "hoist",
    "full hoist",
    "standing hoist",
    "2 assist",
    "two assist",
    "assist x2",
})


@dataclass(frozen=True)
class AllocationPolicy:
    pool_scope: str = "global"
    ordering: str = "priority"
    facility_strategy: str = "single"
    fairness: str = "simple"
    shift_cutoff: int = DEFAULT_SHIFT_CUTOFF
    assist_minutes: int = 10
    min_slot_minutes: int = 15
    chunk_minutes: int = 60
    two_staff_mobility_aids: frozenset[str] = TWO_STAFF_MOBILITY_AIDS


def _check_choice(name: str, value: str, allowed: tuple[str, ...]) -> None:
    if value not in allowed:
        raise ValueError(f"Invalid {name}: {value!r}. Choose from {allowed}")


def validate_policy(policy: AllocationPolicy) -> AllocationPolicy:
    _check_choice("pool_scope", policy.pool_scope, POOL_SCOPES)
    _check_choice("ordering", policy.ordering, ORDERINGS)
    _check_choice("facility_strategy", policy.facility_strategy, FACILITY_STRATEGIES)
    _check_choice("fairness", policy.fairness, FAIRNESS_MODES)
    for name in ("assist_minutes", "min_slot_minutes", "chunk_minutes"):
        if int(getattr(policy, name)) <= 0:
            raise ValueError(f"{name} must be positive")
    return policy


def policy_from_dict(values: dict[str, Any] | None, base: AllocationPolicy | None = None) -> AllocationPolicy:
    """Overlay a profile's `policy` dict on top of a base policy.

    `shift_cutoff` may be given as minutes or as an "HH:MM" string.
    Unknown keys are rejected so typos in profile files surface early.
    """
    policy = base or AllocationPolicy()
    if not values:
        return validate_policy(policy)

    known = {f.name for f in fields(AllocationPolicy)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown policy keys: {unknown}")

    updates: dict[str, Any] = dict(values)
    cutoff = updates.get("shift_cutoff")
    if isinstance(cutoff, str):
        parsed = parse_hhmm_to_minutes(cutoff)
        if parsed is None:
            raise ValueError(f"Invalid shift_cutoff: {cutoff!r}")
        updates["shift_cutoff"] = parsed
    if "two_staff_mobility_aids" in updates:
        updates["two_staff_mobility_aids"] = frozenset(
            str(v).strip().lower() for v in updates["two_staff_mobility_aids"]
        )
    return validate_policy(replace(policy, **updates))


def policy_to_dict(policy: AllocationPolicy) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(AllocationPolicy):
        value = getattr(policy, f.name)
        out[f.name] = sorted(value) if isinstance(value, frozenset) else value
    return out
