"""Variant dispatcher for the allocation engine.

One pipeline, several named presets:
  - simple:       one global pool, priority ordering
  - ward:         ward-scoped pools, priority ordering
  - weekly:       ward-scoped pools, least-loaded across the calendar week
  - per_patient:  ward-scoped, facility work repeated per patient
  - volume:       global pool, facility work chunked by ward volume,
                  longest task first
"""

from __future__ import annotations

from typing import Any

from .policy import AllocationPolicy, policy_from_dict

VARIANTS: dict[str, dict[str, Any]] = {
    "simple": {},
    "ward": {"pool_scope": "ward"},
    "weekly": {"pool_scope": "ward", "fairness": "weekly"},
    "per_patient": {"pool_scope": "ward", "facility_strategy": "per_patient"},
    "volume": {"facility_strategy": "chunked", "ordering": "duration"},
}


def variant_policy(variant: str, overrides: dict[str, Any] | None = None) -> AllocationPolicy:
    """Policy for a named variant, with profile overrides applied on top."""
    if variant not in VARIANTS:
        raise ValueError(f"Unknown variant: {variant!r}. Choose from {tuple(VARIANTS)}")
    base = policy_from_dict(VARIANTS[variant])
    return policy_from_dict(overrides, base=base)


def run_variant(
    variant: str,
    snapshot: dict[str, Any],
    *,
    shift_date: str,
    shift: str,
    locked: bool = False,
    history: list[dict[str, Any]] | None = None,
    overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Run the engine under a named variant and return the plan dict."""
    from .allocator import generate_allocation

    policy = variant_policy(variant, overrides)
    plan = generate_allocation(
        snapshot,
        shift_date=shift_date,
        shift=shift,
        policy=policy,
        locked=locked,
        history=history,
    )
    plan["variant"] = variant
    return plan
