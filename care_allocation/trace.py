"""Audit trace returned alongside an allocation plan.

Soft conditions never abort a run; they are collected here so an operator
can see which slots were forced onto an over-capacity member, which were
dropped, and which tasks were skipped during derivation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

CAPACITY_EXCEEDED = "capacity_exceeded"
TIME_COLLISION = "time_collision"
UNASSIGNED_SLOT = "unassigned_slot"
WARD_WITHOUT_STAFF = "ward_without_staff"
INACTIVE_WARD = "inactive_ward"
MALFORMED_DURATION = "malformed_duration"
ZERO_DURATION = "zero_duration"
UNKNOWN_SHIFT = "unknown_shift"


@dataclass
class AuditTrace:
    staff_decisions: list[dict[str, Any]] = field(default_factory=list)
    task_queues: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)

    def add(self, kind: str, **detail: Any) -> dict[str, Any]:
        event = {"kind": kind, **detail}
        self.events.append(event)
        return event

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e["kind"] == kind]

    def as_dict(self) -> dict[str, Any]:
        return {
            "staff_decisions": list(self.staff_decisions),
            "task_queues": {k: list(v) for k, v in self.task_queues.items()},
            "events": list(self.events),
        }
