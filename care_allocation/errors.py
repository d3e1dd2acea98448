"""Run-aborting conditions raised by the allocation engine."""

from __future__ import annotations


class AllocationError(Exception):
    """Base class for allocation precondition failures."""


class ShiftLocked(AllocationError):
    def __init__(self, shift_date: str, shift: str) -> None:
        super().__init__(f"Shift {shift_date} {shift} is locked")
        self.shift_date = shift_date
        self.shift = shift


class NoStaffAvailable(AllocationError):
    def __init__(self, shift_date: str, shift: str) -> None:
        super().__init__(f"No staff available for {shift_date} {shift}")
        self.shift_date = shift_date
        self.shift = shift
