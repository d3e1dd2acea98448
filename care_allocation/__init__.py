"""Care-staff allocation engine: task derivation, ordering and greedy assignment."""

from .allocator import explain_assignment, generate_allocation, staff_overview, weekly_minutes_by_staff
from .availability import filter_available_staff
from .errors import AllocationError, NoStaffAvailable, ShiftLocked
from .policy import AllocationPolicy, policy_from_dict
from .tasks import derive_tasks, order_tasks
from .time_utils import intervals_overlap, parse_duration_minutes, parse_hhmm_to_minutes, time_overlap
from .validation import validate_plan
from .variants import VARIANTS, run_variant

__all__ = [
    "AllocationError",
    "AllocationPolicy",
    "NoStaffAvailable",
    "ShiftLocked",
    "VARIANTS",
    "derive_tasks",
    "explain_assignment",
    "filter_available_staff",
    "generate_allocation",
    "intervals_overlap",
    "order_tasks",
    "parse_duration_minutes",
    "parse_hhmm_to_minutes",
    "policy_from_dict",
    "run_variant",
    "staff_overview",
    "time_overlap",
    "validate_plan",
    "weekly_minutes_by_staff",
]
