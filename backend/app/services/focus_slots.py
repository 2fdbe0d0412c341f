"""Daily focus-slot arithmetic."""
from __future__ import annotations


def available_focus_slots(existing_focus_count: int, org_limit: int) -> int:
    """Number of focus slots still free for a user-day."""
    return max(0, org_limit - existing_focus_count)
