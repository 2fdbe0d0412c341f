from __future__ import annotations

import pytest

from app.services.focus_slots import available_focus_slots


@pytest.mark.parametrize(
    "existing, limit, expected",
    [(0, 3, 3), (1, 3, 2), (3, 3, 0), (5, 3, 0), (0, 0, 0)],
)
def test_available_focus_slots_never_negative(existing, limit, expected) -> None:
    assert available_focus_slots(existing, limit) == expected
