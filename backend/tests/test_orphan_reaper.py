from __future__ import annotations

from datetime import date
from uuid import uuid4

from app.services.orphan_reaper import reap_orphaned_tasks


def test_removes_only_program_tasks_of_missing_instances(db, seed) -> None:
    user = seed.user()
    live_instance = uuid4()
    gone_instance = uuid4()
    for position in range(3):
        seed.task(
            user_id=user.id,
            title=f"Gone {position}",
            date=date(2024, 1, 1),
            instance_id=gone_instance,
            instance_task_id=f"t{position}",
            day_index=1,
            source="program",
        )
    seed.task(user_id=user.id, title="Live", date=date(2024, 1, 1), instance_id=live_instance, source="program")
    # A user-sourced row that still points at the old instance is the user's to keep.
    seed.task(user_id=user.id, title="Kept copy", date=date(2024, 1, 1), instance_id=gone_instance, source="user")
    seed.task(user_id=user.id, title="Mine", date=date(2024, 1, 1), source="user")

    removed = reap_orphaned_tasks(db, {live_instance}, batch_limit=2)

    assert removed == 3
    assert sorted(task.title for task in seed.tasks_for(user.id)) == ["Kept copy", "Live", "Mine"]


def test_nothing_to_remove(db, seed) -> None:
    user = seed.user()
    seed.task(user_id=user.id, title="Mine", date=date(2024, 1, 1))

    assert reap_orphaned_tasks(db, set()) == 0
