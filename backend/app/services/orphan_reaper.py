"""Remove materialized tasks whose program instance no longer exists."""
from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.models.task import Task
from app.db.write_batch import DEFAULT_BATCH_LIMIT, WriteBatch
from app.services.task_sync import PROGRAM_SOURCE

logger = logging.getLogger(__name__)


def reap_orphaned_tasks(
    db: Session,
    valid_instance_ids: Iterable[UUID],
    *,
    batch_limit: int = DEFAULT_BATCH_LIMIT,
) -> int:
    """Delete program-sourced tasks pointing at instances outside ``valid_instance_ids``.

    Deletes are committed in chunks of ``batch_limit``. Runs before slot
    allocation so orphaned focus rows never occupy a user's slots.
    """
    valid = set(valid_instance_ids)
    referenced = {
        row[0]
        for row in db.query(Task.instance_id)
        .filter(Task.instance_id.isnot(None), Task.source == PROGRAM_SOURCE)
        .distinct()
        .all()
    }
    orphaned_ids = sorted(referenced - valid, key=str)
    if not orphaned_ids:
        return 0

    removed = 0
    with WriteBatch(db, limit=batch_limit) as batch:
        for instance_id in orphaned_ids:
            rows = db.query(Task).filter(Task.instance_id == instance_id, Task.source == PROGRAM_SOURCE).all()
            for row in rows:
                batch.delete(row)
            removed += len(rows)
            logger.info("Removing %s tasks of deleted instance %s", len(rows), instance_id)

    logger.info("Orphan reaper removed %s tasks across %s missing instances", removed, len(orphaned_ids))
    return removed
