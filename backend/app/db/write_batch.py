"""Bounded write batches.

Bulk mutations are split into commits of at most ``limit`` operations (500 by
default) so a long reconciliation pass never holds one huge transaction.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import SyncWriteError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 500


class WriteBatch:
    """Collects writes and commits in chunks of at most ``limit`` operations."""

    def __init__(self, db: Session, *, limit: int = DEFAULT_BATCH_LIMIT, auto_flush: bool = True):
        if limit < 1:
            raise ValueError("WriteBatch limit must be at least 1")
        self.db = db
        self.limit = limit
        self.auto_flush = auto_flush
        self.pending = 0
        self.committed = 0
        self.commits = 0

    def add(self, instance: Any) -> None:
        self.db.add(instance)
        self._record()

    def delete(self, instance: Any) -> None:
        self.db.delete(instance)
        self._record()

    def update(self, instance: Any) -> None:
        # Dirty attributes are tracked by the session already; count the op.
        self.db.add(instance)
        self._record()

    def _record(self) -> None:
        self.pending += 1
        if self.auto_flush and self.pending >= self.limit:
            self.commit()

    def commit(self) -> int:
        """Commit pending operations; returns how many were written."""
        if not self.pending:
            return 0
        count = self.pending
        try:
            self.db.commit()
        except Exception as exc:
            self.db.rollback()
            self.pending = 0
            raise SyncWriteError(f"Batch commit of {count} operations failed: {exc}") from exc
        self.pending = 0
        self.committed += count
        self.commits += 1
        logger.debug("Committed write batch of %s operations", count)
        return count

    def __enter__(self) -> "WriteBatch":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.db.rollback()
            self.pending = 0
