"""Error taxonomy for program synchronization.

- DataIntegrityError: an instance or template is malformed or references
  something that no longer exists. The affected enrollment is skipped.
- SyncWriteError: a store write failed for one user. Isolated to that user;
  the next periodic run retries naturally.
- FatalSyncError: the run cannot proceed at all (for example the enrollment
  list cannot be loaded). Only this surfaces as an overall failure.
"""
from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for program synchronization errors."""


class DataIntegrityError(SyncError):
    """Raised when template or instance data cannot be interpreted."""


class SyncWriteError(SyncError):
    """Raised when persisting synchronized rows fails."""


class FatalSyncError(SyncError):
    """Raised when a reconciliation run must abort."""


class NotFoundError(LookupError):
    """Raised when a requested program, instance, enrollment or cohort is missing."""
