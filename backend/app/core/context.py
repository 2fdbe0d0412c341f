"""Per-request and per-run context utilities."""
from __future__ import annotations

from contextvars import ContextVar

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
sync_run_id_ctx_var: ContextVar[str | None] = ContextVar("sync_run_id", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_sync_run_id() -> str | None:
    """Return the id of the reconciliation run executing in this context."""
    return sync_run_id_ctx_var.get()


def get_correlation_id() -> str | None:
    """Prefer the HTTP request id, fall back to the sync run id."""
    return get_request_id() or get_sync_run_id()
