"""Lightweight metrics helpers."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from app.observability.tracing import trace

logger = logging.getLogger(__name__)


def log_metric(name: str, value: float | int, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Record a metric as a short Opik trace; no-op when tracing is disabled."""
    payload: Dict[str, Any] = {"value": value}
    if metadata:
        payload.update(metadata)
    try:
        with trace(f"metric:{name}", metadata=payload):
            pass
    except Exception as exc:  # pragma: no cover - metrics never break callers
        logger.debug("Unable to record metric %s: %s", name, exc)


def log_counters(prefix: str, counters: Mapping[str, float | int], metadata: Optional[Dict[str, Any]] = None) -> None:
    """Emit one metric per counter, e.g. ``program_sync.synced_today``."""
    for key, value in counters.items():
        log_metric(f"{prefix}.{key}", value, metadata=metadata)
