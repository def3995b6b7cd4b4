"""Lightweight metrics helpers."""
from __future__ import annotations

import logging
from typing import Any

from planify.observability import tracing

logger = logging.getLogger(__name__)


def log_metric(name: str, value: float | int, metadata: dict[str, Any] | None = None) -> None:
    """Record a metric as a short-lived Opik trace; no-op when tracing is off."""
    client = tracing.get_opik_client()
    if not client:
        return

    payload: dict[str, Any] = {"value": value}
    if metadata:
        payload.update({k: v for k, v in metadata.items() if v is not None})

    try:
        metric_trace = client.trace(name=f"metric:{name}", metadata=payload)
        metric_trace.end()
    except Exception as exc:  # pragma: no cover - vendor failure
        logger.debug("Unable to record metric %s: %s", name, exc)
