"""Run AI actions under the caller's usage entitlement."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from time import perf_counter
from typing import Callable, Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from planify.observability.metrics import log_metric
from planify.observability.tracing import trace
from planify.services.entitlements import LimitResult
from planify.services.usage_service import UsageStoreError, record_usage, release_usage

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


@dataclass
class AIActionOutcome(Generic[ResultT]):
    usage: LimitResult
    result: ResultT | None = None

    @property
    def allowed(self) -> bool:
        return self.result is not None


def run_ai_action(
    db: Session,
    user_id: UUID,
    action: str,
    call: Callable[[], ResultT],
    *,
    request_id: str | None = None,
    now: datetime | None = None,
) -> AIActionOutcome[ResultT]:
    """Reserve one AI call, run ``call`` and hand the call back if the provider fails.

    Raises UsageStoreError when usage cannot be recorded (the call is not made)
    and re-raises whatever the provider raised after releasing the reservation.
    """
    metadata = {"action": action, "user_id": str(user_id), "request_id": request_id}
    with trace(f"ai.{action}", metadata=metadata, user_id=str(user_id), request_id=request_id) as span:
        outcome = record_usage(db, user_id, now)
        if span:
            span.update(metadata={**metadata, **outcome.result.as_dict()})
        if not outcome.allowed:
            log_metric("ai.denied", 1, metadata={"action": action, "tier": outcome.result.tier.value})
            return AIActionOutcome(usage=outcome.result)

        start = perf_counter()
        try:
            result = call()
        except Exception:
            _release_quietly(db, outcome.reservation, action)
            log_metric("ai.provider_failed", 1, metadata={"action": action})
            raise

    latency_ms = (perf_counter() - start) * 1000
    log_metric("ai.success", 1, metadata={"action": action, "tier": outcome.result.tier.value})
    log_metric("ai.latency_ms", latency_ms, metadata={"action": action})
    return AIActionOutcome(usage=outcome.charged or outcome.result, result=result)


def _release_quietly(db: Session, reservation, action: str) -> None:
    try:
        release_usage(db, reservation)
    except UsageStoreError:
        # The provider error is what the caller needs to see.
        logger.error("Could not release %s reservation for user %s", action, reservation.user_id)
