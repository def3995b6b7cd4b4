"""Batch job runners."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from planify.services.usage_service import expire_lapsed_subscriptions

logger = logging.getLogger(__name__)


@dataclass
class JobRunResult:
    job: str
    subscriptions_expired: int


def run_expiry_sweep(db: Session, *, now: datetime | None = None) -> JobRunResult:
    """Move lapsed paid subscriptions to past_due so their limits drop to free."""
    expired = expire_lapsed_subscriptions(db, now)
    if expired:
        logger.info("Expiry sweep moved %s subscription(s) to past_due", expired)
    else:
        logger.debug("Expiry sweep found no lapsed subscriptions")
    return JobRunResult(job="expiry_sweep", subscriptions_expired=expired)
