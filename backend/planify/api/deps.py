"""Shared FastAPI dependencies for tier-gated routes."""
from __future__ import annotations

import logging
from typing import Callable
from uuid import UUID

from fastapi import Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from planify.db.deps import get_db
from planify.db.models.user import User
from planify.services.tier_limits import Tier, effective_tier, meets_tier

logger = logging.getLogger(__name__)

UPGRADE_URL = "/upgrade"


def require_tier(required: Tier) -> Callable[..., User]:
    """Build a dependency that lets the request through only at ``required`` or above.

    The caller's effective tier is used, so a paid tier without an active
    subscription is gated as free.
    """

    def dependency(
        user_id: UUID = Query(..., description="User ID"),
        db: Session = Depends(get_db),
    ) -> User:
        user = db.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        current = effective_tier(user.tier, user.subscription_status, user_id=user_id)
        if not meets_tier(current, required):
            logger.info("User %s on %s needs %s", user_id, current.value, required.value)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "Upgrade required",
                    "required_tier": required.value,
                    "current_tier": current.value,
                    "upgrade_url": UPGRADE_URL,
                },
            )
        return user

    return dependency
