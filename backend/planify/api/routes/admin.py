"""Privileged admin overrides for tiers and usage counters."""
from __future__ import annotations

import hmac
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from planify.api.schemas.admin import (
    TierUpdateRequest,
    TierUpdateResponse,
    UsageResetRequest,
    UsageResetResponse,
)
from planify.core.config import settings
from planify.db.deps import get_db
from planify.observability.tracing import trace
from planify.services import usage_service
from planify.services.tier_limits import parse_status, parse_tier
from planify.services.usage_service import UsageStoreError
from planify.services.user_service import UserNotFoundError

router = APIRouter(prefix="/admin")


def require_admin(
    x_admin_token: str | None = Header(default=None),
    x_admin_actor: str | None = Header(default=None),
) -> str:
    """Check the admin token and return the acting admin's name for the audit log."""
    expected = settings.admin_api_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API is disabled")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin token")
    return f"admin:{x_admin_actor}" if x_admin_actor else "admin"


@router.post("/users/{user_id}/usage/reset", response_model=UsageResetResponse, tags=["admin"])
def reset_user_usage(
    user_id: UUID,
    http_request: Request,
    payload: UsageResetRequest | None = None,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> UsageResetResponse:
    request_id = getattr(http_request.state, "request_id", None)
    with trace("admin.usage_reset", metadata={"actor": actor}, user_id=str(user_id), request_id=request_id):
        try:
            user = usage_service.reset_usage(
                db,
                user_id,
                actor=actor,
                reason=payload.reason if payload else None,
            )
        except UserNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc
        except UsageStoreError as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Please try again") from exc

    return UsageResetResponse(
        user_id=user.id,
        daily_ai_calls=user.daily_ai_calls,
        monthly_ai_calls=user.monthly_ai_calls,
        daily_resets_at=user.daily_ai_calls_reset_at,
        monthly_resets_at=user.monthly_ai_calls_reset_at,
        request_id=request_id or "",
    )


@router.put("/users/{user_id}/tier", response_model=TierUpdateResponse, tags=["admin"])
def set_user_tier(
    user_id: UUID,
    payload: TierUpdateRequest,
    http_request: Request,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TierUpdateResponse:
    tier = parse_tier(payload.tier)
    if tier is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown tier {payload.tier!r}")
    subscription_status = parse_status(payload.status) if payload.status else None
    if payload.status and subscription_status is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown status {payload.status!r}")

    request_id = getattr(http_request.state, "request_id", None)
    with trace(
        "admin.set_tier",
        metadata={"actor": actor, "tier": tier.value},
        user_id=str(user_id),
        request_id=request_id,
    ):
        try:
            change = usage_service.set_tier(
                db,
                user_id,
                tier,
                subscription_status,
                actor=actor,
                reason=payload.reason,
            )
        except UserNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc
        except UsageStoreError as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Please try again") from exc

    snapshot = change.snapshot
    return TierUpdateResponse(
        user_id=user_id,
        tier=snapshot.tier,
        subscription_status=snapshot.subscription_status,
        effective_tier=change.new_tier.value,
        frozen_credits=snapshot.frozen_pro_credits,
        bonus_credits=snapshot.bonus_ai_credits,
        request_id=request_id or "",
    )
