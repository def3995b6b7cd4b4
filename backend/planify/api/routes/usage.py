"""AI usage status API routes."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from planify.api.deps import require_tier
from planify.api.schemas.usage import (
    UsageHistoryEntry,
    UsageHistoryResponse,
    UsageStatusResponse,
    UsageSummary,
)
from planify.db.deps import get_db
from planify.db.models.audit_log import AuditLog
from planify.db.models.user import User
from planify.observability.metrics import log_metric
from planify.observability.tracing import trace
from planify.services import usage_service
from planify.services.tier_limits import Tier
from planify.services.usage_service import UsageStoreError

router = APIRouter()


@router.get("/usage", response_model=UsageStatusResponse, tags=["usage"])
def get_usage_status(
    http_request: Request,
    user_id: UUID = Query(..., description="User ID"),
    db: Session = Depends(get_db),
) -> UsageStatusResponse:
    """Report the user's AI allowance so the UI can render limits and upgrade prompts."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace(
        "usage.status",
        metadata={"route": "/usage", "user_id": str(user_id)},
        user_id=str(user_id),
        request_id=request_id,
    ):
        try:
            result = usage_service.check_limit(db, user_id)
        except UsageStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Usage is temporarily unavailable. Please try again.",
            ) from exc
        user = db.get(User, user_id)

    log_metric("usage.status.success", 1, metadata={"tier": result.tier.value})
    summary = UsageSummary.from_result(result)
    return UsageStatusResponse(
        **summary.model_dump(),
        user_id=user_id,
        subscription_tier=user.tier,
        subscription_status=user.subscription_status,
        frozen_credits=user.frozen_pro_credits or 0,
        request_id=request_id or "",
    )


@router.get("/usage/history", response_model=UsageHistoryResponse, tags=["usage"])
def get_usage_history(
    http_request: Request,
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_tier(Tier.BASIC_PRO)),
    db: Session = Depends(get_db),
) -> UsageHistoryResponse:
    """List the user's recent tier changes and usage resets (paid tiers only)."""
    request_id = getattr(http_request.state, "request_id", None)
    rows = (
        db.query(AuditLog)
        .filter(AuditLog.user_id == user.id)
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
        .all()
    )
    return UsageHistoryResponse(
        user_id=user.id,
        entries=[
            UsageHistoryEntry(
                action_type=row.action_type,
                action_payload=row.action_payload or {},
                reason=row.reason,
                actor=row.actor,
                created_at=row.created_at,
            )
            for row in rows
        ],
        request_id=request_id or "",
    )
