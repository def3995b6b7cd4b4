"""Schemas for AI usage status and limit responses."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from planify.services.entitlements import LimitResult


class UsageSummary(BaseModel):
    allowed: bool
    tier: str
    limit_type: str
    current_usage: int
    limit: int | None
    resets_at: datetime | None
    using_monthly_pool: bool = False
    bonus_credits: int = 0

    @classmethod
    def from_result(cls, result: LimitResult) -> "UsageSummary":
        return cls(
            allowed=result.allowed,
            tier=result.tier.value,
            limit_type=result.limit_type.value,
            current_usage=result.current_usage,
            limit=result.limit,
            resets_at=result.resets_at,
            using_monthly_pool=result.using_monthly_pool,
            bonus_credits=result.bonus_credits,
        )


class UsageStatusResponse(UsageSummary):
    user_id: UUID
    subscription_tier: str
    subscription_status: str | None
    frozen_credits: int
    request_id: str


class LimitExceededResponse(BaseModel):
    error: str
    tier: str
    limit_type: str
    current_usage: int
    limit: int | None
    resets_at: datetime | None
    using_monthly_pool: bool = False
    request_id: str


class UsageHistoryEntry(BaseModel):
    action_type: str
    action_payload: dict
    reason: str | None
    actor: str
    created_at: datetime


class UsageHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[UsageHistoryEntry]
    request_id: str
