"""Schemas for admin override endpoints."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class TierUpdateRequest(BaseModel):
    tier: str
    status: str | None = Field(default=None, description="Defaults to active for paid tiers.")
    reason: str | None = Field(default=None, max_length=500)


class TierUpdateResponse(BaseModel):
    user_id: UUID
    tier: str
    subscription_status: str | None
    effective_tier: str
    frozen_credits: int
    bonus_credits: int
    request_id: str


class UsageResetRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class UsageResetResponse(BaseModel):
    user_id: UUID
    daily_ai_calls: int
    monthly_ai_calls: int
    daily_resets_at: datetime | None
    monthly_resets_at: datetime | None
    request_id: str
