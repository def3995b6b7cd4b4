"""Schemas for user preference endpoints."""
from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class TimezoneRequest(BaseModel):
    timezone: str = Field(..., max_length=64, description="IANA timezone name, e.g. Asia/Kolkata.")


class TimezoneResponse(BaseModel):
    success: bool
    user_id: UUID
    timezone: str | None
    request_id: str
