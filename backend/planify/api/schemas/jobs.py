"""Schemas for job operations endpoints."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class JobRunRequest(BaseModel):
    job: Literal["expiry_sweep"] = "expiry_sweep"


class JobRunResponse(BaseModel):
    job: str
    subscriptions_expired: int
    request_id: str
