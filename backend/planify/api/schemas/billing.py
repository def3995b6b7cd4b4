"""Schemas for billing webhook acknowledgements."""
from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class WebhookAck(BaseModel):
    status: Literal["applied", "ignored"]
    provider: str
    event_type: str
    user_id: UUID | None = None
    tier: str | None = None
    subscription_status: str | None = None
    request_id: str
