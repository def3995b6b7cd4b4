"""Schemas for AI action endpoints."""
from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

from planify.api.schemas.usage import UsageSummary
from planify.services.ai.base import ProductivityInsights, TaskCategorization, TaskRefinement


class CategorizeRequest(BaseModel):
    user_id: UUID
    text: str = Field(..., max_length=2000)


class RefineRequest(BaseModel):
    user_id: UUID
    task: str = Field(..., max_length=2000)
    query: str = Field(..., max_length=2000)
    context: str | None = Field(default=None, max_length=4000)


class InsightsRequest(BaseModel):
    user_id: UUID
    tasks: list[str] = Field(default_factory=list, max_length=100)


class CategorizeResponse(BaseModel):
    action: str = "categorize"
    result: TaskCategorization
    usage: UsageSummary
    request_id: str


class RefineResponse(BaseModel):
    action: str = "refine"
    result: TaskRefinement
    usage: UsageSummary
    request_id: str


class InsightsResponse(BaseModel):
    action: str = "insights"
    result: ProductivityInsights
    usage: UsageSummary
    request_id: str
