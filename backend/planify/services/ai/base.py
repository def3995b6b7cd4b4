"""AI provider interface and result models."""
from __future__ import annotations

from pydantic import BaseModel, Field


class AIProviderError(RuntimeError):
    """The AI provider failed or returned something unusable."""


class TaskCategorization(BaseModel):
    title: str
    category: str = "general"
    priority: str = Field(default="medium", pattern="^(low|medium|high)$")
    tags: list[str] = Field(default_factory=list, max_length=5)
    estimated_minutes: int = Field(default=30, ge=5)


class RefinedSubtask(BaseModel):
    title: str
    description: str = ""
    priority: str = Field(default="medium", pattern="^(low|medium|high)$")
    estimated_minutes: int = Field(default=30, ge=5)


class TaskRefinement(BaseModel):
    refined_tasks: list[RefinedSubtask] = Field(..., min_length=1, max_length=5)
    insights: str = ""
    suggestions: list[str] = Field(default_factory=list)


class ProductivityInsights(BaseModel):
    summary: str
    insights: list[str] = Field(default_factory=list)
    focus_suggestion: str | None = None


class AIProvider:
    """Base interface for AI providers used by the AI action endpoints."""

    name = "base"

    def categorize_task(self, text: str) -> TaskCategorization:
        raise NotImplementedError

    def refine_task(self, task: str, query: str, context: str | None = None) -> TaskRefinement:
        raise NotImplementedError

    def generate_insights(self, tasks: list[str]) -> ProductivityInsights:
        raise NotImplementedError
