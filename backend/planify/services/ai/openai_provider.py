"""OpenAI-backed AI provider."""
from __future__ import annotations

import json
import logging
from typing import Any, TypeVar

import openai
from pydantic import BaseModel, ValidationError

from planify.core.config import settings
from planify.services.ai.base import (
    AIProvider,
    AIProviderError,
    ProductivityInsights,
    TaskCategorization,
    TaskRefinement,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

CATEGORIZE_PROMPT = (
    "You are a smart task analyzer. Return a JSON object with: title (cleaned up task title), "
    "category (work, personal, health, finance, learning, home or general), priority (low, medium or high), "
    "tags (at most 3 strings) and estimated_minutes (integer)."
)
REFINE_PROMPT = (
    "You are an expert task breakdown assistant. Break the task into 3-5 specific, actionable subtasks. "
    "Return a JSON object with refined_tasks (array of {title, description, priority, estimated_minutes}), "
    "insights (string) and suggestions (array of strings)."
)
INSIGHTS_PROMPT = (
    "You are a productivity coach. Given the user's task list, return a JSON object with summary (string), "
    "insights (array of short strings) and focus_suggestion (the single task to do next)."
)


class OpenAIProvider(AIProvider):
    name = "openai"

    def __init__(self, api_key: str, model: str | None = None, client: Any = None):
        self.model = model or settings.openai_model
        self._client = client or openai.OpenAI(api_key=api_key, timeout=settings.openai_timeout_seconds)

    def categorize_task(self, text: str) -> TaskCategorization:
        return self._complete(CATEGORIZE_PROMPT, text, TaskCategorization)

    def refine_task(self, task: str, query: str, context: str | None = None) -> TaskRefinement:
        user_prompt = f"Task: {task}\nUser request: {query}"
        if context:
            user_prompt += f"\nContext: {context}"
        return self._complete(REFINE_PROMPT, user_prompt, TaskRefinement)

    def generate_insights(self, tasks: list[str]) -> ProductivityInsights:
        listing = "\n".join(f"- {task}" for task in tasks) or "(no tasks)"
        return self._complete(INSIGHTS_PROMPT, f"Tasks:\n{listing}", ProductivityInsights)

    def _complete(self, system_prompt: str, user_prompt: str, model_cls: type[ModelT]) -> ModelT:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                temperature=0.3,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except openai.OpenAIError as exc:
            logger.warning("OpenAI request failed (%s): %s", model_cls.__name__, exc)
            raise AIProviderError("AI provider request failed") from exc

        content = response.choices[0].message.content or "{}"
        try:
            payload: dict[str, Any] = json.loads(content)
            return model_cls.model_validate(payload)
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("OpenAI returned an unusable %s payload: %s", model_cls.__name__, exc)
            raise AIProviderError("AI provider returned an invalid response") from exc
