"""AI provider factory."""
from __future__ import annotations

import logging
from functools import lru_cache

from planify.core.config import settings
from planify.services.ai.base import AIProvider
from planify.services.ai.heuristic import HeuristicAIProvider

logger = logging.getLogger(__name__)


@lru_cache
def get_ai_provider() -> AIProvider:
    provider = settings.ai_provider.lower()
    if provider == "openai":
        if settings.openai_api_key:
            from planify.services.ai.openai_provider import OpenAIProvider

            return OpenAIProvider(api_key=settings.openai_api_key)
        logger.warning("AI_PROVIDER is openai but OPENAI_API_KEY is missing; using heuristic provider.")
        return HeuristicAIProvider()
    if provider != "heuristic":
        logger.warning("Unknown AI_PROVIDER %r; using heuristic provider.", provider)
    return HeuristicAIProvider()
