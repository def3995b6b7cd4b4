"""Keyword-based AI provider used when no LLM is configured."""
from __future__ import annotations

import re
from collections import Counter

from planify.services.ai.base import (
    AIProvider,
    ProductivityInsights,
    RefinedSubtask,
    TaskCategorization,
    TaskRefinement,
)

CATEGORY_KEYWORDS = {
    "work": ["meeting", "report", "email", "client", "deadline", "presentation", "review"],
    "health": ["gym", "run", "doctor", "workout", "yoga", "walk", "meditate"],
    "finance": ["pay", "bill", "invoice", "budget", "tax", "bank"],
    "learning": ["read", "study", "course", "learn", "practice", "research"],
    "home": ["clean", "laundry", "groceries", "cook", "repair", "garden"],
}
URGENT_HINTS = ["urgent", "asap", "today", "deadline", "tonight", "immediately"]
LOW_HINTS = ["someday", "maybe", "eventually", "whenever"]
DURATION_PATTERN = re.compile(r"(\d+)\s*(min|mins|minutes|h|hr|hrs|hours)\b", re.IGNORECASE)


class HeuristicAIProvider(AIProvider):
    name = "heuristic"

    def categorize_task(self, text: str) -> TaskCategorization:
        cleaned = " ".join(text.split())
        lowered = cleaned.lower()
        category = _detect_category(lowered)
        tags = _keywords(lowered)[:3]
        return TaskCategorization(
            title=cleaned[:1].upper() + cleaned[1:],
            category=category,
            priority=_detect_priority(lowered),
            tags=tags,
            estimated_minutes=_detect_duration(lowered),
        )

    def refine_task(self, task: str, query: str, context: str | None = None) -> TaskRefinement:
        base = self.categorize_task(task)
        steps = [
            RefinedSubtask(
                title=f"Clarify the outcome for: {base.title}",
                description="Write one sentence describing what done looks like.",
                priority="high",
                estimated_minutes=10,
            ),
            RefinedSubtask(
                title=f"Do the first focused block on: {base.title}",
                description=query.strip()[:200] or "Work on the core part of the task.",
                priority=base.priority,
                estimated_minutes=max(15, base.estimated_minutes // 2),
            ),
            RefinedSubtask(
                title="Review and wrap up",
                description="Check the result against the outcome and note follow-ups.",
                priority="medium",
                estimated_minutes=10,
            ),
        ]
        return TaskRefinement(
            refined_tasks=steps,
            insights=f"Treating this as a {base.category} task with {base.priority} priority.",
            suggestions=["Schedule the focused block at your most productive time."],
        )

    def generate_insights(self, tasks: list[str]) -> ProductivityInsights:
        if not tasks:
            return ProductivityInsights(summary="No tasks yet. Add a few to get insights.")
        categories = Counter(_detect_category(task.lower()) for task in tasks)
        top_category, top_count = categories.most_common(1)[0]
        urgent = [task for task in tasks if _detect_priority(task.lower()) == "high"]
        insights = [f"{top_count} of {len(tasks)} tasks are {top_category}."]
        if urgent:
            insights.append(f"{len(urgent)} task(s) look urgent.")
        return ProductivityInsights(
            summary=f"You have {len(tasks)} tasks, mostly {top_category}.",
            insights=insights,
            focus_suggestion=urgent[0] if urgent else tasks[0],
        )


def _detect_category(lowered: str) -> str:
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return "general"


def _detect_priority(lowered: str) -> str:
    if any(hint in lowered for hint in URGENT_HINTS):
        return "high"
    if any(hint in lowered for hint in LOW_HINTS):
        return "low"
    return "medium"


def _detect_duration(lowered: str) -> int:
    match = DURATION_PATTERN.search(lowered)
    if not match:
        return 30
    amount = int(match.group(1))
    unit = match.group(2).lower()
    minutes = amount * 60 if unit.startswith("h") else amount
    return max(5, minutes)


def _keywords(lowered: str) -> list[str]:
    found: list[str] = []
    for keywords in CATEGORY_KEYWORDS.values():
        found.extend(keyword for keyword in keywords if keyword in lowered)
    return found
