"""AI action API routes, gated by the caller's usage entitlement."""
from __future__ import annotations

from typing import Callable, TypeVar
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from planify.api.schemas.ai import (
    CategorizeRequest,
    CategorizeResponse,
    InsightsRequest,
    InsightsResponse,
    RefineRequest,
    RefineResponse,
)
from planify.api.schemas.usage import LimitExceededResponse, UsageSummary
from planify.db.deps import get_db
from planify.services.ai.base import AIProvider, AIProviderError
from planify.services.ai.factory import get_ai_provider
from planify.services.ai_actions import AIActionOutcome, run_ai_action
from planify.services.entitlements import LimitResult
from planify.services.usage_service import UsageStoreError

router = APIRouter()

LIMIT_RESPONSES = {status.HTTP_429_TOO_MANY_REQUESTS: {"model": LimitExceededResponse}}

ResultT = TypeVar("ResultT")


@router.post("/ai/categorize", response_model=CategorizeResponse, responses=LIMIT_RESPONSES, tags=["ai"])
def categorize_task(
    payload: CategorizeRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    provider: AIProvider = Depends(get_ai_provider),
):
    """Categorize a free-text task (consumes one AI call)."""
    text = payload.text.strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="text must not be empty")

    request_id = getattr(http_request.state, "request_id", None)
    outcome, denied = _run(db, payload.user_id, "categorize", lambda: provider.categorize_task(text), request_id)
    if denied is not None:
        return denied
    return CategorizeResponse(
        result=outcome.result,
        usage=UsageSummary.from_result(outcome.usage),
        request_id=request_id or "",
    )


@router.post("/ai/refine", response_model=RefineResponse, responses=LIMIT_RESPONSES, tags=["ai"])
def refine_task(
    payload: RefineRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    provider: AIProvider = Depends(get_ai_provider),
):
    """Break a task into subtasks through a conversational request (consumes one AI call)."""
    task = payload.task.strip()
    query = payload.query.strip()
    if not task or not query:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="task and query are required")

    request_id = getattr(http_request.state, "request_id", None)
    outcome, denied = _run(
        db,
        payload.user_id,
        "refine",
        lambda: provider.refine_task(task, query, payload.context),
        request_id,
    )
    if denied is not None:
        return denied
    return RefineResponse(
        result=outcome.result,
        usage=UsageSummary.from_result(outcome.usage),
        request_id=request_id or "",
    )


@router.post("/ai/insights", response_model=InsightsResponse, responses=LIMIT_RESPONSES, tags=["ai"])
def generate_insights(
    payload: InsightsRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    provider: AIProvider = Depends(get_ai_provider),
):
    """Summarize a task list into productivity insights (consumes one AI call)."""
    tasks = [task.strip() for task in payload.tasks if task and task.strip()]
    request_id = getattr(http_request.state, "request_id", None)
    outcome, denied = _run(db, payload.user_id, "insights", lambda: provider.generate_insights(tasks), request_id)
    if denied is not None:
        return denied
    return InsightsResponse(
        result=outcome.result,
        usage=UsageSummary.from_result(outcome.usage),
        request_id=request_id or "",
    )


def _run(
    db: Session,
    user_id: UUID,
    action: str,
    call: Callable[[], ResultT],
    request_id: str | None,
) -> tuple[AIActionOutcome[ResultT] | None, JSONResponse | None]:
    try:
        outcome = run_ai_action(db, user_id, action, call, request_id=request_id)
    except UsageStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not verify AI usage. Please try again.",
        ) from exc
    except AIProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="The AI service is unavailable right now. You were not charged for this request.",
        ) from exc

    if not outcome.allowed:
        return None, _limit_exceeded(outcome.usage, request_id)
    return outcome, None


def _limit_exceeded(result: LimitResult, request_id: str | None) -> JSONResponse:
    body = LimitExceededResponse(
        error="AI usage limit reached",
        tier=result.tier.value,
        limit_type=result.limit_type.value,
        current_usage=result.current_usage,
        limit=result.limit,
        resets_at=result.resets_at,
        using_monthly_pool=result.using_monthly_pool,
        request_id=request_id or "",
    )
    return JSONResponse(status_code=status.HTTP_429_TOO_MANY_REQUESTS, content=body.model_dump(mode="json"))
