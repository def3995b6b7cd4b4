"""Operational endpoints for scheduler jobs."""
from __future__ import annotations

from time import perf_counter

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from planify.api.schemas.jobs import JobRunRequest, JobRunResponse
from planify.core.config import settings
from planify.db.deps import get_db
from planify.observability.metrics import log_metric
from planify.observability.tracing import trace
from planify.services.job_runner import run_expiry_sweep

router = APIRouter()


@router.get("/jobs", tags=["jobs"])
def get_jobs_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    with trace("jobs.config", metadata={"request_id": request_id}, request_id=request_id):
        data = {
            "scheduler_enabled": settings.scheduler_enabled,
            "schedule": {
                "timezone": settings.scheduler_timezone,
                "expiry_sweep_time": f"{settings.expiry_sweep_hour:02d}:{settings.expiry_sweep_minute:02d}",
            },
            "subscription_grace_hours": settings.subscription_grace_hours,
        }
    return {**data, "request_id": request_id or ""}


@router.post("/jobs/run-now", response_model=JobRunResponse, tags=["jobs"])
def run_job_now(
    request: Request,
    payload: JobRunRequest,
    db: Session = Depends(get_db),
) -> JobRunResponse:
    if not settings.debug:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Run-now only allowed in debug mode")

    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    with trace("jobs.run_now", metadata={"job": payload.job}, request_id=request_id):
        result = run_expiry_sweep(db)

    latency_ms = (perf_counter() - start) * 1000
    log_metric("jobs.run_now.success", 1, metadata={"job": payload.job})
    log_metric("jobs.run_now.latency_ms", latency_ms, metadata={"job": payload.job})

    return JobRunResponse(
        job=result.job,
        subscriptions_expired=result.subscriptions_expired,
        request_id=request_id or "",
    )
