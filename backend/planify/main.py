"""Main FastAPI application for the Planify backend."""
from fastapi import FastAPI, Request

from planify.api.routes.admin import router as admin_router
from planify.api.routes.ai import router as ai_router
from planify.api.routes.billing import router as billing_router
from planify.api.routes.jobs import router as jobs_router
from planify.api.routes.usage import router as usage_router
from planify.api.routes.users import router as users_router
from planify.core.config import settings
from planify.core.logging import configure_logging
from planify.core.middleware import RequestIDMiddleware
from planify.observability.client import init_opik
from planify.observability.tracing import trace

configure_logging(log_level=settings.log_level, access_log=settings.access_log_enabled)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(usage_router)
app.include_router(ai_router)
app.include_router(billing_router)
app.include_router(admin_router)
app.include_router(jobs_router)
app.include_router(users_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
