"""Regression tests for application route registration."""
from fastapi.routing import APIRoute

from planify.main import app


def _routes(path: str, method: str) -> list[APIRoute]:
    return [
        route
        for route in app.routes
        if isinstance(route, APIRoute) and route.path == path and method in route.methods
    ]


def test_usage_route_registered_once() -> None:
    assert len(_routes("/usage", "GET")) == 1


def test_gated_ai_routes_registered() -> None:
    for path in ("/ai/categorize", "/ai/refine", "/ai/insights"):
        assert len(_routes(path, "POST")) == 1, path


def test_billing_and_admin_routes_registered() -> None:
    assert len(_routes("/billing/webhooks/stripe", "POST")) == 1
    assert len(_routes("/billing/webhooks/razorpay", "POST")) == 1
    assert len(_routes("/admin/users/{user_id}/tier", "PUT")) == 1
    assert len(_routes("/admin/users/{user_id}/usage/reset", "POST")) == 1


def test_usage_history_and_timezone_routes_registered() -> None:
    assert len(_routes("/usage/history", "GET")) == 1
    assert len(_routes("/users/{user_id}/timezone", "PATCH")) == 1
    assert len(_routes("/users/{user_id}/timezone/auto", "POST")) == 1
