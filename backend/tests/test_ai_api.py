from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from planify.db.deps import get_db
from planify.db.models.audit_log import AuditLog
from planify.db.models.user import User
from planify.main import app
from planify.services import ai_actions
from planify.services.ai.base import AIProviderError, TaskCategorization
from planify.services.ai.factory import get_ai_provider
from planify.services.ai.heuristic import HeuristicAIProvider
from planify.services.usage_service import UsageStoreError


class _RecordingProvider(HeuristicAIProvider):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    def categorize_task(self, text: str) -> TaskCategorization:
        self.calls += 1
        if self.fail:
            raise AIProviderError("upstream timed out")
        return super().categorize_task(text)


@pytest.fixture()
def provider():
    return _RecordingProvider()


@pytest.fixture()
def client(provider):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - sqlite setup
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    AuditLog.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ai_provider] = lambda: provider
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def _seed_user(session_factory, **fields):
    session = session_factory()
    try:
        user_id = uuid4()
        session.add(User(id=user_id, **fields))
        session.commit()
        return user_id
    finally:
        session.close()


def _daily_calls(session_factory, user_id) -> int:
    session = session_factory()
    try:
        return session.get(User, user_id).daily_ai_calls
    finally:
        session.close()


def _categorize(test_client, user_id, text="Email the design team about the launch"):
    return test_client.post("/ai/categorize", json={"user_id": str(user_id), "text": text})


def test_categorize_consumes_one_call(client, provider):
    test_client, session_factory = client
    user_id = uuid4()

    resp = _categorize(test_client, user_id)

    assert resp.status_code == 200
    data = resp.json()
    assert data["action"] == "categorize"
    assert data["result"]["category"]
    assert data["usage"]["current_usage"] == 1
    assert data["usage"]["limit"] == 3
    assert data["usage"]["allowed"] is True
    assert data["request_id"]
    assert provider.calls == 1
    assert _daily_calls(session_factory, user_id) == 1


def test_fourth_free_call_returns_429_with_limit_body(client, provider):
    test_client, _ = client
    user_id = uuid4()
    for _ in range(3):
        assert _categorize(test_client, user_id).status_code == 200

    resp = _categorize(test_client, user_id)

    assert resp.status_code == 429
    body = resp.json()
    assert body["error"]
    assert body["tier"] == "free"
    assert body["limit_type"] == "daily"
    assert body["current_usage"] == 3
    assert body["limit"] == 3
    assert body["resets_at"]
    assert body["request_id"] == resp.headers["X-Request-Id"]
    assert provider.calls == 3


def test_provider_failure_refunds_the_call(client, provider):
    test_client, session_factory = client
    user_id = _seed_user(session_factory)
    provider.fail = True

    resp = _categorize(test_client, user_id)

    assert resp.status_code == 502
    assert "not charged" in resp.json()["detail"]
    assert _daily_calls(session_factory, user_id) == 0


def test_usage_store_outage_denies_without_calling_provider(client, provider, monkeypatch):
    test_client, _ = client

    def unavailable(*args, **kwargs):
        raise UsageStoreError("usage counters unavailable")

    monkeypatch.setattr(ai_actions, "record_usage", unavailable)

    resp = _categorize(test_client, uuid4())

    assert resp.status_code == 503
    assert provider.calls == 0


def test_premium_user_is_not_blocked(client):
    test_client, session_factory = client
    user_id = _seed_user(session_factory, tier="premium_pro", subscription_status="active", daily_ai_calls=500)

    resp = _categorize(test_client, user_id)

    assert resp.status_code == 200
    assert resp.json()["usage"]["limit_type"] == "unlimited"
    assert resp.json()["usage"]["limit"] is None


def test_blank_text_is_rejected_without_charge(client, provider):
    test_client, session_factory = client
    user_id = _seed_user(session_factory)

    resp = _categorize(test_client, user_id, text="   ")

    assert resp.status_code == 422
    assert provider.calls == 0
    assert _daily_calls(session_factory, user_id) == 0


def test_refine_and_insights_share_the_allowance(client):
    test_client, _ = client
    user_id = uuid4()

    refine = test_client.post(
        "/ai/refine",
        json={"user_id": str(user_id), "task": "Plan the offsite", "query": "Break this into steps"},
    )
    insights = test_client.post(
        "/ai/insights",
        json={"user_id": str(user_id), "tasks": ["Write report", "Call vendor", "Review budget"]},
    )

    assert refine.status_code == 200
    assert 1 <= len(refine.json()["result"]["refined_tasks"]) <= 5
    assert insights.status_code == 200
    assert insights.json()["result"]["summary"]
    assert insights.json()["usage"]["current_usage"] == 2


def test_usage_endpoint_reports_remaining_allowance(client):
    test_client, session_factory = client
    user_id = _seed_user(session_factory, tier="basic_pro", subscription_status="active", frozen_pro_credits=4)

    resp = test_client.get("/usage", params={"user_id": str(user_id)})

    assert resp.status_code == 200
    data = resp.json()
    assert data["allowed"] is True
    assert data["tier"] == "basic_pro"
    assert data["subscription_tier"] == "basic_pro"
    assert data["limit_type"] == "monthly"
    assert data["frozen_credits"] == 4
    assert data["resets_at"]


def test_last_allowed_call_reports_the_next_one_as_blocked(client, provider):
    test_client, session_factory = client
    user_id = _seed_user(session_factory, daily_ai_calls=2)

    last = _categorize(test_client, user_id)

    assert last.status_code == 200
    assert last.json()["usage"]["allowed"] is False
    assert last.json()["usage"]["current_usage"] == 3
    assert _categorize(test_client, user_id).status_code == 429
    assert provider.calls == 1
