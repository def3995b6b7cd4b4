from __future__ import annotations

from datetime import datetime, timedelta, timezone
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
from planify.services import usage_service, user_service
from planify.services.user_service import InvalidTimezoneError

NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)
TOMORROW = datetime(2026, 3, 11, tzinfo=timezone.utc)
NEXT_MONTH = datetime(2026, 4, 1, tzinfo=timezone.utc)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    AuditLog.__table__.create(bind=engine)
    return TestingSessionLocal


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _seed_user(session_factory, **fields):
    values = {"tier": "free", "daily_ai_calls_reset_at": TOMORROW, "monthly_ai_calls_reset_at": NEXT_MONTH}
    values.update(fields)
    session = session_factory()
    try:
        user_id = uuid4()
        session.add(User(id=user_id, **values))
        session.commit()
        return user_id
    finally:
        session.close()


def _stored_timezone(session_factory, user_id):
    session = session_factory()
    try:
        return session.get(User, user_id).timezone
    finally:
        session.close()


def test_next_daily_boundary_follows_new_timezone(session_factory) -> None:
    user_id = _seed_user(session_factory, daily_ai_calls=3)
    session = session_factory()
    try:
        update = user_service.set_timezone(session, user_id, "Asia/Kolkata")
        current = usage_service.check_limit(session, user_id, NOW)
        after_reset = usage_service.check_limit(session, user_id, TOMORROW + timedelta(hours=1))
    finally:
        session.close()

    assert update.updated is True
    assert update.timezone == "Asia/Kolkata"
    # The running period keeps its UTC boundary.
    assert current.resets_at == TOMORROW
    assert current.allowed is False
    # 01:00 UTC is 06:30 IST; next IST midnight is 18:30 UTC.
    assert after_reset.resets_at == datetime(2026, 3, 11, 18, 30, tzinfo=timezone.utc)
    assert after_reset.current_usage == 0


def test_unknown_timezone_is_rejected(session_factory) -> None:
    user_id = _seed_user(session_factory)
    session = session_factory()
    try:
        with pytest.raises(InvalidTimezoneError):
            user_service.set_timezone(session, user_id, "Mars/Olympus")
        with pytest.raises(InvalidTimezoneError):
            user_service.set_timezone(session, user_id, "  ")
    finally:
        session.close()

    assert _stored_timezone(session_factory, user_id) is None


def test_timezone_change_is_audited(session_factory) -> None:
    user_id = _seed_user(session_factory, timezone="UTC")
    session = session_factory()
    try:
        user_service.set_timezone(session, user_id, "Europe/Berlin")
        entry = session.query(AuditLog).filter(AuditLog.user_id == user_id).one()
    finally:
        session.close()

    assert entry.action_type == "timezone_changed"
    assert entry.action_payload == {"source": "user", "previous": "UTC", "timezone": "Europe/Berlin"}


def test_patch_timezone_route(client, session_factory):
    user_id = _seed_user(session_factory)

    resp = client.patch(f"/users/{user_id}/timezone", json={"timezone": "America/New_York"})
    bad = client.patch(f"/users/{user_id}/timezone", json={"timezone": "Nowhere/Land"})

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["timezone"] == "America/New_York"
    assert bad.status_code == 422
    assert _stored_timezone(session_factory, user_id) == "America/New_York"


def test_auto_detect_replaces_only_default_timezone(client, session_factory):
    default_user = _seed_user(session_factory, timezone="UTC")
    unset_user = _seed_user(session_factory)
    custom_user = _seed_user(session_factory, timezone="Asia/Tokyo")

    replaced = client.post(f"/users/{default_user}/timezone/auto", json={"timezone": "Asia/Kolkata"})
    filled = client.post(f"/users/{unset_user}/timezone/auto", json={"timezone": "Europe/Paris"})
    kept = client.post(f"/users/{custom_user}/timezone/auto", json={"timezone": "Asia/Kolkata"})

    assert replaced.json()["success"] is True
    assert filled.json()["timezone"] == "Europe/Paris"
    assert kept.status_code == 200
    assert kept.json()["success"] is False
    assert kept.json()["timezone"] == "Asia/Tokyo"
    assert _stored_timezone(session_factory, default_user) == "Asia/Kolkata"
    assert _stored_timezone(session_factory, custom_user) == "Asia/Tokyo"
