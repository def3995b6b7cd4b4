from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from planify.db.models.audit_log import AuditLog
from planify.db.models.user import User
from planify.db.types import as_utc
from planify.services import usage_service
from planify.services.entitlements import Counter
from planify.services.tier_limits import SubscriptionStatus, Tier
from planify.services.user_service import UserNotFoundError

NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)
TOMORROW = datetime(2026, 3, 11, tzinfo=timezone.utc)
NEXT_MONTH = datetime(2026, 4, 1, tzinfo=timezone.utc)


def _session_factory(url: str = "sqlite://"):
    kwargs = {"connect_args": {"check_same_thread": False}, "future": True}
    if url == "sqlite://":
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover - sqlite setup
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    AuditLog.__table__.create(bind=engine)
    return TestingSession


@pytest.fixture()
def db_session():
    return _session_factory()


def _seed_user(session_factory, **fields):
    values = {
        "tier": "free",
        "daily_ai_calls_reset_at": TOMORROW,
        "monthly_ai_calls_reset_at": NEXT_MONTH,
    }
    values.update(fields)
    session = session_factory()
    try:
        user_id = uuid4()
        session.add(User(id=user_id, **values))
        session.commit()
        return user_id
    finally:
        session.close()


def _load_user(session_factory, user_id) -> User:
    session = session_factory()
    try:
        user = session.get(User, user_id)
        session.expunge(user)
        return user
    finally:
        session.close()


def test_first_check_creates_free_user_with_boundaries(db_session) -> None:
    user_id = uuid4()
    session = db_session()
    try:
        result = usage_service.check_limit(session, user_id, NOW)
    finally:
        session.close()

    user = _load_user(db_session, user_id)
    assert result.allowed is True
    assert result.tier is Tier.FREE
    assert user.tier == "free"
    assert user.daily_ai_calls == 0
    assert as_utc(user.daily_ai_calls_reset_at) == TOMORROW
    assert as_utc(user.monthly_ai_calls_reset_at) == NEXT_MONTH


def test_free_user_gets_exactly_three_calls(db_session) -> None:
    user_id = _seed_user(db_session)
    session = db_session()
    try:
        outcomes = [usage_service.record_usage(session, user_id, NOW) for _ in range(4)]
    finally:
        session.close()

    assert [outcome.allowed for outcome in outcomes] == [True, True, True, False]
    assert outcomes[-1].reservation is None
    assert outcomes[-1].result.current_usage == 3
    assert _load_user(db_session, user_id).daily_ai_calls == 3


def test_elapsed_boundary_is_persisted_before_check(db_session) -> None:
    user_id = _seed_user(db_session, daily_ai_calls=3, daily_ai_calls_reset_at=NOW - timedelta(hours=1))
    session = db_session()
    try:
        result = usage_service.check_limit(session, user_id, NOW)
    finally:
        session.close()

    user = _load_user(db_session, user_id)
    assert result.allowed is True
    assert user.daily_ai_calls == 0
    assert as_utc(user.daily_ai_calls_reset_at) == TOMORROW


def test_concurrent_requests_for_last_slot_allow_only_one(tmp_path, monkeypatch) -> None:
    session_factory = _session_factory(f"sqlite:///{tmp_path / 'usage.db'}")
    user_id = _seed_user(session_factory, daily_ai_calls=2)
    session_a = session_factory()
    session_b = session_factory()
    original_try_charge = usage_service._try_charge
    raced = {}

    def racing_try_charge(db, charged_user_id, result, now):
        # B has already decided it is allowed; let A take the last slot first.
        if db is session_b and "a" not in raced:
            raced["a"] = usage_service.record_usage(session_a, user_id, NOW)
        return original_try_charge(db, charged_user_id, result, now)

    monkeypatch.setattr(usage_service, "_try_charge", racing_try_charge)
    try:
        outcome_b = usage_service.record_usage(session_b, user_id, NOW)
    finally:
        session_a.close()
        session_b.close()

    assert raced["a"].allowed is True
    assert outcome_b.allowed is False
    assert outcome_b.result.current_usage == 3
    assert _load_user(session_factory, user_id).daily_ai_calls == 3


def test_release_returns_the_reserved_call(db_session) -> None:
    user_id = _seed_user(db_session, daily_ai_calls=1)
    session = db_session()
    try:
        outcome = usage_service.record_usage(session, user_id, NOW)
        assert _load_user(db_session, user_id).daily_ai_calls == 2
        released = usage_service.release_usage(session, outcome.reservation)
    finally:
        session.close()

    assert released is True
    assert _load_user(db_session, user_id).daily_ai_calls == 1


def test_release_after_period_reset_is_a_no_op(db_session) -> None:
    user_id = _seed_user(db_session)
    session = db_session()
    try:
        outcome = usage_service.record_usage(session, user_id, NOW)
        usage_service.record_usage(session, user_id, TOMORROW + timedelta(hours=2))
        released = usage_service.release_usage(session, outcome.reservation)
    finally:
        session.close()

    assert released is False
    assert _load_user(db_session, user_id).daily_ai_calls == 1


def test_bonus_credit_reservation_is_refunded(db_session) -> None:
    user_id = _seed_user(db_session, daily_ai_calls=3, bonus_ai_credits=1)
    session = db_session()
    try:
        outcome = usage_service.record_usage(session, user_id, NOW)
        assert outcome.reservation.counter is Counter.BONUS
        assert _load_user(db_session, user_id).bonus_ai_credits == 0
        assert usage_service.release_usage(session, outcome.reservation) is True
    finally:
        session.close()

    assert _load_user(db_session, user_id).bonus_ai_credits == 1


def test_store_failure_fails_closed(db_session, monkeypatch) -> None:
    user_id = _seed_user(db_session)
    session = db_session()

    def broken_execute(*args, **kwargs):
        raise OperationalError("UPDATE users", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "execute", broken_execute)
    try:
        with pytest.raises(usage_service.UsageStoreError):
            usage_service.record_usage(session, user_id, NOW)
    finally:
        session.close()

    assert _load_user(db_session, user_id).daily_ai_calls == 0


def test_tier_change_freezes_credits_and_writes_audit_log(db_session) -> None:
    user_id = _seed_user(db_session, tier="advanced_pro", subscription_status="active", daily_ai_calls=150)
    session = db_session()
    try:
        change = usage_service.apply_tier_change(
            session,
            user_id,
            Tier.FREE,
            SubscriptionStatus.CANCELLED,
            now=NOW,
            source="test",
        )
        logs = session.query(AuditLog).filter(AuditLog.user_id == user_id).all()
    finally:
        session.close()

    user = _load_user(db_session, user_id)
    assert change.is_downgrade
    assert user.tier == "free"
    assert user.frozen_pro_credits == 50
    assert user.daily_ai_calls == 150
    assert len(logs) == 1
    assert logs[0].action_type == "tier_changed"
    assert logs[0].action_payload["frozen_credits"] == 50
    assert logs[0].action_payload["direction"] == "downgrade"


def test_set_tier_defaults_paid_tiers_to_active(db_session) -> None:
    user_id = _seed_user(db_session, frozen_pro_credits=20)
    session = db_session()
    try:
        change = usage_service.set_tier(session, user_id, Tier.PREMIUM_PRO, actor="admin", now=NOW)
    finally:
        session.close()

    user = _load_user(db_session, user_id)
    assert change.is_upgrade
    assert user.subscription_status == "active"
    assert user.frozen_pro_credits == 0
    assert user.bonus_ai_credits == 20


def test_set_tier_for_unknown_user_raises(db_session) -> None:
    session = db_session()
    try:
        with pytest.raises(UserNotFoundError):
            usage_service.set_tier(session, uuid4(), Tier.BASIC_PRO, actor="admin", now=NOW)
    finally:
        session.close()


def test_reset_usage_zeroes_counters_and_audits(db_session) -> None:
    user_id = _seed_user(db_session, daily_ai_calls=3, monthly_ai_calls=12)
    session = db_session()
    try:
        usage_service.reset_usage(session, user_id, actor="admin:ops", now=NOW, reason="support ticket")
        log = session.query(AuditLog).filter(AuditLog.user_id == user_id).one()
    finally:
        session.close()

    user = _load_user(db_session, user_id)
    assert (user.daily_ai_calls, user.monthly_ai_calls) == (0, 0)
    assert log.action_type == "usage_reset"
    assert log.actor == "admin:ops"
    assert log.action_payload["previous"] == {"daily_ai_calls": 3, "monthly_ai_calls": 12}


def test_expire_lapsed_subscriptions_marks_past_due(db_session) -> None:
    lapsed = _seed_user(
        db_session,
        tier="basic_pro",
        subscription_status="active",
        current_period_end=NOW - timedelta(days=3),
    )
    in_grace = _seed_user(
        db_session,
        tier="basic_pro",
        subscription_status="active",
        current_period_end=NOW - timedelta(hours=2),
    )
    session = db_session()
    try:
        expired = usage_service.expire_lapsed_subscriptions(session, NOW)
    finally:
        session.close()

    assert expired == 1
    assert _load_user(db_session, lapsed).subscription_status == "past_due"
    assert _load_user(db_session, lapsed).frozen_pro_credits > 0
    assert _load_user(db_session, in_grace).subscription_status == "active"
