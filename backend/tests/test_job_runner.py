from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from planify.db.models.audit_log import AuditLog
from planify.db.models.user import User
from planify.services.job_runner import run_expiry_sweep
from planify.worker import scheduler_main

NOW = datetime(2026, 5, 2, 3, 0, tzinfo=timezone.utc)


def _session():
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

    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    AuditLog.__table__.create(bind=engine)
    return TestingSession


def _seed_user(db_session, **fields):
    session = db_session()
    try:
        user_id = uuid4()
        session.add(User(id=user_id, **fields))
        session.commit()
        return user_id
    finally:
        session.close()


def test_expiry_sweep_only_touches_lapsed_active_subscriptions():
    db_session = _session()
    lapsed = _seed_user(
        db_session,
        tier="premium_pro",
        subscription_status="active",
        current_period_end=NOW - timedelta(days=2),
    )
    renewed = _seed_user(
        db_session,
        tier="premium_pro",
        subscription_status="active",
        current_period_end=NOW + timedelta(days=28),
    )
    cancelled = _seed_user(
        db_session,
        tier="free",
        subscription_status="cancelled",
        current_period_end=NOW - timedelta(days=40),
    )

    session = db_session()
    try:
        result = run_expiry_sweep(session, now=NOW)
        statuses = {user_id: session.get(User, user_id).subscription_status for user_id in (lapsed, renewed, cancelled)}
        actions = session.query(AuditLog).filter(AuditLog.user_id == lapsed).all()
    finally:
        session.close()

    assert result.job == "expiry_sweep"
    assert result.subscriptions_expired == 1
    assert statuses == {lapsed: "past_due", renewed: "active", cancelled: "cancelled"}
    assert [action.action_payload["source"] for action in actions] == ["expiry_sweep"]


def test_expiry_sweep_is_idempotent():
    db_session = _session()
    _seed_user(db_session, tier="basic_pro", subscription_status="active", current_period_end=NOW - timedelta(days=3))

    session = db_session()
    try:
        first = run_expiry_sweep(session, now=NOW)
        second = run_expiry_sweep(session, now=NOW)
    finally:
        session.close()

    assert first.subscriptions_expired == 1
    assert second.subscriptions_expired == 0


def test_scheduler_registers_expiry_sweep_job():
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler_main._register_jobs(scheduler)

    job_ids = [job.id for job in scheduler.get_jobs()]

    assert job_ids == ["subscription_expiry_sweep"]
