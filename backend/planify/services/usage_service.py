"""Persisted AI usage counters and tier changes.

Every increment is a single conditional UPDATE (``counter < limit``) so two
requests racing for the last slot cannot both win: the loser sees zero rows
updated, re-reads the row and is re-evaluated. Resets use the same pattern,
guarded on the stored boundary, so concurrent resets are applied once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planify.core.config import settings
from planify.db.models.audit_log import AuditLog
from planify.db.models.user import User
from planify.db.types import as_utc
from planify.observability.metrics import log_metric
from planify.services import entitlements
from planify.services.entitlements import (
    Counter,
    LimitResult,
    TierChange,
    UsageSnapshot,
    next_daily_boundary,
    next_monthly_boundary,
    utc_now,
)
from planify.services.tier_limits import PAID_TIERS, SubscriptionStatus, Tier
from planify.services.user_service import UserNotFoundError, get_or_create_user, get_user

logger = logging.getLogger(__name__)


class UsageStoreError(RuntimeError):
    """Usage counters could not be read or written; callers must deny the action."""


@dataclass(frozen=True)
class Reservation:
    """A charged AI call that can be handed back if the provider call fails."""

    user_id: UUID
    counter: Counter
    period_resets_at: datetime | None


@dataclass(frozen=True)
class UsageOutcome:
    result: LimitResult
    reservation: Reservation | None = None
    charged: LimitResult | None = None

    @property
    def allowed(self) -> bool:
        return self.reservation is not None


def check_limit(db: Session, user_id: UUID, now: datetime | None = None) -> LimitResult:
    """Apply due resets and report whether the next AI call would be allowed."""
    now = as_utc(now) or utc_now()
    try:
        user = get_or_create_user(db, user_id)
        snapshot = _roll_over_persisted(db, user, now)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Usage check failed for user %s", user_id)
        raise UsageStoreError("usage counters unavailable") from exc
    return entitlements.check_limit(snapshot, now)


def record_usage(db: Session, user_id: UUID, now: datetime | None = None) -> UsageOutcome:
    """Atomically check the limit and charge one AI call.

    Returns an outcome whose ``reservation`` is None when the call is denied.
    """
    now = as_utc(now) or utc_now()
    attempts = max(1, settings.usage_increment_attempts)
    try:
        user = get_or_create_user(db, user_id)
        result: LimitResult | None = None
        for attempt in range(attempts):
            snapshot = _roll_over_persisted(db, user, now)
            result = entitlements.check_limit(snapshot, now)
            if not result.allowed:
                db.commit()
                _log_denied(user_id, result)
                return UsageOutcome(result=result)
            if _try_charge(db, user.id, result, now):
                db.commit()
                log_metric("usage.charged", 1, metadata={"tier": result.tier.value, "counter": result.counter.value})
                return UsageOutcome(
                    result=result,
                    reservation=Reservation(
                        user_id=user.id,
                        counter=result.counter,
                        period_resets_at=result.resets_at if result.counter is not Counter.BONUS else None,
                    ),
                    charged=entitlements.after_charge(snapshot, result),
                )
            logger.info("Usage slot taken concurrently for user %s (attempt %s)", user_id, attempt + 1)
            db.commit()

        # Out of attempts; report the latest state as a denial.
        snapshot = _roll_over_persisted(db, user, now)
        db.commit()
        latest = entitlements.check_limit(snapshot, now)
        denied = replace(latest, allowed=False)
        _log_denied(user_id, denied)
        return UsageOutcome(result=denied)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Recording usage failed for user %s", user_id)
        raise UsageStoreError("usage counters unavailable") from exc


def release_usage(db: Session, reservation: Reservation) -> bool:
    """Hand back a reserved call. A no-op once the counter's period has reset."""
    column = _counter_column(reservation.counter)
    stmt = update(User).where(User.id == reservation.user_id)
    if reservation.counter is Counter.BONUS:
        stmt = stmt.values({column: column + 1})
    else:
        reset_column = _reset_column(reservation.counter)
        stmt = stmt.where(column > 0, reset_column == reservation.period_resets_at).values({column: column - 1})
    try:
        released = db.execute(stmt.execution_options(synchronize_session=False)).rowcount == 1
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Releasing reservation failed for user %s", reservation.user_id)
        raise UsageStoreError("usage counters unavailable") from exc
    if released:
        logger.info("Released %s usage reservation for user %s", reservation.counter.value, reservation.user_id)
        log_metric("usage.released", 1, metadata={"counter": reservation.counter.value})
    return released


def apply_tier_change(
    db: Session,
    user_id: UUID,
    new_tier: Tier,
    new_status: SubscriptionStatus | None,
    *,
    now: datetime | None = None,
    source: str,
    actor: str = "system",
    reason: str | None = None,
    create_missing: bool = False,
    provider: str | None = None,
    subscription_id: str | None = None,
    current_period_end: datetime | None = None,
    extra: dict[str, Any] | None = None,
) -> TierChange:
    """Switch a user's tier/status immediately, freezing or restoring credits."""
    now = as_utc(now) or utc_now()
    try:
        if create_missing:
            get_or_create_user(db, user_id)
        user = get_user(db, user_id, for_update=True)
        change = entitlements.apply_tier_change(UsageSnapshot.from_user(user), new_tier, new_status, now)
        _write_snapshot(user, change.snapshot)
        if provider:
            user.subscription_provider = provider
        if subscription_id:
            user.subscription_id = subscription_id
        if current_period_end is not None:
            user.current_period_end = as_utc(current_period_end)

        db.add(
            AuditLog(
                user_id=user.id,
                action_type="tier_changed",
                action_payload={
                    "source": source,
                    "tier": new_tier.value,
                    "status": new_status.value if new_status else None,
                    "previous_effective_tier": change.previous_tier.value,
                    "effective_tier": change.new_tier.value,
                    "direction": "upgrade" if change.is_upgrade else "downgrade" if change.is_downgrade else "lateral",
                    "frozen_credits": change.frozen_credits,
                    "restored_credits": change.restored_credits,
                    **(extra or {}),
                },
                reason=reason or "Tier changed",
                actor=actor,
            )
        )
        db.commit()
    except UserNotFoundError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Tier change failed for user %s", user_id)
        raise UsageStoreError("tier change could not be persisted") from exc

    logger.info(
        "Tier change for user %s via %s: %s -> %s (frozen=%s restored=%s)",
        user_id,
        source,
        change.previous_tier.value,
        change.new_tier.value,
        change.frozen_credits,
        change.restored_credits,
    )
    log_metric("tier.changed", 1, metadata={"source": source, "direction": change.direction})
    return change


def set_tier(
    db: Session,
    user_id: UUID,
    tier: Tier,
    status: SubscriptionStatus | None = None,
    *,
    actor: str,
    now: datetime | None = None,
    reason: str | None = None,
) -> TierChange:
    """Admin override. Paid tiers default to an active subscription."""
    if status is None and tier in PAID_TIERS:
        status = SubscriptionStatus.ACTIVE
    return apply_tier_change(
        db,
        user_id,
        tier,
        status,
        now=now,
        source="admin",
        actor=actor,
        reason=reason or "Admin tier override",
    )


def reset_usage(
    db: Session,
    user_id: UUID,
    *,
    actor: str,
    now: datetime | None = None,
    reason: str | None = None,
) -> User:
    """Admin override: zero both counters and restart both periods from now."""
    now = as_utc(now) or utc_now()
    try:
        user = get_user(db, user_id, for_update=True)
        previous = {"daily_ai_calls": user.daily_ai_calls, "monthly_ai_calls": user.monthly_ai_calls}
        user.daily_ai_calls = 0
        user.monthly_ai_calls = 0
        user.daily_ai_calls_reset_at = next_daily_boundary(now, user.timezone)
        user.monthly_ai_calls_reset_at = next_monthly_boundary(now, user.timezone)
        db.add(
            AuditLog(
                user_id=user.id,
                action_type="usage_reset",
                action_payload={"source": "admin", "previous": previous},
                reason=reason or "Admin usage reset",
                actor=actor,
            )
        )
        db.commit()
        db.refresh(user)
    except UserNotFoundError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Usage reset failed for user %s", user_id)
        raise UsageStoreError("usage reset could not be persisted") from exc

    logger.info("Usage reset for user %s by %s", user_id, actor)
    return user


def expire_lapsed_subscriptions(db: Session, now: datetime | None = None) -> int:
    """Mark active paid subscriptions past their paid-through date (plus grace) as past_due."""
    now = as_utc(now) or utc_now()
    cutoff = now - timedelta(hours=settings.subscription_grace_hours)
    rows = (
        db.query(User.id)
        .filter(
            User.subscription_status == SubscriptionStatus.ACTIVE.value,
            User.tier.in_([tier.value for tier in PAID_TIERS]),
            User.current_period_end.isnot(None),
            User.current_period_end < cutoff,
        )
        .all()
    )
    expired = 0
    for (user_id,) in rows:
        user = db.get(User, user_id)
        tier = Tier(user.tier)
        try:
            apply_tier_change(
                db,
                user_id,
                tier,
                SubscriptionStatus.PAST_DUE,
                now=now,
                source="expiry_sweep",
                reason="Subscription period ended without renewal",
            )
        except UsageStoreError:
            continue
        expired += 1
    return expired


def _roll_over_persisted(db: Session, user: User, now: datetime) -> UsageSnapshot:
    """Persist any due resets with guarded updates and return the fresh snapshot."""
    db.refresh(user)
    current = UsageSnapshot.from_user(user)
    rolled = entitlements.roll_over(current, now)
    if rolled == current:
        return current

    pairs = (
        (User.daily_ai_calls, User.daily_ai_calls_reset_at, current.daily_ai_calls_reset_at, rolled.daily_ai_calls_reset_at),
        (User.monthly_ai_calls, User.monthly_ai_calls_reset_at, current.monthly_ai_calls_reset_at, rolled.monthly_ai_calls_reset_at),
    )
    for counter_column, reset_column, previous, boundary in pairs:
        if previous == boundary:
            continue
        stmt = update(User).where(User.id == user.id)
        if previous is None:
            stmt = stmt.where(reset_column.is_(None)).values({reset_column: boundary})
        else:
            stmt = stmt.where(reset_column <= now).values({counter_column: 0, reset_column: boundary})
        db.execute(stmt.execution_options(synchronize_session=False))

    db.refresh(user)
    return UsageSnapshot.from_user(user)


def _try_charge(db: Session, user_id: UUID, result: LimitResult, now: datetime) -> bool:
    column = _counter_column(result.counter)
    stmt = update(User).where(User.id == user_id)
    if result.counter is Counter.BONUS:
        stmt = stmt.where(column > 0).values({column: column - 1})
    else:
        stmt = stmt.where(_reset_column(result.counter) > now)
        if result.limit is not None:
            stmt = stmt.where(column < result.limit)
        stmt = stmt.values({column: column + 1})
    return db.execute(stmt.execution_options(synchronize_session=False)).rowcount == 1


def _write_snapshot(user: User, snapshot: UsageSnapshot) -> None:
    user.tier = snapshot.tier
    user.subscription_status = snapshot.subscription_status
    user.daily_ai_calls = snapshot.daily_ai_calls
    user.monthly_ai_calls = snapshot.monthly_ai_calls
    user.daily_ai_calls_reset_at = snapshot.daily_ai_calls_reset_at
    user.monthly_ai_calls_reset_at = snapshot.monthly_ai_calls_reset_at
    user.frozen_pro_credits = snapshot.frozen_pro_credits
    user.bonus_ai_credits = snapshot.bonus_ai_credits


def _counter_column(counter: Counter):
    if counter is Counter.DAILY:
        return User.daily_ai_calls
    if counter is Counter.MONTHLY:
        return User.monthly_ai_calls
    return User.bonus_ai_credits


def _reset_column(counter: Counter):
    if counter is Counter.MONTHLY:
        return User.monthly_ai_calls_reset_at
    return User.daily_ai_calls_reset_at


def _log_denied(user_id: UUID, result: LimitResult) -> None:
    logger.info(
        "AI call denied for user %s: %s %s/%s (resets %s)",
        user_id,
        result.limit_type.value,
        result.current_usage,
        result.limit,
        result.resets_at,
    )
    log_metric("usage.denied", 1, metadata={"tier": result.tier.value, "limit_type": result.limit_type.value})
