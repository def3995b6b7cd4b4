"""AI usage entitlement rules.

Everything here is pure: functions take a ``UsageSnapshot`` plus the current
time and return decisions or new snapshots. Persistence and atomicity live in
``planify.services.usage_service``.

Counters reset lazily. Each counter carries the timestamp of its next reset
boundary (midnight, or the first of the month, in the user's timezone); when a
request arrives at or after that boundary the counter is zeroed and the
boundary advanced before anything else is evaluated.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from planify.core.config import settings
from planify.db.types import as_utc
from planify.services.tier_limits import (
    LimitType,
    SubscriptionStatus,
    Tier,
    compare_tiers,
    effective_tier,
    get_limit_profile,
)

logger = logging.getLogger(__name__)


class Counter(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    BONUS = "bonus"


@dataclass(frozen=True)
class UsageSnapshot:
    tier: str | None
    subscription_status: str | None = None
    daily_ai_calls: int = 0
    monthly_ai_calls: int = 0
    daily_ai_calls_reset_at: datetime | None = None
    monthly_ai_calls_reset_at: datetime | None = None
    frozen_pro_credits: int = 0
    bonus_ai_credits: int = 0
    timezone: str | None = None
    user_id: Any = None

    @classmethod
    def from_user(cls, user: Any) -> "UsageSnapshot":
        return cls(
            tier=user.tier,
            subscription_status=user.subscription_status,
            daily_ai_calls=user.daily_ai_calls or 0,
            monthly_ai_calls=user.monthly_ai_calls or 0,
            daily_ai_calls_reset_at=as_utc(user.daily_ai_calls_reset_at),
            monthly_ai_calls_reset_at=as_utc(user.monthly_ai_calls_reset_at),
            frozen_pro_credits=user.frozen_pro_credits or 0,
            bonus_ai_credits=user.bonus_ai_credits or 0,
            timezone=user.timezone,
            user_id=user.id,
        )


@dataclass(frozen=True)
class LimitResult:
    allowed: bool
    tier: Tier
    limit_type: LimitType
    counter: Counter
    current_usage: int
    limit: int | None
    resets_at: datetime | None
    using_monthly_pool: bool = False
    bonus_credits: int = 0

    def as_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "tier": self.tier.value,
            "limit_type": self.limit_type.value,
            "current_usage": self.current_usage,
            "limit": self.limit,
            "resets_at": self.resets_at.isoformat() if self.resets_at else None,
            "using_monthly_pool": self.using_monthly_pool,
            "bonus_credits": self.bonus_credits,
        }


@dataclass(frozen=True)
class TierChange:
    snapshot: UsageSnapshot
    previous_tier: Tier
    new_tier: Tier
    direction: int
    frozen_credits: int
    restored_credits: int

    @property
    def is_downgrade(self) -> bool:
        return self.direction < 0

    @property
    def is_upgrade(self) -> bool:
        return self.direction > 0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def zone_for(name: str | None) -> ZoneInfo:
    """Resolve a user timezone, falling back to the configured default then UTC."""
    for candidate in (name, settings.default_timezone):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r; falling back", candidate)
    return ZoneInfo("UTC")


def next_daily_boundary(now: datetime, tz_name: str | None = None) -> datetime:
    """Next local midnight strictly after ``now``, in UTC."""
    zone = zone_for(tz_name)
    local_day = _aware(now).astimezone(zone).date()
    boundary = datetime.combine(local_day + timedelta(days=1), time(0), tzinfo=zone)
    return boundary.astimezone(timezone.utc)


def next_monthly_boundary(now: datetime, tz_name: str | None = None) -> datetime:
    """Midnight on the first day of the next local calendar month, in UTC."""
    zone = zone_for(tz_name)
    local_day = _aware(now).astimezone(zone).date()
    if local_day.month == 12:
        first = date(local_day.year + 1, 1, 1)
    else:
        first = date(local_day.year, local_day.month + 1, 1)
    return datetime.combine(first, time(0), tzinfo=zone).astimezone(timezone.utc)


def roll_over(snapshot: UsageSnapshot, now: datetime) -> UsageSnapshot:
    """Apply any reset whose boundary has passed.

    A missing boundary (new user) is initialised to the next boundary without
    touching the counter.
    """
    now = _aware(now)
    changes: dict = {}

    daily_at = snapshot.daily_ai_calls_reset_at
    if daily_at is None:
        changes["daily_ai_calls_reset_at"] = next_daily_boundary(now, snapshot.timezone)
    elif now >= daily_at:
        changes["daily_ai_calls"] = 0
        changes["daily_ai_calls_reset_at"] = next_daily_boundary(now, snapshot.timezone)

    monthly_at = snapshot.monthly_ai_calls_reset_at
    if monthly_at is None:
        changes["monthly_ai_calls_reset_at"] = next_monthly_boundary(now, snapshot.timezone)
    elif now >= monthly_at:
        changes["monthly_ai_calls"] = 0
        changes["monthly_ai_calls_reset_at"] = next_monthly_boundary(now, snapshot.timezone)

    return replace(snapshot, **changes) if changes else snapshot


def check_limit(snapshot: UsageSnapshot, now: datetime) -> LimitResult:
    """Decide whether one more AI call is allowed right now."""
    return _decide(roll_over(snapshot, now))


def record_usage(snapshot: UsageSnapshot, now: datetime) -> tuple[LimitResult, UsageSnapshot]:
    """Reset if due, then charge one call to the counter ``check_limit`` picks."""
    rolled = roll_over(snapshot, now)
    result = _decide(rolled)
    if not result.allowed:
        return result, rolled
    return result, charge(rolled, result.counter)


def after_charge(snapshot: UsageSnapshot, result: LimitResult) -> LimitResult:
    """The caller's view once ``result``'s call is charged to ``snapshot``.

    Counts include the charged call and ``allowed`` answers for the next call,
    which may spill into the monthly pool or bonus credits.
    """
    charged = charge(snapshot, result.counter)
    following = _decide(charged)
    usage = result.current_usage if result.counter is Counter.BONUS else result.current_usage + 1
    return replace(
        result,
        allowed=following.allowed,
        current_usage=usage,
        bonus_credits=charged.bonus_ai_credits,
    )


def charge(snapshot: UsageSnapshot, counter: Counter, amount: int = 1) -> UsageSnapshot:
    if counter is Counter.DAILY:
        return replace(snapshot, daily_ai_calls=max(0, snapshot.daily_ai_calls + amount))
    if counter is Counter.MONTHLY:
        return replace(snapshot, monthly_ai_calls=max(0, snapshot.monthly_ai_calls + amount))
    return replace(snapshot, bonus_ai_credits=max(0, snapshot.bonus_ai_credits - amount))


def unused_allowance(tier: Tier, snapshot: UsageSnapshot) -> int:
    """Calls left in the current period for ``tier``, capped for unlimited tiers."""
    profile = get_limit_profile(tier)
    if profile.unlimited:
        return max(0, settings.frozen_credits_cap - snapshot.daily_ai_calls)
    if profile.limit_type is LimitType.MONTHLY:
        return max(0, (profile.monthly_limit or 0) - snapshot.monthly_ai_calls)
    return max(0, (profile.daily_limit or 0) - snapshot.daily_ai_calls)


def apply_tier_change(
    snapshot: UsageSnapshot,
    new_tier: Tier,
    new_status: SubscriptionStatus | None,
    now: datetime,
) -> TierChange:
    """Move a user to a new tier/status, freezing or restoring credits.

    Direction is judged on effective tiers, so losing an active subscription
    counts as a downgrade even when the stored tier does not change. Usage
    counters are never altered here.
    """
    rolled = roll_over(snapshot, now)
    status_value = new_status.value if new_status else None
    old_effective = effective_tier(rolled.tier, rolled.subscription_status, user_id=rolled.user_id)
    new_effective = effective_tier(new_tier.value, status_value, user_id=rolled.user_id)
    direction = compare_tiers(old_effective, new_effective)

    frozen = rolled.frozen_pro_credits
    bonus = rolled.bonus_ai_credits
    frozen_delta = 0
    restored = 0
    cap = settings.frozen_credits_cap
    if direction < 0:
        target = min(cap, frozen + unused_allowance(old_effective, rolled) + bonus)
        frozen_delta = max(0, target - frozen)
        frozen = target
        bonus = 0
    elif direction > 0 and frozen > 0:
        restored = frozen
        bonus += frozen
        frozen = 0

    updated = replace(
        rolled,
        tier=new_tier.value,
        subscription_status=status_value,
        frozen_pro_credits=frozen,
        bonus_ai_credits=bonus,
    )
    return TierChange(
        snapshot=updated,
        previous_tier=old_effective,
        new_tier=new_effective,
        direction=direction,
        frozen_credits=frozen_delta,
        restored_credits=restored,
    )


def _decide(snapshot: UsageSnapshot) -> LimitResult:
    tier = effective_tier(snapshot.tier, snapshot.subscription_status, user_id=snapshot.user_id)
    profile = get_limit_profile(tier)
    daily = snapshot.daily_ai_calls
    monthly = snapshot.monthly_ai_calls
    bonus = snapshot.bonus_ai_credits

    if profile.unlimited:
        return LimitResult(
            allowed=True,
            tier=tier,
            limit_type=profile.limit_type,
            counter=Counter.DAILY,
            current_usage=daily,
            limit=None,
            resets_at=snapshot.daily_ai_calls_reset_at,
            bonus_credits=bonus,
        )

    if profile.limit_type is LimitType.MONTHLY and daily >= (profile.daily_limit or 0):
        result = LimitResult(
            allowed=monthly < (profile.monthly_limit or 0),
            tier=tier,
            limit_type=profile.limit_type,
            counter=Counter.MONTHLY,
            current_usage=monthly,
            limit=profile.monthly_limit,
            resets_at=snapshot.monthly_ai_calls_reset_at,
            using_monthly_pool=True,
            bonus_credits=bonus,
        )
    else:
        result = LimitResult(
            allowed=daily < (profile.daily_limit or 0),
            tier=tier,
            limit_type=profile.limit_type,
            counter=Counter.DAILY,
            current_usage=daily,
            limit=profile.daily_limit,
            resets_at=snapshot.daily_ai_calls_reset_at,
            bonus_credits=bonus,
        )

    if not result.allowed and bonus > 0:
        return replace(result, allowed=True, counter=Counter.BONUS)
    return result


def _aware(value: datetime) -> datetime:
    return as_utc(value)  # type: ignore[return-value]
