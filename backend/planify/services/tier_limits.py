"""Subscription tiers and their AI usage limit profiles."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from planify.core.config import settings

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    FREE = "free"
    BASIC_PRO = "basic_pro"
    ADVANCED_PRO = "advanced_pro"
    PREMIUM_PRO = "premium_pro"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class LimitType(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    UNLIMITED = "unlimited"


PAID_TIERS = frozenset({Tier.BASIC_PRO, Tier.ADVANCED_PRO, Tier.PREMIUM_PRO})

TIER_RANK = {
    Tier.FREE: 0,
    Tier.BASIC_PRO: 1,
    Tier.ADVANCED_PRO: 2,
    Tier.PREMIUM_PRO: 3,
}


@dataclass(frozen=True)
class LimitProfile:
    """How a tier's AI usage is capped. ``None`` limits mean unlimited."""

    tier: Tier
    limit_type: LimitType
    daily_limit: int | None
    monthly_limit: int | None = None

    @property
    def unlimited(self) -> bool:
        return self.limit_type is LimitType.UNLIMITED


def get_limit_profile(tier: Tier) -> LimitProfile:
    """Build the limit profile for a tier from current settings."""
    if tier is Tier.PREMIUM_PRO:
        return LimitProfile(tier=tier, limit_type=LimitType.UNLIMITED, daily_limit=None)
    if tier is Tier.ADVANCED_PRO:
        return LimitProfile(
            tier=tier,
            limit_type=LimitType.DAILY,
            daily_limit=settings.advanced_pro_daily_ai_limit,
        )
    if tier is Tier.BASIC_PRO:
        # daily_limit is the spillover allotment spent before the monthly pool.
        return LimitProfile(
            tier=tier,
            limit_type=LimitType.MONTHLY,
            daily_limit=settings.basic_pro_daily_spillover,
            monthly_limit=settings.basic_pro_monthly_ai_limit,
        )
    return LimitProfile(tier=Tier.FREE, limit_type=LimitType.DAILY, daily_limit=settings.free_daily_ai_limit)


def parse_tier(value: str | None) -> Tier | None:
    """Return the Tier for a raw value, or None if it is not a known tier."""
    if value is None:
        return None
    try:
        return Tier(str(value).strip().lower())
    except ValueError:
        return None


def parse_status(value: str | None) -> SubscriptionStatus | None:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if normalized == "canceled":
        normalized = SubscriptionStatus.CANCELLED.value
    try:
        return SubscriptionStatus(normalized)
    except ValueError:
        return None


def resolve_tier(raw_tier: str | None, *, user_id: object = None) -> Tier:
    """Map a stored tier to a Tier, degrading unknown values to free."""
    tier = parse_tier(raw_tier)
    if tier is None:
        logger.warning("Unknown tier %r for user %s; treating as free", raw_tier, user_id)
        return Tier.FREE
    return tier


def effective_tier(raw_tier: str | None, raw_status: str | None, *, user_id: object = None) -> Tier:
    """Tier whose limits actually apply: paid tiers need an active subscription."""
    tier = resolve_tier(raw_tier, user_id=user_id)
    if tier in PAID_TIERS and parse_status(raw_status) is not SubscriptionStatus.ACTIVE:
        return Tier.FREE
    return tier


def compare_tiers(old: Tier, new: Tier) -> int:
    """Negative for a downgrade, positive for an upgrade, zero when lateral."""
    return TIER_RANK[new] - TIER_RANK[old]


def meets_tier(current: Tier, required: Tier) -> bool:
    return TIER_RANK[current] >= TIER_RANK[required]
