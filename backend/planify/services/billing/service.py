"""Apply normalized billing changes to users."""
from __future__ import annotations

from sqlalchemy.orm import Session

from planify.services.billing.events import BillingChange
from planify.services.entitlements import TierChange
from planify.services.tier_limits import resolve_tier
from planify.services.usage_service import apply_tier_change
from planify.services.user_service import get_or_create_user


def apply_billing_change(db: Session, change: BillingChange) -> TierChange:
    """Hand a webhook-derived change to the entitlement core."""
    tier = change.new_tier
    if tier is None:
        user = get_or_create_user(db, change.user_id)
        tier = resolve_tier(user.tier, user_id=change.user_id)

    return apply_tier_change(
        db,
        change.user_id,
        tier,
        change.new_status,
        source=f"{change.provider}_webhook",
        actor=change.provider,
        reason=f"{change.provider} {change.event_type}",
        create_missing=True,
        provider=change.provider,
        subscription_id=change.subscription_id,
        current_period_end=change.current_period_end,
        extra={"event_type": change.event_type, "event_id": change.event_id},
    )
