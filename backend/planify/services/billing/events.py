"""Normalize Stripe and Razorpay webhook payloads into tier changes."""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import UUID

from planify.core.config import settings
from planify.services.tier_limits import SubscriptionStatus, Tier, parse_tier

logger = logging.getLogger(__name__)

STRIPE = "stripe"
RAZORPAY = "razorpay"

STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
}

# event type -> status it implies; None means "read it from the object"
STRIPE_EVENTS = {
    "checkout.session.completed": SubscriptionStatus.ACTIVE,
    "invoice.payment_succeeded": SubscriptionStatus.ACTIVE,
    "invoice.paid": SubscriptionStatus.ACTIVE,
    "customer.subscription.created": None,
    "customer.subscription.updated": None,
    "invoice.payment_failed": SubscriptionStatus.PAST_DUE,
    "customer.subscription.deleted": SubscriptionStatus.CANCELLED,
}

RAZORPAY_EVENTS = {
    "subscription.activated": SubscriptionStatus.ACTIVE,
    "subscription.charged": SubscriptionStatus.ACTIVE,
    "subscription.resumed": SubscriptionStatus.ACTIVE,
    "subscription.pending": SubscriptionStatus.PAST_DUE,
    "subscription.halted": SubscriptionStatus.PAST_DUE,
    "payment.failed": SubscriptionStatus.PAST_DUE,
    "subscription.cancelled": SubscriptionStatus.CANCELLED,
    "subscription.completed": SubscriptionStatus.CANCELLED,
}


class BillingEventError(ValueError):
    """The webhook payload cannot be turned into a tier change."""


@dataclass(frozen=True)
class BillingChange:
    """Provider-neutral ``(user, tier, status)`` change.

    ``new_tier`` is None for status-only events (e.g. a failed payment), in which
    case the user's current tier is kept.
    """

    provider: str
    event_type: str
    event_id: str | None
    user_id: UUID
    new_tier: Tier | None
    new_status: SubscriptionStatus
    subscription_id: str | None = None
    current_period_end: datetime | None = None


def verify_razorpay_signature(body: bytes, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def normalize_stripe_event(event: Mapping[str, Any]) -> BillingChange | None:
    """Return the change a Stripe event implies, or None for events we ignore."""
    event_type = str(event.get("type") or "")
    if event_type not in STRIPE_EVENTS:
        return None

    obj = _mapping(_mapping(event.get("data")).get("object"))
    metadata = _mapping(obj.get("metadata"))
    line = _first(_mapping(obj.get("lines")).get("data"))
    item = _first(_mapping(obj.get("items")).get("data"))
    if not metadata:
        metadata = _mapping(line.get("metadata"))

    status = STRIPE_EVENTS[event_type]
    if status is None:
        raw_status = str(obj.get("status") or "")
        status = STRIPE_STATUS_MAP.get(raw_status)
        if status is None:
            raise BillingEventError(f"unrecognized Stripe subscription status {raw_status!r}")

    user_id = _parse_user_id(metadata.get("user_id") or obj.get("client_reference_id"))

    if status is SubscriptionStatus.CANCELLED:
        tier: Tier | None = Tier.FREE
    else:
        price_id = _mapping(item.get("price")).get("id") or _mapping(line.get("price")).get("id")
        tier = _resolve_tier(metadata.get("tier"), price_id, settings.stripe_price_tiers)
        if tier is None and status is SubscriptionStatus.ACTIVE:
            raise BillingEventError(f"cannot resolve tier for Stripe event {event_type}")

    if obj.get("object") == "subscription":
        subscription_id = obj.get("id")
    else:
        subscription_id = obj.get("subscription")
    period_end = obj.get("current_period_end") or _mapping(line.get("period")).get("end")

    return BillingChange(
        provider=STRIPE,
        event_type=event_type,
        event_id=event.get("id"),
        user_id=user_id,
        new_tier=tier,
        new_status=status,
        subscription_id=str(subscription_id) if subscription_id else None,
        current_period_end=_from_epoch(period_end),
    )


def normalize_razorpay_event(payload: Mapping[str, Any], event_id: str | None = None) -> BillingChange | None:
    """Return the change a Razorpay webhook implies, or None for events we ignore."""
    event_type = str(payload.get("event") or "")
    status = RAZORPAY_EVENTS.get(event_type)
    if status is None:
        return None

    body = _mapping(payload.get("payload"))
    subscription = _mapping(_mapping(body.get("subscription")).get("entity"))
    payment = _mapping(_mapping(body.get("payment")).get("entity"))
    notes = _mapping(subscription.get("notes")) or _mapping(payment.get("notes"))

    user_id = _parse_user_id(notes.get("user_id"))
    if status is SubscriptionStatus.CANCELLED:
        tier: Tier | None = Tier.FREE
    else:
        tier = _resolve_tier(notes.get("tier"), subscription.get("plan_id"), settings.razorpay_plan_tiers)
        if tier is None and status is SubscriptionStatus.ACTIVE:
            raise BillingEventError(f"cannot resolve tier for Razorpay event {event_type}")

    subscription_id = subscription.get("id") or payment.get("subscription_id")
    return BillingChange(
        provider=RAZORPAY,
        event_type=event_type,
        event_id=event_id,
        user_id=user_id,
        new_tier=tier,
        new_status=status,
        subscription_id=str(subscription_id) if subscription_id else None,
        current_period_end=_from_epoch(subscription.get("current_end")),
    )


def _resolve_tier(raw: Any, lookup_key: Any, mapping: dict[str, str]) -> Tier | None:
    tier = parse_tier(raw) if raw else None
    if tier is None and lookup_key:
        tier = parse_tier(mapping.get(str(lookup_key)))
    if tier is None and raw:
        logger.warning("Webhook carried unknown tier %r", raw)
    return tier


def _parse_user_id(raw: Any) -> UUID:
    if not raw:
        raise BillingEventError("webhook payload has no user_id")
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise BillingEventError(f"invalid user_id {raw!r}") from exc


def _from_epoch(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _first(value: Any) -> Mapping[str, Any]:
    if isinstance(value, list) and value:
        return _mapping(value[0])
    return {}
