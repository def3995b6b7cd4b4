"""Billing webhook routes (Stripe and Razorpay)."""
from __future__ import annotations

import json
import logging
import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from planify.api.schemas.billing import WebhookAck
from planify.core.config import settings
from planify.db.deps import get_db
from planify.observability.metrics import log_metric
from planify.observability.tracing import trace
from planify.services.billing.events import (
    RAZORPAY,
    STRIPE,
    BillingChange,
    BillingEventError,
    normalize_razorpay_event,
    normalize_stripe_event,
    verify_razorpay_signature,
)
from planify.services.billing.service import apply_billing_change
from planify.services.usage_service import UsageStoreError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/billing/webhooks/stripe", response_model=WebhookAck, tags=["billing"])
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    body = await request.body()
    secret = _require_secret(STRIPE, settings.stripe_webhook_secret)
    try:
        stripe.Webhook.construct_event(body, request.headers.get("Stripe-Signature", ""), secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature") from exc

    event = _load_json(body)
    request_id = getattr(request.state, "request_id", None)
    try:
        change = normalize_stripe_event(event)
    except BillingEventError as exc:
        raise _rejection(STRIPE, str(event.get("type")), exc) from exc
    return await run_in_threadpool(_apply, db, STRIPE, str(event.get("type") or ""), change, request_id)


@router.post("/billing/webhooks/razorpay", response_model=WebhookAck, tags=["billing"])
async def razorpay_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    body = await request.body()
    secret = _require_secret(RAZORPAY, settings.razorpay_webhook_secret)
    if not verify_razorpay_signature(body, request.headers.get("X-Razorpay-Signature"), secret):
        logger.warning("Rejected Razorpay webhook with a bad signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")

    payload = _load_json(body)
    request_id = getattr(request.state, "request_id", None)
    try:
        change = normalize_razorpay_event(payload, request.headers.get("X-Razorpay-Event-Id"))
    except BillingEventError as exc:
        raise _rejection(RAZORPAY, str(payload.get("event")), exc) from exc
    return await run_in_threadpool(_apply, db, RAZORPAY, str(payload.get("event") or ""), change, request_id)


def _apply(
    db: Session,
    provider: str,
    event_type: str,
    change: BillingChange | None,
    request_id: str | None,
) -> WebhookAck:
    if change is None:
        logger.info("Ignoring %s webhook event %s", provider, event_type)
        log_metric("billing.webhook.ignored", 1, metadata={"provider": provider, "event_type": event_type})
        return WebhookAck(status="ignored", provider=provider, event_type=event_type, request_id=request_id or "")

    with trace(
        f"billing.{provider}.webhook",
        metadata={"event_type": event_type, "event_id": change.event_id},
        user_id=str(change.user_id),
        request_id=request_id,
    ):
        try:
            tier_change = apply_billing_change(db, change)
        except UsageStoreError as exc:
            # Non-2xx so the provider retries delivery.
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Subscription update could not be saved",
            ) from exc

    log_metric("billing.webhook.applied", 1, metadata={"provider": provider, "event_type": event_type})
    snapshot = tier_change.snapshot
    return WebhookAck(
        status="applied",
        provider=provider,
        event_type=event_type,
        user_id=change.user_id,
        tier=snapshot.tier,
        subscription_status=snapshot.subscription_status,
        request_id=request_id or "",
    )


def _load_json(body: bytes) -> dict:
    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be a JSON object")
    return payload


def _rejection(provider: str, event_type: str, exc: BillingEventError) -> HTTPException:
    logger.warning("Cannot apply %s webhook %s: %s", provider, event_type, exc)
    log_metric("billing.webhook.rejected", 1, metadata={"provider": provider, "event_type": event_type})
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


def _require_secret(provider: str, secret: str | None) -> str:
    if not secret:
        logger.error("%s webhook secret is not configured; rejecting event", provider)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook secret not configured",
        )
    return secret
