"""Stripe webhook endpoint: verify, normalize and persist subscription changes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from dayssupply.billing.errors import (
    BillingNotConfiguredError,
    MalformedEventError,
    SubscriptionStoreError,
    WebhookSignatureError,
)
from dayssupply.billing.events import SkippedEvent
from dayssupply.billing.normalizer import BillingEventNormalizer
from dayssupply.billing.repositories import SubscriptionRepository, get_subscription_repository
from dayssupply.billing.stripe_gateway import StripeGateway, get_stripe_gateway
from dayssupply.observability.metrics import metrics

logger = logging.getLogger(__name__)
router = APIRouter()


class WebhookResponse(BaseModel):
    received: bool
    skipped: bool | None = None


def _alert(name: str, *, severity: str, tags: dict[str, object] | None = None) -> None:
    metrics.increment(name, tags=tags)
    metrics.alert(name, value=1.0, threshold=0.0, severity=severity, tags=tags)


@router.get("/api/stripe/webhook")
async def stripe_webhook_liveness() -> dict[str, object]:
    return {"ok": True, "route": "stripe-webhook"}


@router.post(
    "/api/stripe/webhook", response_model=WebhookResponse, response_model_exclude_none=True
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    repository: SubscriptionRepository = Depends(get_subscription_repository),
) -> WebhookResponse:
    """Apply one Stripe lifecycle event to the subscription store.

    Answers 400 for events that can never succeed and 500 for failures Stripe
    should retry; everything else, including ignored event types, is a 200.
    """
    body = await request.body()
    try:
        event = gateway.verify_and_parse(body, stripe_signature)
    except BillingNotConfiguredError as exc:
        _alert("stripe.webhook.secret_missing", severity="critical")
        raise HTTPException(status_code=500, detail="Webhook secret not configured") from exc
    except WebhookSignatureError as exc:
        _alert(
            "stripe.webhook.signature_invalid",
            severity="warning",
            tags={"has_signature": bool(stripe_signature)},
        )
        raise HTTPException(status_code=400, detail="Invalid signature") from exc
    except MalformedEventError as exc:
        logger.warning("stripe.webhook.invalid_payload", extra={"error": str(exc)})
        metrics.increment("stripe.webhook.invalid_payload")
        raise HTTPException(status_code=400, detail="Invalid payload") from exc

    if isinstance(event, SkippedEvent):
        logger.info(
            "stripe.webhook.skipped_event",
            extra={"event_id": event.event_id, "type": event.event_type, "reason": event.reason},
        )
        metrics.increment(
            "stripe.webhook.skipped", tags={"type": event.event_type, "reason": event.reason}
        )
        return WebhookResponse(received=True, skipped=True)

    event_type = type(event).__name__
    normalizer = BillingEventNormalizer(gateway)
    update = await run_in_threadpool(normalizer.normalize, event)
    try:
        record = await run_in_threadpool(repository.apply, update)
    except SubscriptionStoreError as exc:
        _alert("stripe.webhook.store_unavailable", severity="critical", tags={"type": event_type})
        raise HTTPException(status_code=500, detail="Subscription store unavailable") from exc

    logger.info(
        "stripe.webhook.persisted",
        extra={
            "event_id": event.event_id,
            "type": event_type,
            "subscription_id": update.subscription_id,
            "status": record.raw_status,
            "has_account": record.account_id is not None,
        },
    )
    metrics.increment("stripe.webhook.persisted", tags={"type": event_type})
    return WebhookResponse(received=True)
