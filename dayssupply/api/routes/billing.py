"""Hosted checkout and billing portal session endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from dayssupply.billing.errors import (
    BillingNotConfiguredError,
    BillingProviderError,
    SubscriptionStoreError,
)
from dayssupply.billing.repositories import SubscriptionRepository, get_subscription_repository
from dayssupply.billing.stripe_gateway import StripeGateway, get_stripe_gateway
from dayssupply.core.auth import AuthenticatedUser, mask_email, require_user
from dayssupply.observability.metrics import metrics

logger = logging.getLogger(__name__)
router = APIRouter()


class SessionUrlResponse(BaseModel):
    url: str


@router.post("/api/stripe/create-checkout", response_model=SessionUrlResponse)
async def create_checkout(
    user: AuthenticatedUser = Depends(require_user),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> SessionUrlResponse:
    """Start a subscription checkout tied to the signed-in account."""
    try:
        url = await run_in_threadpool(
            lambda: gateway.create_checkout_session(account_id=user.id, email=user.email)
        )
    except BillingNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail="Billing is not configured") from exc
    except BillingProviderError as exc:
        metrics.increment("stripe.checkout.failed")
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    logger.info("stripe.checkout.started", extra={"email_domain": mask_email(user.email)})
    metrics.increment("stripe.checkout.started")
    return SessionUrlResponse(url=url)


@router.post("/api/stripe/create-portal", response_model=SessionUrlResponse)
async def create_portal(
    user: AuthenticatedUser = Depends(require_user),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    repository: SubscriptionRepository = Depends(get_subscription_repository),
) -> SessionUrlResponse:
    """Open the billing portal for the account's stored Stripe customer."""
    try:
        record = await run_in_threadpool(repository.get_by_account, user.id)
    except SubscriptionStoreError as exc:
        metrics.increment("stripe.portal.db_error")
        raise HTTPException(status_code=500, detail="db_error") from exc
    customer_id = record.external_customer_id if record else None
    if not customer_id:
        logger.info("stripe.portal.no_subscription")
        metrics.increment("stripe.portal.no_subscription")
        raise HTTPException(status_code=400, detail="no_subscription")

    try:
        url = await run_in_threadpool(
            lambda: gateway.create_portal_session(customer_id=customer_id)
        )
    except BillingNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail="Billing is not configured") from exc
    except BillingProviderError as exc:
        metrics.increment("stripe.portal.failed")
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    metrics.increment("stripe.portal.opened")
    return SessionUrlResponse(url=url)
