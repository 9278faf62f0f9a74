"""Entitlement lookup for the signed-in account."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from dayssupply.billing.entitlement import (
    EntitlementView,
    apply_overrides,
    evaluate,
    no_record,
    no_user,
)
from dayssupply.billing.errors import SubscriptionStoreError
from dayssupply.billing.repositories import SubscriptionRepository, get_subscription_repository
from dayssupply.config import settings
from dayssupply.core.auth import (
    IdentityProvider,
    IdentityProviderError,
    bearer_token,
    get_identity_provider,
)
from dayssupply.observability.metrics import metrics

logger = logging.getLogger(__name__)
router = APIRouter()


class ProStatusResponse(BaseModel):
    is_entitled: bool
    status: str
    raw_status: str | None = None
    period_end: datetime | None = None
    days_remaining: int | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    updated_at: datetime | None = None
    reason: str | None = None

    @classmethod
    def from_view(cls, view: EntitlementView) -> ProStatusResponse:
        return cls(
            is_entitled=view.is_entitled,
            status=view.status,
            raw_status=view.raw_status,
            period_end=view.period_end,
            days_remaining=view.days_remaining,
            stripe_customer_id=view.customer_id,
            stripe_subscription_id=view.subscription_id,
            updated_at=view.updated_at,
            reason=view.reason,
        )


async def _resolve_view(
    authorization: str | None,
    provider: IdentityProvider,
    repository: SubscriptionRepository,
) -> EntitlementView:
    token = bearer_token(authorization)
    if token is None:
        return no_user("missing_token")
    try:
        user = await provider.resolve(token)
    except IdentityProviderError:
        user = None
    if user is None:
        return no_user("invalid_token")

    try:
        record = await run_in_threadpool(repository.get_by_account, user.id)
    except SubscriptionStoreError:
        metrics.increment("pro_status.db_error")
        return no_record("db_error")
    if record is None:
        return no_record("no_row")
    return evaluate(record, datetime.now(timezone.utc))


@router.get("/api/pro-status", response_model=ProStatusResponse)
async def pro_status(
    authorization: str | None = Header(default=None),
    provider: IdentityProvider = Depends(get_identity_provider),
    repository: SubscriptionRepository = Depends(get_subscription_repository),
) -> ProStatusResponse:
    """Always 200; failures surface as ``is_entitled: false`` with a reason."""
    view = apply_overrides(await _resolve_view(authorization, provider, repository), settings)
    logger.info(
        "pro_status.evaluated",
        extra={"status": view.status, "is_entitled": view.is_entitled, "reason": view.reason},
    )
    metrics.increment(
        "pro_status.evaluated", tags={"status": view.status, "entitled": view.is_entitled}
    )
    return ProStatusResponse.from_view(view)
