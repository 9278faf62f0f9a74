"""Map typed Stripe events onto the normalized subscription update."""
# ruff: noqa: UP007

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from dayssupply.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionChanged,
    SubscriptionSnapshot,
)
from dayssupply.billing.stripe_gateway import SubscriptionLookup
from dayssupply.models.subscription import RawStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedSubscription:
    """Provider-independent billing fields extracted from one event."""

    subscription_id: str
    raw_status: RawStatus
    account_id: str | None = None
    customer_id: str | None = None
    period_end: datetime | None = None


class BillingEventNormalizer:
    """Resolve each event kind into a ``NormalizedSubscription``.

    Checkout and invoice payloads do not carry the subscription status or period
    end, so those are read from the provider through ``lookup``.
    """

    def __init__(self, lookup: SubscriptionLookup) -> None:
        self._lookup = lookup

    def normalize(self, event: BillingEvent) -> NormalizedSubscription:
        if isinstance(event, CheckoutCompleted):
            return self._from_checkout(event)
        if isinstance(event, InvoicePaid):
            return self._from_invoice(event, forced_status=RawStatus.ACTIVE)
        if isinstance(event, InvoicePaymentFailed):
            return self._from_invoice(event, fallback_status=RawStatus.PAST_DUE)
        if isinstance(event, SubscriptionChanged):
            return self._from_subscription(event)
        raise TypeError(f"Unsupported billing event: {type(event).__name__}")

    def _from_checkout(self, event: CheckoutCompleted) -> NormalizedSubscription:
        snapshot = self._lookup.fetch(event.subscription_id)
        account_id = event.account_id or snapshot.account_id
        if not account_id:
            logger.warning(
                "stripe.webhook.account_unresolved",
                extra={"event_id": event.event_id, "subscription_id": event.subscription_id},
            )
        return NormalizedSubscription(
            subscription_id=event.subscription_id,
            raw_status=snapshot.status or RawStatus.TRIALING,
            account_id=account_id,
            customer_id=event.customer_id or snapshot.customer_id,
            period_end=snapshot.period_end,
        )

    def _from_invoice(
        self,
        event: InvoicePaid | InvoicePaymentFailed,
        *,
        forced_status: RawStatus | None = None,
        fallback_status: RawStatus = RawStatus.UNKNOWN,
    ) -> NormalizedSubscription:
        snapshot = self._lookup.fetch(event.subscription_id)
        # A paid invoice grants access even while the subscription object lags behind.
        status = forced_status or snapshot.status or fallback_status
        return NormalizedSubscription(
            subscription_id=event.subscription_id,
            raw_status=status,
            account_id=snapshot.account_id,
            customer_id=event.customer_id or snapshot.customer_id,
            period_end=snapshot.period_end,
        )

    def _from_subscription(self, event: SubscriptionChanged) -> NormalizedSubscription:
        snapshot: SubscriptionSnapshot = event.snapshot
        return NormalizedSubscription(
            subscription_id=snapshot.subscription_id,
            raw_status=snapshot.status or RawStatus.UNKNOWN,
            account_id=snapshot.account_id,
            customer_id=snapshot.customer_id,
            period_end=snapshot.period_end,
        )
