"""Thin wrapper around the Stripe SDK calls this service makes."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import stripe

from dayssupply.billing.errors import (
    BillingNotConfiguredError,
    BillingProviderError,
    WebhookSignatureError,
)
from dayssupply.billing.events import (
    ACCOUNT_METADATA_KEY,
    BillingEvent,
    SkippedEvent,
    SubscriptionObject,
    SubscriptionSnapshot,
    decode_envelope,
    parse_event,
)
from dayssupply.config import Settings, settings
from dayssupply.observability.metrics import metrics

logger = logging.getLogger(__name__)


class SubscriptionLookup(Protocol):
    """Read access to the provider's view of a subscription."""

    def fetch(self, subscription_id: str) -> SubscriptionSnapshot:
        ...


def _as_dict(obj: Any) -> dict[str, Any]:
    """Normalize StripeObject instances across SDK versions."""
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None) or getattr(obj, "to_dict_recursive", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeGateway(SubscriptionLookup):
    """Stripe SDK calls for webhooks, checkout and the billing portal."""

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or settings

    def _require_api_key(self) -> None:
        if not self._settings.stripe_secret_key:
            logger.warning("stripe.missing_secret")
            raise BillingNotConfiguredError("STRIPE_SECRET_KEY is not configured")
        stripe.api_key = self._settings.stripe_secret_key

    def verify_signature(self, raw_body: bytes, signature_header: str | None) -> None:
        """Check the Stripe-Signature header against the exact raw request bytes."""
        secret = self._settings.stripe_webhook_secret
        if not secret:
            logger.error("stripe.webhook.secret_missing")
            raise BillingNotConfiguredError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature_header:
            logger.warning("stripe.webhook.signature_missing")
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"),
                signature_header,
                secret,
                tolerance=self._settings.stripe_webhook_tolerance_seconds,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            logger.warning("stripe.webhook.signature_mismatch")
            raise WebhookSignatureError(str(exc)) from exc

    def verify_and_parse(
        self, raw_body: bytes, signature_header: str | None
    ) -> BillingEvent | SkippedEvent:
        """Verify the signature, then decode the body into a typed event."""
        self.verify_signature(raw_body, signature_header)
        return parse_event(decode_envelope(raw_body))

    def fetch(self, subscription_id: str) -> SubscriptionSnapshot:
        """Retrieve a subscription; any failure degrades to an empty snapshot."""
        try:
            self._require_api_key()
            subscription = stripe.Subscription.retrieve(subscription_id)
            return SubscriptionSnapshot.from_object(
                SubscriptionObject.model_validate(_as_dict(subscription))
            )
        except Exception as exc:
            logger.warning(
                "stripe.subscription.retrieve_failed",
                extra={"subscription_id": subscription_id, "error": str(exc)},
            )
            metrics.increment("stripe.subscription.retrieve_failed")
            return SubscriptionSnapshot.empty(subscription_id)

    def create_checkout_session(self, *, account_id: str, email: str | None) -> str:
        """Create a hosted subscription checkout and return its redirect URL."""
        self._require_api_key()
        price_id = self._settings.stripe_price_id
        if not price_id:
            logger.warning("stripe.checkout.missing_price")
            raise BillingNotConfiguredError("STRIPE_PRICE_ID is not configured")
        metadata = {ACCOUNT_METADATA_KEY: account_id}
        subscription_data: dict[str, Any] = {"metadata": metadata}
        if self._settings.stripe_trial_days > 0:
            subscription_data["trial_period_days"] = self._settings.stripe_trial_days
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": self._settings.site_link(self._settings.checkout_success_path),
            "cancel_url": self._settings.site_link(self._settings.checkout_cancel_path),
            "client_reference_id": account_id,
            "metadata": metadata,
            "subscription_data": subscription_data,
        }
        if email:
            params["customer_email"] = email
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            logger.warning("stripe.checkout.failed", extra={"error": str(exc)})
            raise BillingProviderError("Unable to start checkout") from exc
        logger.info("stripe.checkout.created", extra={"session_id": session.id})
        return session.url

    def create_portal_session(self, *, customer_id: str) -> str:
        """Create a billing portal session for an existing Stripe customer."""
        self._require_api_key()
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=self._settings.site_link(self._settings.portal_return_path),
            )
        except stripe.StripeError as exc:
            logger.warning(
                "stripe.portal.failed", extra={"customer_id": customer_id, "error": str(exc)}
            )
            raise BillingProviderError("Unable to open billing portal") from exc
        logger.info("stripe.portal.created", extra={"customer_id": customer_id})
        return session.url


_GATEWAY_INSTANCE: StripeGateway | None = None


def get_stripe_gateway() -> StripeGateway:
    """Singleton accessor used by API routes."""
    global _GATEWAY_INSTANCE  # noqa: PLW0603
    if _GATEWAY_INSTANCE is None:
        _GATEWAY_INSTANCE = StripeGateway()
    return _GATEWAY_INSTANCE
