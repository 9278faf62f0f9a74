"""Shared error classes for webhook handling, persistence and billing sessions."""

from __future__ import annotations


class BillingError(RuntimeError):
    """Base exception raised by the billing layer."""

    def __init__(self, message: str, code: str = "BILLING_ERROR") -> None:
        super().__init__(message)
        self.code = code


class WebhookSignatureError(BillingError):
    """Raised when a webhook signature is missing or does not verify."""

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message, code="400_INVALID_SIGNATURE")


class MalformedEventError(BillingError):
    """Raised when a verified webhook body cannot be decoded."""

    def __init__(self, message: str = "Malformed webhook payload") -> None:
        super().__init__(message, code="400_MALFORMED_EVENT")


class SubscriptionStoreError(BillingError):
    """Raised when the subscription store cannot be read or written."""

    def __init__(self, message: str = "Subscription store unavailable") -> None:
        super().__init__(message, code="500_STORE_UNAVAILABLE")


class BillingProviderError(BillingError):
    """Raised when Stripe rejects or fails a session request."""

    def __init__(self, message: str = "Billing provider request failed") -> None:
        super().__init__(message, code="502_PROVIDER_ERROR")


class BillingNotConfiguredError(BillingError):
    """Raised when required Stripe settings are missing."""

    def __init__(self, message: str = "Billing is not configured") -> None:
        super().__init__(message, code="503_NOT_CONFIGURED")
