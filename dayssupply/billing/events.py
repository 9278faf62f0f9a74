"""Typed views over Stripe webhook payloads.

Stripe delivers loosely shaped JSON; everything downstream of this module works
with one small frozen dataclass per event kind instead. Parsing fails closed:
an event whose object does not validate, or that carries no subscription id,
becomes a ``SkippedEvent`` rather than a half-populated record.
"""
# ruff: noqa: UP017, UP007

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dayssupply.billing.errors import MalformedEventError
from dayssupply.models.subscription import RawStatus

logger = logging.getLogger(__name__)

ACCOUNT_METADATA_KEY = "supabase_user_id"

CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAID_TYPES = frozenset({"invoice.paid", "invoice.payment_succeeded"})
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
SUBSCRIPTION_TYPES = frozenset({SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED})


def coerce_status(value: Any) -> RawStatus:
    """Map a provider status string onto ``RawStatus``; anything unrecognized is UNKNOWN."""
    if isinstance(value, RawStatus):
        return value
    if not isinstance(value, str):
        return RawStatus.UNKNOWN
    try:
        return RawStatus(value.strip().lower())
    except ValueError:
        return RawStatus.UNKNOWN


def from_unix(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _reference_id(value: Any) -> str | None:
    """Stripe references are either ids or expanded objects carrying an ``id``."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        ref = value.get("id")
        return ref if isinstance(ref, str) and ref else None
    return None


class _StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("metadata", mode="before", check_fields=False)
    @classmethod
    def metadata_or_empty(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    def account_from_metadata(self) -> str | None:
        metadata = getattr(self, "metadata", None) or {}
        account = metadata.get(ACCOUNT_METADATA_KEY)
        return account if isinstance(account, str) and account else None


class CheckoutSessionObject(_StripeObject):
    id: str | None = None
    subscription: str | None = None
    customer: str | None = None
    client_reference_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("subscription", "customer", mode="before")
    @classmethod
    def reference_to_id(cls, value: Any) -> str | None:
        return _reference_id(value)


class InvoiceObject(_StripeObject):
    id: str | None = None
    subscription: str | None = None
    customer: str | None = None
    parent: dict[str, Any] | None = None

    @field_validator("subscription", "customer", mode="before")
    @classmethod
    def reference_to_id(cls, value: Any) -> str | None:
        return _reference_id(value)

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        # Newer API versions move the reference under parent.subscription_details.
        details = (self.parent or {}).get("subscription_details") or {}
        return _reference_id(details.get("subscription"))


class SubscriptionObject(_StripeObject):
    id: str
    customer: str | None = None
    status: str | None = None
    current_period_end: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    items: dict[str, Any] | None = None

    @field_validator("customer", mode="before")
    @classmethod
    def reference_to_id(cls, value: Any) -> str | None:
        return _reference_id(value)

    def period_end(self) -> datetime | None:
        if self.current_period_end:
            return from_unix(self.current_period_end)
        data = (self.items or {}).get("data") or []
        if data and isinstance(data[0], dict):
            return from_unix(data[0].get("current_period_end"))
        return None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """What Stripe currently says about one subscription."""

    subscription_id: str
    customer_id: str | None = None
    account_id: str | None = None
    status: RawStatus | None = None
    period_end: datetime | None = None

    @classmethod
    def from_object(cls, obj: SubscriptionObject) -> SubscriptionSnapshot:
        return cls(
            subscription_id=obj.id,
            customer_id=obj.customer,
            account_id=obj.account_from_metadata(),
            status=coerce_status(obj.status) if obj.status else None,
            period_end=obj.period_end(),
        )

    @classmethod
    def empty(cls, subscription_id: str) -> SubscriptionSnapshot:
        return cls(subscription_id=subscription_id)


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    subscription_id: str
    customer_id: str | None
    account_id: str | None


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str
    subscription_id: str
    customer_id: str | None


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    subscription_id: str
    customer_id: str | None


@dataclass(frozen=True)
class SubscriptionChanged:
    event_id: str
    event_type: str
    snapshot: SubscriptionSnapshot


@dataclass(frozen=True)
class SkippedEvent:
    event_id: str
    event_type: str
    reason: str


BillingEvent = Union[CheckoutCompleted, InvoicePaid, InvoicePaymentFailed, SubscriptionChanged]


class StripeEventEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def object(self) -> dict[str, Any]:
        obj = self.data.get("object")
        return obj if isinstance(obj, dict) else {}


def decode_envelope(raw_body: bytes) -> StripeEventEnvelope:
    """Decode a verified webhook body; malformed JSON or envelope raises MalformedEventError."""
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedEventError("Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedEventError("Webhook body must be a JSON object")
    try:
        return StripeEventEnvelope.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEventError("Webhook envelope is missing id or type") from exc


def parse_event(envelope: StripeEventEnvelope) -> BillingEvent | SkippedEvent:
    """Turn a verified envelope into a typed event, or a SkippedEvent explaining why not."""
    event_type = envelope.type
    try:
        if event_type == CHECKOUT_COMPLETED:
            session = CheckoutSessionObject.model_validate(envelope.object)
            if not session.subscription:
                return SkippedEvent(envelope.id, event_type, "missing_subscription_id")
            account_id = session.client_reference_id or session.account_from_metadata()
            return CheckoutCompleted(
                event_id=envelope.id,
                subscription_id=session.subscription,
                customer_id=session.customer,
                account_id=account_id or None,
            )

        if event_type in INVOICE_PAID_TYPES or event_type == INVOICE_PAYMENT_FAILED:
            invoice = InvoiceObject.model_validate(envelope.object)
            subscription_id = invoice.subscription_id
            if not subscription_id:
                return SkippedEvent(envelope.id, event_type, "missing_subscription_id")
            variant = InvoicePaymentFailed if event_type == INVOICE_PAYMENT_FAILED else InvoicePaid
            return variant(
                event_id=envelope.id,
                subscription_id=subscription_id,
                customer_id=invoice.customer,
            )

        if event_type in SUBSCRIPTION_TYPES:
            if not envelope.object.get("id"):
                return SkippedEvent(envelope.id, event_type, "missing_subscription_id")
            subscription = SubscriptionObject.model_validate(envelope.object)
            snapshot = SubscriptionSnapshot.from_object(subscription)
            if event_type == SUBSCRIPTION_DELETED and snapshot.status is None:
                snapshot = SubscriptionSnapshot(
                    subscription_id=snapshot.subscription_id,
                    customer_id=snapshot.customer_id,
                    account_id=snapshot.account_id,
                    status=RawStatus.CANCELED,
                    period_end=snapshot.period_end,
                )
            return SubscriptionChanged(
                event_id=envelope.id, event_type=event_type, snapshot=snapshot
            )
    except ValidationError:
        logger.warning(
            "stripe.webhook.object_invalid",
            extra={"event_id": envelope.id, "type": event_type},
        )
        return SkippedEvent(envelope.id, event_type, "invalid_object")

    return SkippedEvent(envelope.id, event_type, "unhandled_type")
