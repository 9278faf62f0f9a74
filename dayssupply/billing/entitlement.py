"""Derive the entitlement view of a subscription record at a given instant."""
# ruff: noqa: UP017

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from dayssupply.config import Settings
from dayssupply.models.subscription import ENTITLED_STATUSES, RawStatus, SubscriptionRecord

NO_USER_STATUS = "no_user"
_SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class EntitlementView:
    is_entitled: bool
    status: str
    raw_status: str | None = None
    period_end: datetime | None = None
    days_remaining: int | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    updated_at: datetime | None = None
    reason: str | None = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_entitled(status: RawStatus, period_end: datetime | None, now: datetime) -> bool:
    """Trialing or active, and the period (when known) has not ended yet."""
    if status not in ENTITLED_STATUSES:
        return False
    return period_end is None or _as_utc(period_end) > _as_utc(now)


def evaluate(record: SubscriptionRecord, now: datetime) -> EntitlementView:
    """Pure evaluation of ``record`` at ``now``.

    A trialing or active record whose period has ended is reported as canceled
    even before the provider sends the cancellation event.
    """
    raw = record.status
    period_end = _as_utc(record.period_end) if record.period_end else None
    entitled = is_entitled(raw, period_end, now)
    effective = raw
    if raw in ENTITLED_STATUSES and not entitled:
        effective = RawStatus.CANCELED

    days_remaining = None
    if effective is RawStatus.TRIALING and period_end is not None:
        seconds = (period_end - _as_utc(now)).total_seconds()
        days_remaining = max(0, math.ceil(seconds / _SECONDS_PER_DAY))

    return EntitlementView(
        is_entitled=entitled,
        status=effective.value,
        raw_status=raw.value,
        period_end=period_end,
        days_remaining=days_remaining,
        customer_id=record.external_customer_id,
        subscription_id=record.external_subscription_id,
        updated_at=_as_utc(record.updated_at) if record.updated_at else None,
    )


def no_record(reason: str | None = "no_row") -> EntitlementView:
    return EntitlementView(is_entitled=False, status=RawStatus.UNKNOWN.value, reason=reason)


def no_user(reason: str | None = None) -> EntitlementView:
    return EntitlementView(is_entitled=False, status=NO_USER_STATUS, reason=reason)


def apply_overrides(view: EntitlementView, config: Settings) -> EntitlementView:
    """Force entitlement when the screenshot or gating-disabled switches are on."""
    if config.screenshot_mode:
        return replace(view, is_entitled=True, reason="screenshot_mode")
    if config.auth_disabled:
        return replace(view, is_entitled=True, reason="gating_disabled")
    return view
