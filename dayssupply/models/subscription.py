"""SQLModel mapping for the normalized subscription record."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Integer, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawStatus(str, Enum):
    """Subscription states this service understands."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    UNKNOWN = "unknown"


ENTITLED_STATUSES = frozenset({RawStatus.TRIALING, RawStatus.ACTIVE})


class SubscriptionRecord(SQLModel, table=True):
    """Persisted billing state for one account (or one orphaned Stripe subscription)."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        sa.UniqueConstraint("account_id", name="uq_subscriptions_account_id"),
        sa.UniqueConstraint(
            "external_subscription_id", name="uq_subscriptions_external_subscription_id"
        ),
        sa.Index("ix_subscriptions_external_customer_id", "external_customer_id"),
    )

    id: int | None = Field(
        default=None, sa_column=Column(Integer, primary_key=True, autoincrement=True)
    )
    account_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    external_subscription_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    external_customer_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    raw_status: str = Field(
        default=RawStatus.UNKNOWN.value,
        sa_column=Column(String(length=32), nullable=False),
    )
    period_end: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    @property
    def status(self) -> RawStatus:
        try:
            return RawStatus(self.raw_status)
        except ValueError:
            return RawStatus.UNKNOWN
