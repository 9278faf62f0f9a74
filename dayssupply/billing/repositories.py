"""Persistence backends for normalized subscription records."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from itertools import count
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from dayssupply.billing.errors import SubscriptionStoreError
from dayssupply.billing.normalizer import NormalizedSubscription
from dayssupply.config import settings
from dayssupply.models.subscription import SubscriptionRecord
from dayssupply.observability.metrics import metrics

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clone(record: SubscriptionRecord) -> SubscriptionRecord:
    """Detached copy with timezone-aware timestamps (SQLite hands back naive values)."""
    return SubscriptionRecord(
        id=record.id,
        account_id=record.account_id,
        external_subscription_id=record.external_subscription_id,
        external_customer_id=record.external_customer_id,
        raw_status=record.raw_status,
        period_end=_as_utc(record.period_end),
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


class SubscriptionRepository(Protocol):
    """Persistence contract for subscription records."""

    def apply(
        self, update: NormalizedSubscription, *, now: datetime | None = None
    ) -> SubscriptionRecord:
        ...

    def get_by_account(self, account_id: str) -> SubscriptionRecord | None:
        ...

    def get_by_subscription(self, subscription_id: str) -> SubscriptionRecord | None:
        ...

    def ping(self) -> bool:
        ...


class _RecordSet(Protocol):
    """Row access used by ``apply_update`` inside one write transaction."""

    def by_account(self, account_id: str) -> SubscriptionRecord | None:
        ...

    def by_subscription(self, subscription_id: str) -> SubscriptionRecord | None:
        ...

    def save(self, record: SubscriptionRecord) -> None:
        ...

    def remove(self, record: SubscriptionRecord) -> None:
        ...

    def flush(self) -> None:
        ...


def _write_fields(
    record: SubscriptionRecord, update: NormalizedSubscription, now: datetime
) -> None:
    record.external_subscription_id = update.subscription_id
    if update.customer_id:
        record.external_customer_id = update.customer_id
    record.raw_status = update.raw_status.value
    record.period_end = update.period_end
    previous = _as_utc(record.updated_at)
    record.updated_at = max(previous, now) if previous else now


def apply_update(
    records: _RecordSet, update: NormalizedSubscription, now: datetime
) -> SubscriptionRecord:
    """Upsert ``update``: keyed by account when known, otherwise by subscription id.

    A row written before the account was known (``account_id`` NULL) is folded
    into the account's row as soon as an event carrying the account id arrives,
    so a subscription never lives in two rows.

    Two concurrent first writes for the same subscription both miss in the row
    lookups; the loser hits a unique violation and Stripe's redelivery applies it.
    """
    holder = records.by_subscription(update.subscription_id)

    if not update.account_id:
        if holder is None:
            holder = SubscriptionRecord(created_at=now, updated_at=now)
            logger.info(
                "subscriptions.orphan_created",
                extra={"subscription_id": update.subscription_id},
            )
        _write_fields(holder, update, now)
        records.save(holder)
        return holder

    target = records.by_account(update.account_id)
    if holder is not None and holder is not target:
        if holder.account_id is None and target is None:
            holder.account_id = update.account_id
            target = holder
            logger.info(
                "subscriptions.orphan_adopted",
                extra={"subscription_id": update.subscription_id},
            )
        elif holder.account_id is None:
            if not target.external_customer_id and holder.external_customer_id:
                target.external_customer_id = holder.external_customer_id
            records.remove(holder)
            logger.info(
                "subscriptions.orphan_merged",
                extra={"subscription_id": update.subscription_id},
            )
        else:
            holder.external_subscription_id = None
            records.save(holder)
            records.flush()
            logger.warning(
                "subscriptions.subscription_relinked",
                extra={"subscription_id": update.subscription_id},
            )

    if target is None:
        target = SubscriptionRecord(account_id=update.account_id, created_at=now, updated_at=now)
    _write_fields(target, update, now)
    records.save(target)
    return target


class InMemorySubscriptionRepository(SubscriptionRepository):
    """Thread-safe repository used for local development and tests."""

    def __init__(self) -> None:
        self._records: dict[int, SubscriptionRecord] = {}
        self._ids = count(1)
        self._lock = Lock()

    def apply(
        self, update: NormalizedSubscription, *, now: datetime | None = None
    ) -> SubscriptionRecord:
        with self._lock:
            record = apply_update(_MemoryRecordSet(self), update, now or _utcnow())
            persisted = _clone(record)
        metrics.increment("subscriptions.persisted", tags={"repository": "memory"})
        return persisted

    def get_by_account(self, account_id: str) -> SubscriptionRecord | None:
        with self._lock:
            record = self._find(account_id=account_id)
            return _clone(record) if record else None

    def get_by_subscription(self, subscription_id: str) -> SubscriptionRecord | None:
        with self._lock:
            record = self._find(external_subscription_id=subscription_id)
            return _clone(record) if record else None

    def all(self) -> list[SubscriptionRecord]:
        with self._lock:
            return [_clone(record) for record in self._records.values()]

    def ping(self) -> bool:
        return True

    def _find(self, **criteria: Any) -> SubscriptionRecord | None:
        for record in self._records.values():
            if all(getattr(record, field) == value for field, value in criteria.items()):
                return record
        return None


class _MemoryRecordSet:
    def __init__(self, repository: InMemorySubscriptionRepository) -> None:
        self._repository = repository

    def by_account(self, account_id: str) -> SubscriptionRecord | None:
        return self._repository._find(account_id=account_id)

    def by_subscription(self, subscription_id: str) -> SubscriptionRecord | None:
        return self._repository._find(external_subscription_id=subscription_id)

    def save(self, record: SubscriptionRecord) -> None:
        if record.id is None:
            record.id = next(self._repository._ids)
        self._repository._records[record.id] = record

    def remove(self, record: SubscriptionRecord) -> None:
        if record.id is not None:
            self._repository._records.pop(record.id, None)

    def flush(self) -> None:
        return None


class SqlSubscriptionRepository(SubscriptionRepository):
    """SQLModel-backed repository that persists subscriptions to Postgres/Supabase."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = False,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlSubscriptionRepository.")

        parsed_url = make_url(database_url)
        sync_url, connect_args, drivername = _coerce_sync_database_url(parsed_url)
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        is_sqlite = drivername.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {
            "echo": settings.debug,
            "connect_args": connect_args,
            "pool_pre_ping": not is_sqlite,
        }
        if not is_sqlite:
            engine_kwargs["pool_size"] = pool_min
            engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)

        self._engine: Engine = create_engine(sync_url, **engine_kwargs)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine)
        self._metrics_tags = {"repository": _resolve_metrics_tag(parsed_url, drivername)}

    @classmethod
    def from_engine(cls, engine: Engine) -> SqlSubscriptionRepository:
        """Wrap an existing engine (tests share one in-memory SQLite engine)."""
        repository = cls.__new__(cls)
        repository._engine = engine
        repository._metrics_tags = {"repository": engine.dialect.name}
        return repository

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def apply(
        self, update: NormalizedSubscription, *, now: datetime | None = None
    ) -> SubscriptionRecord:
        try:
            with self._session() as session:
                record = apply_update(_SqlRecordSet(session), update, now or _utcnow())
                session.commit()
                session.refresh(record)
                persisted = _clone(record)
        except SQLAlchemyError as exc:
            logger.exception(
                "subscriptions.persist_failed",
                extra={
                    "subscription_id": update.subscription_id,
                    "backend": self._metrics_tags["repository"],
                },
            )
            metrics.increment("subscriptions.persist_failed", tags=self._metrics_tags)
            raise SubscriptionStoreError("Failed to persist subscription.") from exc
        metrics.increment("subscriptions.persisted", tags=self._metrics_tags)
        return persisted

    def get_by_account(self, account_id: str) -> SubscriptionRecord | None:
        return self._first(SubscriptionRecord.account_id == account_id)

    def get_by_subscription(self, subscription_id: str) -> SubscriptionRecord | None:
        return self._first(SubscriptionRecord.external_subscription_id == subscription_id)

    def all(self) -> list[SubscriptionRecord]:
        try:
            with self._session() as session:
                rows = session.exec(select(SubscriptionRecord).order_by(SubscriptionRecord.id))
                return [_clone(record) for record in rows]
        except SQLAlchemyError as exc:
            logger.exception(
                "subscriptions.read_failed", extra={"backend": self._metrics_tags["repository"]}
            )
            raise SubscriptionStoreError("Failed to list subscriptions.") from exc

    def ping(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("subscriptions.health_check_failed")
            return False

    def _first(self, criterion: Any) -> SubscriptionRecord | None:
        try:
            with self._session() as session:
                record = session.exec(select(SubscriptionRecord).where(criterion)).first()
                return _clone(record) if record else None
        except SQLAlchemyError as exc:
            logger.exception(
                "subscriptions.read_failed", extra={"backend": self._metrics_tags["repository"]}
            )
            raise SubscriptionStoreError("Failed to load subscription.") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session


class _SqlRecordSet:
    def __init__(self, session: Session) -> None:
        self._session = session

    def by_account(self, account_id: str) -> SubscriptionRecord | None:
        statement = select(SubscriptionRecord).where(SubscriptionRecord.account_id == account_id)
        return self._session.exec(statement.with_for_update()).first()

    def by_subscription(self, subscription_id: str) -> SubscriptionRecord | None:
        statement = select(SubscriptionRecord).where(
            SubscriptionRecord.external_subscription_id == subscription_id
        )
        return self._session.exec(statement.with_for_update()).first()

    def save(self, record: SubscriptionRecord) -> None:
        self._session.add(record)

    def remove(self, record: SubscriptionRecord) -> None:
        # Flush now so the freed subscription id is not still held when the target row updates.
        self._session.delete(record)
        self._session.flush()

    def flush(self) -> None:
        self._session.flush()


def _coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+psycopg"):
        drivername = drivername.replace("+psycopg", "+psycopg2")
    elif drivername.endswith("+aiosqlite"):
        drivername = drivername.replace("+aiosqlite", "")
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    removed_ssl = "ssl" in query
    query.pop("ssl", None)
    sync_url = sync_url.set(query=query)

    host = (url.host or "").lower()
    if drivername.startswith("postgresql"):
        if "sslmode" not in query and (removed_ssl or "supabase.co" in host):
            connect_args["sslmode"] = "require"
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def _resolve_metrics_tag(url: URL, drivername: str) -> str:
    host = (url.host or "").lower()
    if "supabase.co" in host:
        return "supabase"
    if drivername.startswith("sqlite"):
        return "sqlite"
    return "postgres"


def build_subscription_repository(database_url: str | None = None) -> SubscriptionRepository:
    """Instantiate a SubscriptionRepository using DATABASE_URL when available."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("subscriptions.repository.initialized", extra={"backend": "memory"})
        return InMemorySubscriptionRepository()
    try:
        repository = SqlSubscriptionRepository(
            resolved_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
            auto_create_schema=settings.db_auto_create_schema,
        )
        logger.info("subscriptions.repository.initialized", extra={"backend": "database"})
        return repository
    except Exception:
        logger.exception("subscriptions.repository.init_failed", extra={"backend": "database"})
        raise


_REPOSITORY_INSTANCE: SubscriptionRepository | None = None


def get_subscription_repository() -> SubscriptionRepository:
    """Singleton accessor used by API routes."""
    global _REPOSITORY_INSTANCE  # noqa: PLW0603
    if _REPOSITORY_INSTANCE is None:
        _REPOSITORY_INSTANCE = build_subscription_repository()
    return _REPOSITORY_INSTANCE
