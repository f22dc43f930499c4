"""Persistence backends for subscription records."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tablebill.models.subscription import Subscription
from tablebill.observability.metrics import metrics
from tablebill.services.billing.errors import SubscriptionStoreError

logger = logging.getLogger(__name__)

CONFLICT_KEY = "account_id"
_MUTABLE_FIELDS = frozenset(
    {
        "account_id",
        "plan_type",
        "status",
        "period_start",
        "period_end",
        "external_subscription_ref",
        "external_customer_ref",
        "auto_renew",
    }
)
_FILTER_FIELDS = frozenset({"account_id", "external_subscription_ref", "external_customer_ref"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStore(Protocol):
    """Persistence contract consumed by the reconciler and read models."""

    async def upsert(self, record: dict[str, Any], conflict_key: str = CONFLICT_KEY) -> Subscription:
        ...

    async def update_where(self, filter: dict[str, Any], fields: dict[str, Any]) -> int:
        ...

    async def get_by_account(self, account_id: str) -> Subscription | None:
        ...

    async def get_by_subscription_ref(self, ref: str) -> Subscription | None:
        ...


def _validate_record(record: dict[str, Any], conflict_key: str) -> None:
    if conflict_key != CONFLICT_KEY:
        raise ValueError(f"Unsupported conflict key: {conflict_key}")
    if not record.get(CONFLICT_KEY):
        raise ValueError("account_id is required for upsert")
    unknown = set(record) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown subscription fields: {', '.join(sorted(unknown))}")


def _validate_update(filter: dict[str, Any], fields: dict[str, Any]) -> None:
    if not filter:
        raise ValueError("update_where requires a filter")
    unknown_filter = set(filter) - _FILTER_FIELDS
    if unknown_filter:
        raise ValueError(f"Unsupported filter fields: {', '.join(sorted(unknown_filter))}")
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown subscription fields: {', '.join(sorted(unknown))}")


class InMemorySubscriptionStore(SubscriptionStore):
    """Thread-safe store used for unit tests and local development."""

    def __init__(self) -> None:
        self._records: dict[str, Subscription] = {}
        self._lock = Lock()

    async def upsert(self, record: dict[str, Any], conflict_key: str = CONFLICT_KEY) -> Subscription:
        _validate_record(record, conflict_key)
        with self._lock:
            existing = self._records.get(record[CONFLICT_KEY])
            if existing is None:
                existing = Subscription(**record)
                self._records[record[CONFLICT_KEY]] = existing
            else:
                for field, value in record.items():
                    setattr(existing, field, value)
                existing.updated_at = _utcnow()
        metrics.increment("billing.store.upserted", tags={"store": "memory"})
        return existing

    async def update_where(self, filter: dict[str, Any], fields: dict[str, Any]) -> int:
        _validate_update(filter, fields)
        updated = 0
        with self._lock:
            for record in self._records.values():
                if all(getattr(record, key) == value for key, value in filter.items()):
                    for field, value in fields.items():
                        setattr(record, field, value)
                    record.updated_at = _utcnow()
                    updated += 1
        metrics.increment("billing.store.updated", value=updated, tags={"store": "memory"})
        return updated

    async def get_by_account(self, account_id: str) -> Subscription | None:
        with self._lock:
            return self._records.get(account_id)

    async def get_by_subscription_ref(self, ref: str) -> Subscription | None:
        with self._lock:
            return next(
                (r for r in self._records.values() if r.external_subscription_ref == ref), None
            )

    def all(self) -> list[Subscription]:
        with self._lock:
            return list(self._records.values())


class SqlSubscriptionStore(SubscriptionStore):
    """SQLModel-backed store running on the request's async session."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def upsert(self, record: dict[str, Any], conflict_key: str = CONFLICT_KEY) -> Subscription:
        _validate_record(record, conflict_key)
        try:
            stmt = select(Subscription).where(Subscription.account_id == record[CONFLICT_KEY])
            result = await self._db.execute(stmt)
            existing = result.scalar_one_or_none()
            if existing is None:
                existing = Subscription(**record)
                self._db.add(existing)
            else:
                for field, value in record.items():
                    setattr(existing, field, value)
                existing.updated_at = _utcnow()
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception(
                "billing.store.upsert_failed", extra={"account_id": record.get(CONFLICT_KEY)}
            )
            raise SubscriptionStoreError(
                f"Failed to upsert subscription: {exc}", code="STORE_UPSERT_FAILED"
            ) from exc
        metrics.increment("billing.store.upserted", tags={"store": "sql"})
        return existing

    async def update_where(self, filter: dict[str, Any], fields: dict[str, Any]) -> int:
        _validate_update(filter, fields)
        conditions = [getattr(Subscription, key) == value for key, value in filter.items()]
        stmt = (
            update(Subscription)
            .where(*conditions)
            .values(**fields, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._db.execute(stmt)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("billing.store.update_failed", extra={"filter": filter})
            raise SubscriptionStoreError(
                f"Failed to update subscription: {exc}", code="STORE_UPDATE_FAILED"
            ) from exc
        updated = result.rowcount or 0
        metrics.increment("billing.store.updated", value=updated, tags={"store": "sql"})
        return updated

    async def get_by_account(self, account_id: str) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.account_id == account_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_subscription_ref(self, ref: str) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.external_subscription_ref == ref).limit(1)
        result = await self._db.execute(stmt)
        return result.scalars().first()
