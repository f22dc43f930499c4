from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from tablebill.models.subscription import Subscription
from tablebill.services.billing.errors import SubscriptionStoreError
from tablebill.services.billing.store import InMemorySubscriptionStore, SqlSubscriptionStore
from tests.helpers.sqlite_session import SyncAsyncSession

START = datetime(2026, 1, 1, tzinfo=UTC)


def _record(account_id: str = "acct_sql", **overrides):
    payload = {
        "account_id": account_id,
        "plan_type": "monthly",
        "status": "active",
        "period_start": START,
        "period_end": START + timedelta(days=30),
        "external_subscription_ref": "sub_sql",
    }
    payload.update(overrides)
    return payload


def _rows(factory) -> list[Subscription]:
    with factory() as session:
        return list(session.exec(select(Subscription)).all())


def test_upsert_inserts_then_updates_single_row(sqlite_db):
    store = SqlSubscriptionStore(SyncAsyncSession(sqlite_db))

    asyncio.run(store.upsert(_record()))
    asyncio.run(store.upsert(_record(plan_type="annual", period_end=START + timedelta(days=365))))

    rows = _rows(sqlite_db)
    assert len(rows) == 1
    assert rows[0].plan_type == "annual"


def test_upsert_rejects_unknown_conflict_key(sqlite_db):
    store = SqlSubscriptionStore(SyncAsyncSession(sqlite_db))

    with pytest.raises(ValueError):
        asyncio.run(store.upsert(_record(), conflict_key="external_subscription_ref"))


def test_update_where_reports_matched_rows(sqlite_db):
    store = SqlSubscriptionStore(SyncAsyncSession(sqlite_db))
    asyncio.run(store.upsert(_record()))

    matched = asyncio.run(
        store.update_where({"external_subscription_ref": "sub_sql"}, {"status": "past_due"})
    )
    missing = asyncio.run(
        store.update_where({"external_subscription_ref": "sub_other"}, {"status": "cancelled"})
    )

    assert matched == 1
    assert missing == 0
    assert _rows(sqlite_db)[0].status == "past_due"


def test_lookup_by_subscription_ref(sqlite_db):
    store = SqlSubscriptionStore(SyncAsyncSession(sqlite_db))
    asyncio.run(store.upsert(_record()))

    found = asyncio.run(store.get_by_subscription_ref("sub_sql"))
    missing = asyncio.run(store.get_by_subscription_ref("sub_other"))

    assert found is not None
    assert found.account_id == "acct_sql"
    assert missing is None


def test_in_memory_lookup_by_subscription_ref():
    store = InMemorySubscriptionStore()
    asyncio.run(store.upsert(_record(account_id="acct_mem", external_subscription_ref="sub_mem")))

    assert asyncio.run(store.get_by_subscription_ref("sub_mem")).account_id == "acct_mem"
    assert asyncio.run(store.get_by_subscription_ref("sub_sql")) is None


def test_update_where_rejects_unfiltered_updates(sqlite_db):
    store = SqlSubscriptionStore(SyncAsyncSession(sqlite_db))

    with pytest.raises(ValueError):
        asyncio.run(store.update_where({}, {"status": "cancelled"}))


def test_database_errors_surface_as_store_errors():
    class FailingSession:
        def __init__(self) -> None:
            self.rolled_back = False

        async def execute(self, stmt):
            raise OperationalError("UPDATE subscriptions", {}, Exception("database is locked"))

        async def commit(self):
            return None

        async def rollback(self):
            self.rolled_back = True

    session = FailingSession()
    store = SqlSubscriptionStore(session)

    with pytest.raises(SubscriptionStoreError) as exc_info:
        asyncio.run(store.update_where({"external_subscription_ref": "sub"}, {"status": "past_due"}))

    assert exc_info.value.code == "STORE_UPDATE_FAILED"
    assert session.rolled_back is True
