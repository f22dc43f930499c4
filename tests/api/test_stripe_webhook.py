from __future__ import annotations

import hmac
import json
import time
from datetime import UTC, datetime, timedelta
from hashlib import sha256

import pytest
from sqlmodel import select

from tablebill.api.routes import webhook as webhook_routes
from tablebill.config import settings
from tablebill.main import app
from tablebill.models.subscription import Subscription
from tablebill.services.billing.errors import SubscriptionStoreError
from tablebill.services.billing.reconciler import SubscriptionReconciler
from tablebill.services.billing.store import InMemorySubscriptionStore

WEBHOOK_SECRET = "whsec_test"  # noqa: S105 - test fixture value
WEBHOOK_URL = "/billing/stripe/webhook"


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)


def _sign_payload(secret: str, payload: str, timestamp: str | None = None) -> str:
    timestamp = timestamp or str(int(time.time()))
    signature = hmac.new(
        secret.encode(),
        msg=f"{timestamp}.{payload}".encode(),
        digestmod=sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def _post_event(
    client, event: dict, *, secret: str = WEBHOOK_SECRET, timestamp: str | None = None
):
    payload = json.dumps(event)
    return client.post(
        WEBHOOK_URL,
        content=payload,
        headers={
            "Stripe-Signature": _sign_payload(secret, payload, timestamp),
            "Content-Type": "application/json",
        },
    )


def _checkout_event(account_id: str = "owner_1", plan_type: str = "annual") -> dict:
    return {
        "id": "evt_checkout",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_1",
                "subscription": "sub_web",
                "customer": "cus_web",
                "metadata": {"user_id": account_id, "plan_type": plan_type, "auto_renew": "true"},
            }
        },
    }


def _get_subscription(factory, account_id: str) -> Subscription | None:
    with factory() as session:
        return session.exec(select(Subscription).where(Subscription.account_id == account_id)).first()


def test_preflight_returns_permissive_cors(client):
    response = client.options(WEBHOOK_URL)

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "POST" in response.headers["access-control-allow-methods"]
    assert "stripe-signature" in response.headers["access-control-allow-headers"]


def test_missing_signature_is_rejected(client, sqlite_db, fake_processor):
    response = client.post(WEBHOOK_URL, content=json.dumps(_checkout_event()))

    assert response.status_code == 400
    assert response.text == "No signature"
    assert _get_subscription(sqlite_db, "owner_1") is None


def test_invalid_signature_is_rejected_without_mutation(client, sqlite_db, fake_processor):
    response = _post_event(client, _checkout_event(), secret="whsec_wrong")  # noqa: S106

    assert response.status_code == 400
    assert response.text.startswith("Webhook error:")
    assert _get_subscription(sqlite_db, "owner_1") is None


def test_stale_signature_is_rejected_without_mutation(client, sqlite_db, fake_processor):
    stale = str(int(time.time()) - settings.stripe_webhook_tolerance_seconds - 60)

    response = _post_event(client, _checkout_event(), timestamp=stale)

    assert response.status_code == 400
    assert response.text.startswith("Webhook error:")
    assert _get_subscription(sqlite_db, "owner_1") is None


def test_non_utf8_body_is_rejected(client, sqlite_db, fake_processor):
    body = b'{"type": "checkout.session.completed", "note": "\xff\xfe"}'
    timestamp = str(int(time.time()))
    signature = hmac.new(
        WEBHOOK_SECRET.encode(), msg=timestamp.encode() + b"." + body, digestmod=sha256
    ).hexdigest()

    response = client.post(
        WEBHOOK_URL,
        content=body,
        headers={"Stripe-Signature": f"t={timestamp},v1={signature}"},
    )

    assert response.status_code == 400
    assert response.text == "Webhook error: Invalid payload encoding"
    assert response.headers["access-control-allow-origin"] == "*"


def test_checkout_event_creates_subscription(client, sqlite_db, fake_processor):
    response = _post_event(client, _checkout_event())

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert response.headers["access-control-allow-origin"] == "*"
    record = _get_subscription(sqlite_db, "owner_1")
    assert record is not None
    assert record.status == "active"
    assert record.plan_type == "annual"
    assert record.external_subscription_ref == "sub_web"
    assert (record.period_end - record.period_start) == timedelta(days=365)


def test_lifecycle_sequence_through_endpoint(client, sqlite_db, fake_processor):
    _post_event(client, _checkout_event(plan_type="monthly"))

    failed = _post_event(
        client,
        {
            "id": "evt_failed",
            "type": "invoice.payment_failed",
            "data": {"object": {"id": "in_1", "subscription": "sub_web"}},
        },
    )
    assert failed.status_code == 200
    assert _get_subscription(sqlite_db, "owner_1").status == "past_due"

    renewed_start = datetime(2026, 2, 1, tzinfo=UTC)
    fake_processor.set_period("sub_web", renewed_start, renewed_start + timedelta(days=30))
    paid = _post_event(
        client,
        {
            "id": "evt_paid",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"id": "in_2", "subscription": "sub_web"}},
        },
    )
    assert paid.status_code == 200
    record = _get_subscription(sqlite_db, "owner_1")
    assert record.status == "active"
    assert record.period_start.replace(tzinfo=UTC) == renewed_start

    cancelled = _post_event(
        client,
        {
            "id": "evt_deleted",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_web"}},
        },
    )
    assert cancelled.status_code == 200
    assert _get_subscription(sqlite_db, "owner_1").status == "cancelled"


def test_invoice_paid_for_untracked_subscription_is_acknowledged(
    client, sqlite_db, fake_processor
):
    _post_event(client, _checkout_event())
    before = _get_subscription(sqlite_db, "owner_1")

    response = _post_event(
        client,
        {
            "id": "evt_untracked",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"id": "in_9", "subscription": "sub_untracked"}},
        },
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert fake_processor.fetch_calls == []
    after = _get_subscription(sqlite_db, "owner_1")
    assert after.status == before.status
    assert after.period_end == before.period_end


def test_unknown_event_type_is_acknowledged(client, sqlite_db, fake_processor):
    response = _post_event(
        client, {"id": "evt_other", "type": "customer.created", "data": {"object": {}}}
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}


def test_event_with_missing_account_is_acknowledged(client, sqlite_db, fake_processor):
    event = _checkout_event()
    event["data"]["object"]["metadata"] = {"plan_type": "annual"}

    response = _post_event(client, event)

    assert response.status_code == 200
    with sqlite_db() as session:
        assert session.exec(select(Subscription)).all() == []


def test_unparseable_body_is_rejected(client, sqlite_db, fake_processor):
    payload = "not-json"
    response = client.post(
        WEBHOOK_URL,
        content=payload,
        headers={"Stripe-Signature": _sign_payload(WEBHOOK_SECRET, payload)},
    )

    assert response.status_code == 400
    assert response.text == "Webhook error: Invalid payload"


def test_store_failure_returns_plain_text_error(client, fake_processor):
    class BrokenStore(InMemorySubscriptionStore):
        async def upsert(self, record, conflict_key="account_id"):
            raise SubscriptionStoreError("constraint violated", code="STORE_UPSERT_FAILED")

    app.dependency_overrides[webhook_routes.get_reconciler] = lambda: SubscriptionReconciler(
        BrokenStore(), fake_processor
    )
    try:
        response = _post_event(client, _checkout_event())
    finally:
        app.dependency_overrides.pop(webhook_routes.get_reconciler, None)

    assert response.status_code == 400
    assert response.text == "Webhook error: constraint violated"
    assert response.headers["content-type"].startswith("text/plain")


def test_missing_database_returns_error(client, fake_processor):
    response = _post_event(client, _checkout_event())

    assert response.status_code == 400
    assert response.text == "Webhook error: Database not configured"
