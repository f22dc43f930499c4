"""Map Stripe lifecycle events onto the per-account subscription record.

Each handled event produces at most one store mutation:

* ``checkout.session.completed`` and ``payment_intent.succeeded`` upsert the
  record keyed on the account id carried in the object's metadata.
* ``invoice.payment_succeeded``, ``invoice.payment_failed`` and
  ``customer.subscription.deleted`` update the record addressed by the
  Stripe subscription id.

There is no status guard: the latest event always wins. ``expired`` is never
written here; read models derive it from ``period_end``.
"""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from tablebill.models.subscription import PlanType, SubscriptionStatus
from tablebill.observability.metrics import metrics
from tablebill.services.billing.plans import coerce_paid_plan, plan_duration
from tablebill.services.billing.processor import ProcessorClient
from tablebill.services.billing.store import SubscriptionStore

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
ONE_TIME_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
SUBSCRIPTION_CANCELLED = "customer.subscription.deleted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _object_id(value: Any) -> str | None:
    """Stripe ids arrive as strings, or as objects when the field is expanded."""
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


class LifecycleEvent(BaseModel):
    """Verified Stripe event; only ``data.object`` is consulted."""

    id: str = ""
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def data_object(self) -> dict[str, Any]:
        obj = self.data.get("object") if self.data else None
        return obj if isinstance(obj, dict) else {}


class SubscriptionReconciler:
    """Apply lifecycle events to the subscription store."""

    def __init__(
        self,
        store: SubscriptionStore,
        processor: ProcessorClient,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._processor = processor
        self._clock = clock
        self._handlers: dict[str, Callable[[LifecycleEvent], Awaitable[None]]] = {
            CHECKOUT_COMPLETED: self._on_checkout_completed,
            ONE_TIME_PAYMENT_SUCCEEDED: self._on_one_time_payment,
            INVOICE_PAYMENT_SUCCEEDED: self._on_invoice_paid,
            INVOICE_PAYMENT_FAILED: self._on_invoice_failed,
            SUBSCRIPTION_CANCELLED: self._on_subscription_cancelled,
        }

    async def handle(self, event: LifecycleEvent) -> None:
        """Apply ``event``; store and processor failures propagate to the caller."""
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(
                "billing.webhook.ignored_event",
                extra={"event_id": event.id, "type": event.type},
            )
            metrics.increment("billing.webhook.ignored", tags={"type": event.type})
            return
        await handler(event)

    async def _on_checkout_completed(self, event: LifecycleEvent) -> None:
        obj = event.data_object
        metadata = obj.get("metadata") or {}
        record = self._period_record(event, metadata)
        if record is None:
            return
        record["auto_renew"] = str(metadata.get("auto_renew", "")).lower() == "true"
        subscription_ref = _object_id(obj.get("subscription"))
        if subscription_ref:
            record["external_subscription_ref"] = subscription_ref
        customer_ref = _object_id(obj.get("customer"))
        if customer_ref:
            record["external_customer_ref"] = customer_ref
        await self._store.upsert(record)
        self._log_applied(event, record, note="checkout")

    async def _on_one_time_payment(self, event: LifecycleEvent) -> None:
        obj = event.data_object
        record = self._period_record(event, obj.get("metadata") or {})
        if record is None:
            return
        customer_ref = _object_id(obj.get("customer"))
        if customer_ref:
            record["external_customer_ref"] = customer_ref
        await self._store.upsert(record)
        self._log_applied(event, record, note="one_time_payment")

    async def _on_invoice_paid(self, event: LifecycleEvent) -> None:
        ref = self._subscription_ref(event, event.data_object.get("subscription"))
        if ref is None:
            return
        if await self._store.get_by_subscription_ref(ref) is None:
            self._unmatched(event, ref)
            return
        period = self._processor.fetch_subscription(ref)
        fields = {
            "status": SubscriptionStatus.ACTIVE.value,
            "period_start": period.period_start,
            "period_end": period.period_end,
        }
        await self._update_by_ref(event, ref, fields)

    async def _on_invoice_failed(self, event: LifecycleEvent) -> None:
        ref = self._subscription_ref(event, event.data_object.get("subscription"))
        if ref is None:
            return
        await self._update_by_ref(event, ref, {"status": SubscriptionStatus.PAST_DUE.value})

    async def _on_subscription_cancelled(self, event: LifecycleEvent) -> None:
        ref = self._subscription_ref(event, event.data_object.get("id"))
        if ref is None:
            return
        await self._update_by_ref(event, ref, {"status": SubscriptionStatus.CANCELLED.value})

    def _period_record(
        self, event: LifecycleEvent, metadata: dict[str, Any]
    ) -> dict[str, Any] | None:
        account_id = metadata.get("user_id")
        if not account_id:
            self._skip(event, reason="missing_account_id")
            return None
        plan = coerce_paid_plan(metadata.get("plan_type"))
        if plan is None:
            logger.warning(
                "billing.webhook.unknown_plan",
                extra={"event_id": event.id, "plan_type": metadata.get("plan_type")},
            )
            plan = PlanType.MONTHLY
        period_start = self._clock()
        return {
            "account_id": str(account_id),
            "plan_type": plan.value,
            "status": SubscriptionStatus.ACTIVE.value,
            "period_start": period_start,
            "period_end": period_start + plan_duration(plan),
        }

    def _subscription_ref(self, event: LifecycleEvent, value: Any) -> str | None:
        ref = _object_id(value)
        if ref is None:
            self._skip(event, reason="missing_subscription_ref")
        return ref

    async def _update_by_ref(self, event: LifecycleEvent, ref: str, fields: dict[str, Any]) -> None:
        updated = await self._store.update_where({"external_subscription_ref": ref}, fields)
        if not updated:
            self._unmatched(event, ref)
            return
        self._log_applied(event, {"external_subscription_ref": ref, **fields})

    def _unmatched(self, event: LifecycleEvent, ref: str) -> None:
        logger.warning(
            "billing.webhook.unknown_subscription",
            extra={"event_id": event.id, "type": event.type, "subscription_ref": ref},
        )
        metrics.increment("billing.webhook.unmatched", tags={"type": event.type})

    def _skip(self, event: LifecycleEvent, *, reason: str) -> None:
        logger.warning(
            "billing.webhook.skipped_event",
            extra={"event_id": event.id, "type": event.type, "reason": reason},
        )
        metrics.increment("billing.webhook.skipped", tags={"type": event.type, "reason": reason})

    def _log_applied(
        self, event: LifecycleEvent, record: dict[str, Any], note: str | None = None
    ) -> None:
        logger.info(
            "billing.webhook.persisted",
            extra={
                "event_id": event.id,
                "type": event.type,
                "account_id": record.get("account_id"),
                "subscription_ref": record.get("external_subscription_ref"),
                "status": record.get("status"),
                "plan_type": record.get("plan_type"),
                "note": note,
            },
        )
        metrics.increment("billing.webhook.persisted", tags={"type": event.type})
