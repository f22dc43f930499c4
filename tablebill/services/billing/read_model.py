"""Billing-page projection derived from the persisted subscription record."""
# ruff: noqa: UP017

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel

from tablebill.models.subscription import Subscription, SubscriptionStatus
from tablebill.services.billing.plans import (
    TRIAL_FEATURES,
    plan_features,
    plan_label,
    plan_period_days,
    plan_price,
    plan_price_display,
)

_LAPSABLE_STATUSES = {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAST_DUE.value}


class SubscriptionView(BaseModel):
    account_id: str
    plan_type: str
    status: str
    period_start: str
    period_end: str
    external_subscription_ref: str | None = None
    external_customer_ref: str | None = None
    auto_renew: bool


class BillingOverview(BaseModel):
    subscription: SubscriptionView
    display_status: str
    plan_label: str
    plan_price: str
    plan_price_display: str
    period_days: int
    days_remaining: int
    is_expired: bool
    features: dict[str, Any]


def to_aware(dt: datetime) -> datetime:
    """Treat naive timestamps (SQLite round-trips) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def days_remaining(period_end: datetime, now: datetime) -> int:
    remaining = to_aware(period_end) - to_aware(now)
    if remaining <= timedelta(0):
        return 0
    return math.ceil(remaining / timedelta(days=1))


def display_status(record: Subscription, now: datetime) -> str:
    """Return the status shown to users; ``expired`` is derived, never stored."""
    if record.status in _LAPSABLE_STATUSES and to_aware(now) > to_aware(record.period_end):
        return SubscriptionStatus.EXPIRED.value
    return record.status


def build_billing_overview(record: Subscription, now: datetime | None = None) -> BillingOverview:
    now = now or datetime.now(timezone.utc)
    status = display_status(record, now)
    lapsed = to_aware(now) > to_aware(record.period_end)
    features = TRIAL_FEATURES if lapsed else plan_features(record.plan_type)
    return BillingOverview(
        subscription=SubscriptionView(
            account_id=record.account_id,
            plan_type=record.plan_type,
            status=record.status,
            period_start=to_aware(record.period_start).isoformat(),
            period_end=to_aware(record.period_end).isoformat(),
            external_subscription_ref=record.external_subscription_ref,
            external_customer_ref=record.external_customer_ref,
            auto_renew=record.auto_renew,
        ),
        display_status=status,
        plan_label=plan_label(record.plan_type),
        plan_price=str(plan_price(record.plan_type)),
        plan_price_display=plan_price_display(record.plan_type),
        period_days=plan_period_days(record.plan_type),
        days_remaining=days_remaining(record.period_end, now),
        is_expired=status == SubscriptionStatus.EXPIRED.value,
        features=features.as_dict(),
    )
