"""Plan catalogue: billing period lengths, prices, labels and feature flags."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any

from tablebill.models.subscription import PlanType

DEFAULT_PERIOD_DAYS = 30

_PERIOD_DAYS: dict[str, int] = {
    PlanType.MONTHLY.value: 30,
    PlanType.SEMIANNUAL.value: 180,
    PlanType.ANNUAL.value: 365,
}

_PLAN_PRICES: dict[str, Decimal] = {
    PlanType.TRIAL.value: Decimal("0.00"),
    PlanType.MONTHLY.value: Decimal("2.99"),
    PlanType.SEMIANNUAL.value: Decimal("9.99"),
    PlanType.ANNUAL.value: Decimal("19.99"),
}

_PLAN_LABELS: dict[str, str] = {
    PlanType.TRIAL.value: "Free Trial",
    PlanType.MONTHLY.value: "Monthly Plan",
    PlanType.SEMIANNUAL.value: "6-Month Plan",
    PlanType.ANNUAL.value: "Annual Plan",
}

_PRICE_DISPLAY: dict[str, str] = {
    PlanType.TRIAL.value: "Free",
    PlanType.MONTHLY.value: "$2.99/month",
    PlanType.SEMIANNUAL.value: "$9.99 (6 months)",
    PlanType.ANNUAL.value: "$19.99 (1 year)",
}


@dataclass(frozen=True)
class PlanFeatures:
    """Feature flags unlocked by a plan; -1 means unlimited."""

    max_customers: int
    max_branches: int
    advanced_analytics: bool
    priority_support: bool
    api_access: bool
    custom_branding: bool

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


TRIAL_FEATURES = PlanFeatures(
    max_customers=100,
    max_branches=1,
    advanced_analytics=False,
    priority_support=False,
    api_access=False,
    custom_branding=False,
)

_PAID_FEATURES: dict[str, PlanFeatures] = {
    PlanType.MONTHLY.value: PlanFeatures(
        max_customers=1000,
        max_branches=1,
        advanced_analytics=True,
        priority_support=False,
        api_access=False,
        custom_branding=False,
    ),
    PlanType.SEMIANNUAL.value: PlanFeatures(
        max_customers=-1,
        max_branches=3,
        advanced_analytics=True,
        priority_support=True,
        api_access=False,
        custom_branding=True,
    ),
    PlanType.ANNUAL.value: PlanFeatures(
        max_customers=-1,
        max_branches=-1,
        advanced_analytics=True,
        priority_support=True,
        api_access=True,
        custom_branding=True,
    ),
}


def plan_period_days(plan_type: str | None) -> int:
    return _PERIOD_DAYS.get(_plan_value(plan_type), DEFAULT_PERIOD_DAYS)


def plan_duration(plan_type: str | None) -> timedelta:
    """Return the billing period for a plan; unknown plans fall back to 30 days.

    Every code path that derives ``period_end`` from a plan must go through
    this function.
    """
    return timedelta(days=plan_period_days(plan_type))


def coerce_paid_plan(plan_type: str | None) -> PlanType | None:
    """Return the paid plan named by ``plan_type`` or None when unrecognised."""
    value = _plan_value(plan_type)
    if value in _PERIOD_DAYS:
        return PlanType(value)
    return None


def plan_price(plan_type: str | None) -> Decimal:
    return _PLAN_PRICES.get(_plan_value(plan_type), Decimal("0.00"))


def plan_label(plan_type: str | None) -> str:
    return _PLAN_LABELS.get(_plan_value(plan_type), "Unknown Plan")


def plan_price_display(plan_type: str | None) -> str:
    return _PRICE_DISPLAY.get(_plan_value(plan_type), "N/A")


def plan_features(plan_type: str | None) -> PlanFeatures:
    return _PAID_FEATURES.get(_plan_value(plan_type), TRIAL_FEATURES)


def is_paid_plan(plan_type: str | None) -> bool:
    return _plan_value(plan_type) != PlanType.TRIAL.value


def _plan_value(plan_type: str | None) -> str:
    if isinstance(plan_type, PlanType):
        return plan_type.value
    return (plan_type or "").strip().lower()
