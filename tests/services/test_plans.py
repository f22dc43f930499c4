from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from tablebill.models.subscription import PlanType
from tablebill.services.billing import plans


@pytest.mark.parametrize(
    ("plan_type", "days"),
    [("monthly", 30), ("semiannual", 180), ("annual", 365), (PlanType.ANNUAL, 365)],
)
def test_plan_duration_for_paid_plans(plan_type, days):
    assert plans.plan_duration(plan_type) == timedelta(days=days)


@pytest.mark.parametrize("plan_type", ["trial", "weekly", "", None, "ANNUALLY"])
def test_plan_duration_falls_back_to_thirty_days(plan_type):
    assert plans.plan_duration(plan_type) == timedelta(days=30)


def test_coerce_paid_plan_normalizes_case_and_rejects_trial():
    assert plans.coerce_paid_plan(" Annual ") is PlanType.ANNUAL
    assert plans.coerce_paid_plan("trial") is None
    assert plans.coerce_paid_plan(None) is None


def test_plan_catalogue_prices_and_labels():
    assert plans.plan_price("monthly") == Decimal("2.99")
    assert plans.plan_price("semiannual") == Decimal("9.99")
    assert plans.plan_price("annual") == Decimal("19.99")
    assert plans.plan_price("trial") == Decimal("0.00")
    assert plans.plan_label("semiannual") == "6-Month Plan"
    assert plans.plan_label("mystery") == "Unknown Plan"
    assert plans.plan_price_display("mystery") == "N/A"


def test_feature_flags_scale_with_plan():
    trial = plans.plan_features("trial")
    annual = plans.plan_features("annual")

    assert trial == plans.TRIAL_FEATURES
    assert trial.max_branches == 1 and not trial.api_access
    assert annual.max_customers == -1 and annual.api_access
    assert plans.plan_features("unknown") == plans.TRIAL_FEATURES
