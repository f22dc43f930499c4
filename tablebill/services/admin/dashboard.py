"""Super-admin listings and platform statistics."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tablebill.models.restaurant import Customer, OwnerAccount, Restaurant, SupportTicket
from tablebill.models.subscription import PlanType, Subscription, SubscriptionStatus
from tablebill.services.billing.plans import is_paid_plan, plan_price

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


class RestaurantSummary(BaseModel):
    id: UUID
    name: str
    slug: str
    owner_email: str
    customer_count: int
    subscription_plan: str
    subscription_status: str
    created_at: str


class SubscriptionSummary(BaseModel):
    id: UUID
    account_id: str
    plan_type: str
    status: str
    period_start: str
    period_end: str
    external_subscription_ref: str | None = None
    user_email: str
    restaurant_name: str
    created_at: str


class SupportTicketSummary(BaseModel):
    id: UUID
    subject: str
    message: str
    status: str
    priority: str
    restaurant_id: UUID | None = None
    restaurant_name: str
    created_at: str


class DashboardStats(BaseModel):
    total_restaurants: int
    total_customers: int
    total_subscriptions: int
    total_revenue: float
    active_subscriptions: int
    trial_subscriptions: int
    paid_subscriptions: int
    churn_rate: float


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _matches(query: str | None, *values: str | None) -> bool:
    if not query:
        return True
    needle = query.strip().lower()
    return any(needle in (value or "").lower() for value in values)


def _status_matches(status_filter: str | None, status: str) -> bool:
    return not status_filter or status_filter == "all" or status_filter == status


async def _owner_emails(db: AsyncSession) -> dict[str, str]:
    result = await db.execute(select(OwnerAccount))
    return {owner.id: owner.email for owner in result.scalars().all()}


async def _subscriptions_by_account(db: AsyncSession) -> dict[str, Subscription]:
    result = await db.execute(select(Subscription))
    return {record.account_id: record for record in result.scalars().all()}


async def list_restaurants(
    db: AsyncSession, *, query: str | None = None, status: str | None = None
) -> list[RestaurantSummary]:
    """Restaurants newest first, joined with owner email, customers and plan."""
    result = await db.execute(select(Restaurant).order_by(Restaurant.created_at.desc()))
    restaurants = result.scalars().all()
    emails = await _owner_emails(db)
    subscriptions = await _subscriptions_by_account(db)
    counts_result = await db.execute(
        select(Customer.restaurant_id, func.count(Customer.id)).group_by(Customer.restaurant_id)
    )
    customer_counts = {restaurant_id: count for restaurant_id, count in counts_result.all()}

    summaries: list[RestaurantSummary] = []
    for restaurant in restaurants:
        subscription = subscriptions.get(restaurant.owner_id)
        summary = RestaurantSummary(
            id=restaurant.id,
            name=restaurant.name,
            slug=restaurant.slug,
            owner_email=emails.get(restaurant.owner_id, UNKNOWN),
            customer_count=customer_counts.get(restaurant.id, 0),
            subscription_plan=subscription.plan_type if subscription else PlanType.TRIAL.value,
            subscription_status=(
                subscription.status if subscription else SubscriptionStatus.ACTIVE.value
            ),
            created_at=_iso(restaurant.created_at),
        )
        if _matches(query, summary.name, summary.owner_email) and _status_matches(
            status, summary.subscription_status
        ):
            summaries.append(summary)
    logger.info(
        "admin.restaurants.list",
        extra={"count": len(summaries), "total": len(restaurants), "status": status},
    )
    return summaries


async def list_subscriptions(
    db: AsyncSession,
    *,
    limit: int = 50,
    query: str | None = None,
    status: str | None = None,
) -> list[SubscriptionSummary]:
    """Latest subscriptions joined with owner email and restaurant name."""
    result = await db.execute(
        select(Subscription).order_by(Subscription.created_at.desc()).limit(max(limit, 1))
    )
    records = result.scalars().all()
    emails = await _owner_emails(db)
    restaurants_result = await db.execute(select(Restaurant))
    restaurant_names = {r.owner_id: r.name for r in restaurants_result.scalars().all()}

    summaries: list[SubscriptionSummary] = []
    for record in records:
        summary = SubscriptionSummary(
            id=record.id,
            account_id=record.account_id,
            plan_type=record.plan_type,
            status=record.status,
            period_start=_iso(record.period_start),
            period_end=_iso(record.period_end),
            external_subscription_ref=record.external_subscription_ref,
            user_email=emails.get(record.account_id, UNKNOWN),
            restaurant_name=restaurant_names.get(record.account_id, UNKNOWN),
            created_at=_iso(record.created_at),
        )
        if _matches(query, summary.user_email, summary.restaurant_name) and _status_matches(
            status, summary.status
        ):
            summaries.append(summary)
    logger.info("admin.subscriptions.list", extra={"count": len(summaries), "status": status})
    return summaries


async def list_support_tickets(
    db: AsyncSession, *, query: str | None = None, status: str | None = None
) -> list[SupportTicketSummary]:
    result = await db.execute(select(SupportTicket).order_by(SupportTicket.created_at.desc()))
    tickets = result.scalars().all()
    restaurants_result = await db.execute(select(Restaurant))
    names = {r.id: r.name for r in restaurants_result.scalars().all()}
    summaries = [
        SupportTicketSummary(
            id=ticket.id,
            subject=ticket.subject,
            message=ticket.message,
            status=ticket.status,
            priority=ticket.priority,
            restaurant_id=ticket.restaurant_id,
            restaurant_name=names.get(ticket.restaurant_id, UNKNOWN),
            created_at=_iso(ticket.created_at),
        )
        for ticket in tickets
    ]
    return [
        ticket
        for ticket in summaries
        if _matches(query, ticket.subject, ticket.restaurant_name)
        and _status_matches(status, ticket.status)
    ]


async def load_stats(db: AsyncSession) -> DashboardStats:
    restaurants = (await db.execute(select(func.count(Restaurant.id)))).scalar_one()
    customers = (await db.execute(select(func.count(Customer.id)))).scalar_one()
    result = await db.execute(select(Subscription.plan_type, Subscription.status))
    rows = result.all()

    total = len(rows)
    active = sum(1 for _, status in rows if status == SubscriptionStatus.ACTIVE.value)
    trial = sum(1 for plan, _ in rows if plan == PlanType.TRIAL.value)
    paid = sum(1 for plan, _ in rows if is_paid_plan(plan))
    cancelled = sum(1 for _, status in rows if status == SubscriptionStatus.CANCELLED.value)
    revenue = sum((plan_price(plan) for plan, _ in rows), Decimal("0.00"))
    churn_rate = (cancelled / total) * 100 if total else 0.0

    stats = DashboardStats(
        total_restaurants=restaurants or 0,
        total_customers=customers or 0,
        total_subscriptions=total,
        total_revenue=float(revenue),
        active_subscriptions=active,
        trial_subscriptions=trial,
        paid_subscriptions=paid,
        churn_rate=round(churn_rate, 2),
    )
    logger.info("admin.stats.loaded", extra=stats.model_dump())
    return stats
