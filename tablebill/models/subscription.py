"""SQLModel mapping for restaurant-owner subscriptions."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanType(str, Enum):
    TRIAL = "trial"
    MONTHLY = "monthly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Subscription(SQLModel, table=True):
    """Billing state for one restaurant-owner account."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        sa.UniqueConstraint("account_id", name="uq_subscriptions_account_id"),
        sa.Index("ix_subscriptions_external_subscription_ref", "external_subscription_ref"),
        sa.Index("ix_subscriptions_status", "status"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    plan_type: str = Field(
        default=PlanType.TRIAL.value, sa_column=Column(String(length=32), nullable=False)
    )
    status: str = Field(
        default=SubscriptionStatus.ACTIVE.value,
        sa_column=Column(String(length=32), nullable=False),
    )
    period_start: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    period_end: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    external_subscription_ref: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    external_customer_ref: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    auto_renew: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )
