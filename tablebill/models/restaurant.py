"""Read-only tables backing the super-admin dashboard."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class OwnerAccount(SQLModel, table=True):
    """Mirror of the hosted auth user list; used for email lookups."""

    __tablename__ = "owner_accounts"

    id: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    email: str = Field(sa_column=Column(String(length=255), nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


class Restaurant(SQLModel, table=True):
    __tablename__ = "restaurants"
    __table_args__ = (sa.Index("ix_restaurants_owner_id", "owner_id"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    slug: str = Field(sa_column=Column(String(length=255), nullable=False, unique=True))
    owner_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


class Customer(SQLModel, table=True):
    """Loyalty customer enrolled at a restaurant; only counted here."""

    __tablename__ = "customers"
    __table_args__ = (sa.Index("ix_customers_restaurant_id", "restaurant_id"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    restaurant_id: UUID = Field(
        sa_column=Column(
            sa.Uuid(),
            sa.ForeignKey("restaurants.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


class SupportTicket(SQLModel, table=True):
    __tablename__ = "support_tickets"
    __table_args__ = (sa.Index("ix_support_tickets_status", "status"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    restaurant_id: UUID | None = Field(
        default=None,
        sa_column=Column(
            sa.Uuid(),
            sa.ForeignKey("restaurants.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    subject: str = Field(sa_column=Column(String(length=255), nullable=False))
    message: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    status: str = Field(
        default=TicketStatus.OPEN.value, sa_column=Column(String(length=32), nullable=False)
    )
    priority: str = Field(
        default=TicketPriority.MEDIUM.value, sa_column=Column(String(length=32), nullable=False)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
