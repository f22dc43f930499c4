"""Super-admin dashboard: login, listings and platform stats."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tablebill.config import settings
from tablebill.core.database import get_database
from tablebill.observability.metrics import metrics
from tablebill.services.admin import dashboard
from tablebill.services.admin.sessions import (
    AdminSession,
    AdminSessionError,
    login_rate_limiter,
    registry,
)

logger = logging.getLogger(__name__)
router = APIRouter()

RATE_LIMIT_KEY_LOGIN = "admin_login"


class AdminLoginRequest(BaseModel):
    password: str


class AdminLoginResponse(BaseModel):
    session_token: str
    expires_at: str


class AdminLogoutResponse(BaseModel):
    status: str


def _bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization")
    return authorization.split(" ", 1)[1].strip()


def require_admin(authorization: str | None = Header(default=None)) -> AdminSession:
    token = _bearer_token(authorization)
    try:
        return registry.resolve(token)
    except AdminSessionError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def _require_db(db: AsyncSession | None) -> AsyncSession:
    if db is None:
        logger.warning("admin.db_missing")
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


def _enforce_rate_limit(identity: str) -> None:
    retry_after = login_rate_limiter.check((identity, RATE_LIMIT_KEY_LOGIN))
    if retry_after is not None:
        logger.warning("admin.login.rate_limited", extra={"retry_after": retry_after})
        metrics.increment("admin.login.rate_limited")
        raise HTTPException(
            status_code=429,
            detail="Too many login attempts",
            headers={"Retry-After": str(int(retry_after) + 1)},
        )


@router.post("/admin/login", response_model=AdminLoginResponse)
async def admin_login(payload: AdminLoginRequest, request: Request) -> AdminLoginResponse:
    """Exchange the super-admin password for a time-bound session token."""
    if not settings.admin_login_enabled:
        raise HTTPException(status_code=503, detail="Super-admin login not configured")
    client_host = request.client.host if request.client else "unknown"
    _enforce_rate_limit(client_host)
    if not registry.verify_password(payload.password):
        logger.warning("admin.login.rejected")
        metrics.increment("admin.login.rejected")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    session = registry.issue()
    metrics.increment("admin.login.succeeded")
    return AdminLoginResponse(
        session_token=session.token, expires_at=session.expires_at.isoformat()
    )


@router.post("/admin/logout", response_model=AdminLogoutResponse)
async def admin_logout(session: AdminSession = Depends(require_admin)) -> AdminLogoutResponse:
    registry.revoke(session.token)
    return AdminLogoutResponse(status="signed_out")


@router.get("/admin/restaurants", response_model=list[dashboard.RestaurantSummary])
async def list_restaurants(
    q: str | None = Query(None, description="Match restaurant name or owner email."),
    status: str | None = Query(None, description="Subscription status filter or 'all'."),
    _: AdminSession = Depends(require_admin),
    db: AsyncSession | None = Depends(get_database),
) -> list[dashboard.RestaurantSummary]:
    return await dashboard.list_restaurants(_require_db(db), query=q, status=status)


@router.get("/admin/subscriptions", response_model=list[dashboard.SubscriptionSummary])
async def list_subscriptions(
    q: str | None = Query(None, description="Match owner email or restaurant name."),
    status: str | None = Query(None, description="Subscription status filter or 'all'."),
    _: AdminSession = Depends(require_admin),
    db: AsyncSession | None = Depends(get_database),
) -> list[dashboard.SubscriptionSummary]:
    return await dashboard.list_subscriptions(
        _require_db(db),
        limit=settings.admin_subscription_list_limit,
        query=q,
        status=status,
    )


@router.get("/admin/support-tickets", response_model=list[dashboard.SupportTicketSummary])
async def list_support_tickets(
    q: str | None = Query(None, description="Match subject or restaurant name."),
    status: str | None = Query(None, description="Ticket status filter or 'all'."),
    _: AdminSession = Depends(require_admin),
    db: AsyncSession | None = Depends(get_database),
) -> list[dashboard.SupportTicketSummary]:
    return await dashboard.list_support_tickets(_require_db(db), query=q, status=status)


@router.get("/admin/stats", response_model=dashboard.DashboardStats)
async def get_stats(
    _: AdminSession = Depends(require_admin),
    db: AsyncSession | None = Depends(get_database),
) -> dashboard.DashboardStats:
    return await dashboard.load_stats(_require_db(db))
