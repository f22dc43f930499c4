"""Billing-page read model and cancellation requests for restaurant owners."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tablebill.core.database import get_database
from tablebill.models.subscription import SubscriptionStatus
from tablebill.services.billing.errors import ProcessorError
from tablebill.services.billing.processor import ProcessorClient, get_processor
from tablebill.services.billing.read_model import BillingOverview, build_billing_overview
from tablebill.services.billing.store import SqlSubscriptionStore

logger = logging.getLogger(__name__)
router = APIRouter()


class CancelResponse(BaseModel):
    status: str
    message: str


def _load_store(db: AsyncSession | None, action: str) -> SqlSubscriptionStore:
    if db is None:
        logger.warning(f"billing.{action}.db_missing")
        raise HTTPException(status_code=503, detail="Database not configured")
    return SqlSubscriptionStore(db)


@router.get("/billing/accounts/{account_id}", response_model=BillingOverview)
async def get_billing_overview(
    account_id: str,
    db: AsyncSession | None = Depends(get_database),
) -> BillingOverview:
    """Return subscription, feature flags and days remaining for an account."""
    store = _load_store(db, "overview")
    record = await store.get_by_account(account_id)
    if record is None:
        logger.info("billing.overview.missing", extra={"account_id": account_id})
        raise HTTPException(status_code=404, detail="Subscription not found")
    overview = build_billing_overview(record)
    logger.info(
        "billing.overview.read",
        extra={
            "account_id": account_id,
            "plan_type": record.plan_type,
            "status": overview.display_status,
            "days_remaining": overview.days_remaining,
        },
    )
    return overview


@router.post(
    "/billing/accounts/{account_id}/cancel", response_model=CancelResponse, status_code=202
)
async def request_cancellation(
    account_id: str,
    db: AsyncSession | None = Depends(get_database),
    processor: ProcessorClient = Depends(get_processor),
) -> CancelResponse:
    """Ask Stripe to cancel; the status flips when the deletion event arrives."""
    store = _load_store(db, "cancel")
    record = await store.get_by_account(account_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    if record.status == SubscriptionStatus.CANCELLED.value:
        return CancelResponse(status="cancelled", message="Subscription is already cancelled.")
    if not record.external_subscription_ref:
        raise HTTPException(
            status_code=409, detail="One-time plans have no recurring subscription to cancel"
        )
    try:
        processor.cancel_subscription(record.external_subscription_ref)
    except ProcessorError as exc:
        logger.warning(
            "billing.cancel.failed", extra={"account_id": account_id, "code": exc.code}
        )
        raise HTTPException(status_code=502, detail="Unable to cancel subscription") from exc
    logger.info(
        "billing.cancel.requested",
        extra={"account_id": account_id, "subscription_ref": record.external_subscription_ref},
    )
    return CancelResponse(
        status="cancellation_requested",
        message="Cancellation requested; access ends once Stripe confirms.",
    )
