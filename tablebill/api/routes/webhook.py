"""Stripe webhook boundary: signature check, event parsing, reconciliation."""

from __future__ import annotations

import json
import logging

import stripe
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tablebill.config import settings
from tablebill.core.database import get_database
from tablebill.observability.metrics import metrics
from tablebill.services.billing.errors import BillingError, EventPayloadError
from tablebill.services.billing.processor import ProcessorClient, get_processor
from tablebill.services.billing.reconciler import LifecycleEvent, SubscriptionReconciler
from tablebill.services.billing.store import SqlSubscriptionStore

logger = logging.getLogger(__name__)
router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, stripe-signature",
}


class WebhookRejected(Exception):
    """Signature or payload rejected before reaching the reconciler."""


def get_reconciler(
    db: AsyncSession | None = Depends(get_database),
    processor: ProcessorClient = Depends(get_processor),
) -> SubscriptionReconciler | None:
    if db is None:
        return None
    return SubscriptionReconciler(SqlSubscriptionStore(db), processor)


def _verify_signature(payload: str, signature_header: str) -> None:
    secret = settings.stripe_webhook_secret or ""
    try:
        stripe.WebhookSignature.verify_header(
            payload,
            signature_header,
            secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("billing.webhook.signature_invalid")
        metrics.increment("billing.webhook.signature_invalid")
        metrics.alert(
            "billing.webhook.signature_invalid",
            value=1.0,
            threshold=0.0,
            severity="warning",
        )
        raise WebhookRejected(str(exc)) from exc


def parse_event(payload: str) -> LifecycleEvent:
    try:
        return LifecycleEvent.model_validate(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.warning("billing.webhook.invalid_payload")
        metrics.increment("billing.webhook.invalid_payload")
        raise EventPayloadError("Invalid payload", code="INVALID_PAYLOAD") from exc


def _error_response(message: str) -> PlainTextResponse:
    return PlainTextResponse(f"Webhook error: {message}", status_code=400, headers=CORS_HEADERS)


@router.options("/billing/stripe/webhook")
async def stripe_webhook_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/billing/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    reconciler: SubscriptionReconciler | None = Depends(get_reconciler),
) -> Response:
    """Verify a Stripe event and apply it to the subscription record."""
    body = await request.body()
    if not stripe_signature:
        logger.warning("billing.webhook.signature_missing")
        metrics.increment("billing.webhook.signature_missing")
        return PlainTextResponse("No signature", status_code=400, headers=CORS_HEADERS)
    try:
        payload = body.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("billing.webhook.invalid_encoding")
        metrics.increment("billing.webhook.invalid_payload", tags={"reason": "encoding"})
        return _error_response("Invalid payload encoding")
    try:
        _verify_signature(payload, stripe_signature)
        event = parse_event(payload)
    except (WebhookRejected, EventPayloadError) as exc:
        return _error_response(str(exc))

    if reconciler is None:
        logger.warning("billing.webhook.db_missing")
        metrics.alert(
            "billing.webhook.db_missing",
            value=1.0,
            threshold=0.0,
            severity="critical",
        )
        return _error_response("Database not configured")

    logger.info("billing.webhook.received", extra={"event_id": event.id, "type": event.type})
    metrics.increment("billing.webhook.received", tags={"type": event.type})
    try:
        await reconciler.handle(event)
    except BillingError as exc:
        logger.error(
            "billing.webhook.apply_failed",
            extra={"event_id": event.id, "type": event.type, "code": exc.code},
        )
        metrics.increment("billing.webhook.failed", tags={"type": event.type, "code": exc.code})
        return _error_response(str(exc))
    return JSONResponse({"received": True}, status_code=200, headers=CORS_HEADERS)
