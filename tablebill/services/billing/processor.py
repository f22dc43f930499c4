"""Read-through access to Stripe's recurring-billing objects."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import stripe

from tablebill.config import settings
from tablebill.services.billing.errors import ProcessorError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessorPeriod:
    """Authoritative billing window reported by the processor."""

    period_start: datetime
    period_end: datetime


class ProcessorClient(Protocol):
    def fetch_subscription(self, ref: str) -> ProcessorPeriod:
        ...

    def cancel_subscription(self, ref: str) -> None:
        ...


def _from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def extract_period(subscription: Any) -> tuple[datetime | None, datetime | None]:
    """Return the current period of a Stripe subscription object.

    Newer API versions moved ``current_period_*`` onto subscription items, so
    the first item is consulted when the top-level fields are absent.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = start if start is not None else items[0].get("current_period_start")
            end = end if end is not None else items[0].get("current_period_end")
    return _from_timestamp(start), _from_timestamp(end)


class StripeProcessorClient(ProcessorClient):
    """Processor client backed by the official Stripe SDK."""

    def __init__(self, api_key: str | None = None, *, api_version: str | None = None) -> None:
        self._api_key = api_key or settings.stripe_secret_key
        self._api_version = api_version or settings.stripe_api_version

    def fetch_subscription(self, ref: str) -> ProcessorPeriod:
        self._configure()
        try:
            subscription = stripe.Subscription.retrieve(ref)
        except stripe.StripeError as exc:
            logger.warning(
                "stripe.subscription.retrieve_failed",
                extra={"subscription_ref": ref, "error": str(exc)},
            )
            raise ProcessorError(
                f"Unable to retrieve subscription {ref}", code="PROCESSOR_RETRIEVE_FAILED"
            ) from exc
        period_start, period_end = extract_period(subscription)
        if period_start is None or period_end is None:
            raise ProcessorError(
                f"Subscription {ref} has no current period", code="PROCESSOR_PERIOD_MISSING"
            )
        return ProcessorPeriod(period_start=period_start, period_end=period_end)

    def cancel_subscription(self, ref: str) -> None:
        self._configure()
        try:
            stripe.Subscription.cancel(ref)
        except stripe.StripeError as exc:
            logger.warning(
                "stripe.subscription.cancel_failed",
                extra={"subscription_ref": ref, "error": str(exc)},
            )
            raise ProcessorError(
                f"Unable to cancel subscription {ref}", code="PROCESSOR_CANCEL_FAILED"
            ) from exc
        logger.info("stripe.subscription.cancel_requested", extra={"subscription_ref": ref})

    def _configure(self) -> None:
        if not self._api_key:
            raise ProcessorError("Stripe not configured", code="PROCESSOR_NOT_CONFIGURED")
        stripe.api_key = self._api_key
        stripe.api_version = self._api_version


def get_processor() -> ProcessorClient:
    """FastAPI dependency returning the configured processor client."""
    return StripeProcessorClient()
