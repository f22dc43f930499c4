"""Shared error classes for the billing reconciler and its collaborators."""

from __future__ import annotations


class BillingError(RuntimeError):
    """Base exception raised while reconciling billing state."""

    def __init__(self, message: str, code: str = "BILLING_ERROR") -> None:
        super().__init__(message)
        self.code = code


class SubscriptionStoreError(BillingError):
    """Raised when the subscription store fails to apply a mutation."""


class ProcessorError(BillingError):
    """Raised when the payment processor cannot be reached or rejects a call."""


class EventPayloadError(BillingError):
    """Raised when a webhook body cannot be parsed into a lifecycle event."""
