from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    """Base class for booking and settlement errors surfaced to API callers."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "marketplace_error"
    default_detail = "The request could not be processed."

    def __init__(self, detail: Optional[str] = None, **extra: Any):
        self.detail = detail or self.default_detail
        self.extra = extra
        super().__init__(self.detail)

    def as_payload(self) -> Dict[str, Any]:
        payload = {"detail": self.detail, "code": self.code}
        payload.update(self.extra)
        return payload


class InvalidTransition(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"
    default_detail = "This booking cannot make that change from its current status."


class SlotConflict(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_conflict"
    default_detail = "That time is no longer available. Please pick another time."


class InvalidDuration(MarketplaceError):
    code = "invalid_duration"
    default_detail = "The requested duration is not offered for this service."


class InvalidAmount(MarketplaceError):
    code = "invalid_amount"
    default_detail = "A positive amount in cents is required."


class ServiceInactive(MarketplaceError):
    code = "service_inactive"
    default_detail = "This service is not currently accepting bookings."


class PaymentGatewayUnavailable(MarketplaceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "payment_gateway_unavailable"
    default_detail = "The payment provider is unavailable. Please try again shortly."


class PaymentGatewayError(MarketplaceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "payment_gateway_error"
    default_detail = "The payment provider rejected the request."


class TransactionAlreadyResolved(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    code = "transaction_already_resolved"
    default_detail = "This payment attempt was already resolved with a different outcome."


class DuplicatePaymentAttempt(MarketplaceError):
    """
    Raised when a phase already has a succeeded charge.

    Never reaches the caller: the orchestrator catches it and returns the
    prior result instead.
    """

    status_code = status.HTTP_200_OK
    code = "duplicate_payment_attempt"
    default_detail = "This payment phase has already been paid."

    def __init__(self, transaction, **extra: Any):
        self.transaction = transaction
        super().__init__(**extra)


def marketplace_exception_handler(exc, context):
    if isinstance(exc, MarketplaceError):
        if isinstance(exc, (InvalidTransition, PaymentGatewayError)):
            view = context.get("view")
            logger.warning(
                "%s in %s: %s",
                exc.__class__.__name__,
                view.__class__.__name__ if view else "unknown view",
                exc.detail,
            )
        return Response(exc.as_payload(), status=exc.status_code)
    return exception_handler(exc, context)
