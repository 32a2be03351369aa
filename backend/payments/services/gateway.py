from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

import stripe
from django.conf import settings

from bookings.models import Booking
from core.exceptions import PaymentGatewayError, PaymentGatewayUnavailable
from payments.models import PaymentTransaction

logger = logging.getLogger(__name__)

# Stripe has no quarterly interval; quarterly bills every third month.
RECURRING_INTERVALS = {
    Booking.WEEKLY: ("week", 1),
    Booking.MONTHLY: ("month", 1),
    Booking.QUARTERLY: ("month", 3),
}


@dataclass
class CheckoutSessionStub:
    """
    Lightweight stand-in for stripe.checkout.Session when running in stub mode.

    Tests and local development do not hit Stripe; instead, we return predictable
    identifiers so settlement (ledger entries, webhooks, links) behaves as if
    Stripe responded.
    """

    id: str
    url: str
    mode: str
    payment_status: str = "unpaid"
    payment_intent: Optional[str] = None
    subscription: Optional[str] = None


def build_checkout_preview_url(*, booking: Booking, phase: str, amount_cents: int, session_id: str) -> str:
    return (
        f"{settings.FRONTEND_URL.rstrip('/')}/payments/preview?"
        f"booking={booking.id}&phase={phase}&amount={amount_cents}&session={session_id}"
    )


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return _get_stripe_api_key() is None


def configure_stripe():
    api_key = _get_stripe_api_key()
    if not api_key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = api_key
    # The client retries connection errors and 409/429/5xx with exponential backoff.
    stripe.max_network_retries = getattr(settings, "PAYMENT_GATEWAY_MAX_RETRIES", 2)


@contextmanager
def gateway_call(action: str):
    try:
        yield
    except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
        logger.exception("Payment gateway unavailable during %s: %s", action, exc)
        raise PaymentGatewayUnavailable() from exc
    except stripe.StripeError as exc:
        logger.exception("Payment gateway rejected %s: %s", action, exc)
        message = getattr(exc, "user_message", None) or str(exc)
        raise PaymentGatewayError(f"Payment provider error during {action}: {message}") from exc


def checkout_mode(booking: Booking, phase: str) -> str:
    if booking.is_recurring and phase == PaymentTransaction.UPFRONT:
        return PaymentTransaction.MODE_SUBSCRIPTION
    return PaymentTransaction.MODE_PAYMENT


def _stub_checkout_session(*, booking: Booking, phase: str, amount_cents: int, mode: str) -> CheckoutSessionStub:
    session_id = f"cs_test_{uuid4().hex}"
    return CheckoutSessionStub(
        id=session_id,
        url=build_checkout_preview_url(
            booking=booking,
            phase=phase,
            amount_cents=amount_cents,
            session_id=session_id,
        ),
        mode=mode,
    )


def get_or_create_customer(user) -> Optional[str]:
    email = getattr(user, "email", "") or ""
    if not email:
        return None
    with gateway_call("customer lookup"):
        customers = stripe.Customer.list(email=email, limit=1)
        if customers.data:
            return customers.data[0].id
        customer = stripe.Customer.create(email=email, metadata={"user_id": user.pk})
        return customer.id


def _line_item(*, booking: Booking, phase: str, amount_cents: int, mode: str) -> dict:
    label = "Upfront" if phase == PaymentTransaction.UPFRONT else "Completion"
    price_data = {
        "currency": settings.MARKETPLACE_CURRENCY,
        "unit_amount": amount_cents,
        "product_data": {
            "name": f"{booking.service.title} - {label} payment",
            "metadata": {"booking_id": booking.id, "payment_type": phase},
        },
    }
    if mode == PaymentTransaction.MODE_SUBSCRIPTION:
        interval, interval_count = RECURRING_INTERVALS[booking.recurring_frequency]
        price_data["recurring"] = {"interval": interval, "interval_count": interval_count}
    return {"quantity": 1, "price_data": price_data}


def create_checkout_session(*, booking: Booking, phase: str, amount_cents: int):
    """
    Create a Stripe Checkout session (or stub equivalent) for one payment phase.

    Returns an object with the subset of attributes (`id`, `url`, `mode`,
    `payment_intent`, `subscription`) consumed by the orchestrator.
    """

    mode = checkout_mode(booking, phase)
    if should_use_stub():
        return _stub_checkout_session(booking=booking, phase=phase, amount_cents=amount_cents, mode=mode)

    configure_stripe()
    metadata = {
        "booking_id": booking.id,
        "payment_type": phase,
        "user_id": booking.customer_id,
    }
    stripe_kwargs = {}
    customer_id = get_or_create_customer(booking.customer)
    if customer_id:
        stripe_kwargs["customer"] = customer_id
    if mode == PaymentTransaction.MODE_SUBSCRIPTION:
        stripe_kwargs["subscription_data"] = {"metadata": metadata}
    else:
        stripe_kwargs["payment_intent_data"] = {"metadata": metadata}

    frontend = settings.FRONTEND_URL.rstrip("/")
    with gateway_call("checkout session creation"):
        return stripe.checkout.Session.create(
            mode=mode,
            line_items=[_line_item(booking=booking, phase=phase, amount_cents=amount_cents, mode=mode)],
            success_url=f"{frontend}/marketplace?payment=success&booking={booking.id}",
            cancel_url=f"{frontend}/marketplace?payment=cancelled&booking={booking.id}",
            metadata=metadata,
            **stripe_kwargs,
        )


def _stripe_id(value) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        return value
    return getattr(value, "id", "") or ""


def _charge_reference(entry: PaymentTransaction) -> dict:
    """
    Identify the gateway charge behind a ledger entry for refunding.

    Subscription checkouts report an invoice rather than a payment intent, so
    the charge is looked up through the invoice.
    """

    if entry.gateway_payment_intent:
        return {"payment_intent": entry.gateway_payment_intent}
    if not entry.gateway_invoice_id:
        return {}
    with gateway_call("invoice lookup"):
        invoice = stripe.Invoice.retrieve(entry.gateway_invoice_id)
    payment_intent = _stripe_id(getattr(invoice, "payment_intent", None))
    if payment_intent:
        return {"payment_intent": payment_intent}
    charge = _stripe_id(getattr(invoice, "charge", None))
    if charge:
        return {"charge": charge}
    return {}


def refund_charge(entry: PaymentTransaction, *, reason: str = "") -> str:
    """Ask the gateway to refund a succeeded charge; returns the gateway refund id."""

    if should_use_stub():
        return f"re_test_{uuid4().hex}"

    configure_stripe()
    charge = _charge_reference(entry)
    if not charge:
        return ""
    with gateway_call("refund"):
        refund = stripe.Refund.create(
            amount=entry.amount_cents,
            metadata={
                "booking_id": entry.booking_id,
                "transaction_id": entry.id,
                "reason": reason,
            },
            # One refund per ledger entry, however often a cancel is retried.
            idempotency_key=f"refund-{entry.pk}",
            **charge,
        )
    return refund.id


def cancel_subscription(subscription_id: str) -> None:
    if not subscription_id or should_use_stub():
        return
    configure_stripe()
    with gateway_call("subscription cancellation"):
        try:
            stripe.Subscription.cancel(subscription_id, idempotency_key=f"cancel-{subscription_id}")
        except stripe.InvalidRequestError:
            subscription = stripe.Subscription.retrieve(subscription_id)
            if subscription.status != "canceled":
                raise
            logger.info("Subscription %s was already cancelled", subscription_id)
