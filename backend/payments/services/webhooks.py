from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from payments.models import PaymentTransaction

CHECKOUT_SUCCEEDED_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}
CHECKOUT_FAILED_EVENTS = {
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
}
PAID_STATUSES = {"paid", "no_payment_required"}


@dataclass(frozen=True)
class CheckoutOutcome:
    session_reference: str
    outcome: str
    amount_cents: Optional[int]
    mode: str
    payment_intent: str = ""
    subscription_id: str = ""
    invoice_reference: str = ""
    failure_reason: str = ""


@dataclass(frozen=True)
class RenewalCharge:
    subscription_reference: str
    invoice_reference: str
    amount_cents: int
    payment_intent: str = ""


def _reference(value: Any) -> str:
    # Expanded objects arrive as dicts; collapsed ones as plain ids.
    if isinstance(value, Mapping):
        return value.get("id") or ""
    return value or ""


def parse_event(event: Mapping[str, Any]):
    """
    Reduce a Stripe event to what settlement needs.

    Returns a CheckoutOutcome, a RenewalCharge, or None for events that carry
    no settlement information (including checkouts still awaiting an
    asynchronous payment method).
    """

    event_type = event.get("type", "")
    data_object = event.get("data", {}).get("object", {}) or {}

    if event_type in CHECKOUT_SUCCEEDED_EVENTS:
        if data_object.get("payment_status") not in PAID_STATUSES:
            return None
        outcome = PaymentTransaction.SUCCEEDED
    elif event_type in CHECKOUT_FAILED_EVENTS:
        outcome = PaymentTransaction.FAILED
    elif event_type == "invoice.paid":
        if data_object.get("billing_reason") != "subscription_cycle":
            return None
        subscription = _reference(data_object.get("subscription"))
        if not subscription:
            subscription = _reference(
                (data_object.get("parent") or {}).get("subscription_details", {}).get("subscription")
            )
        if not subscription:
            return None
        return RenewalCharge(
            subscription_reference=subscription,
            invoice_reference=data_object.get("id", ""),
            amount_cents=int(data_object.get("amount_paid") or 0),
            payment_intent=_reference(data_object.get("payment_intent")),
        )
    else:
        return None

    amount_total = data_object.get("amount_total")
    return CheckoutOutcome(
        session_reference=data_object.get("id", ""),
        outcome=outcome,
        amount_cents=int(amount_total) if amount_total is not None else None,
        mode=data_object.get("mode") or PaymentTransaction.MODE_PAYMENT,
        payment_intent=_reference(data_object.get("payment_intent")),
        subscription_id=_reference(data_object.get("subscription")),
        invoice_reference=_reference(data_object.get("invoice")),
        failure_reason="" if outcome == PaymentTransaction.SUCCEEDED else event_type,
    )
