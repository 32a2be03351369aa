"""
Append-only record of payment attempts.

A transaction is created ``pending`` and resolved exactly once. Resolving it
again with the same outcome is a no-op, which is what makes gateway webhook
redelivery safe; a conflicting outcome is refused.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from django.db import transaction
from django.db.models import Max, Sum
from django.utils import timezone

from core.exceptions import DuplicatePaymentAttempt, InvalidAmount, TransactionAlreadyResolved
from payments.models import PaymentTransaction

logger = logging.getLogger(__name__)

OUTCOMES = {PaymentTransaction.SUCCEEDED, PaymentTransaction.FAILED}


@dataclass
class ResolveResult:
    transaction: PaymentTransaction
    changed: bool


def record_pending(
    *,
    booking,
    phase: str,
    amount_cents: int,
    session_id: str,
    mode: str = PaymentTransaction.MODE_PAYMENT,
    currency: str = "usd",
    subscription_id: str = "",
    cycle: int = 0,
) -> PaymentTransaction:
    entry = PaymentTransaction.objects.create(
        booking=booking,
        phase=phase,
        cycle=cycle,
        amount_cents=amount_cents,
        currency=currency,
        mode=mode,
        gateway_session_id=session_id,
        gateway_subscription_id=subscription_id or "",
        status=PaymentTransaction.PENDING,
    )
    logger.info(
        "Recorded pending %s payment %s for booking %s (%s cents)",
        phase,
        entry.id,
        booking.id,
        amount_cents,
    )
    return entry


def find_by_session(session_reference: str) -> Optional[PaymentTransaction]:
    return PaymentTransaction.objects.filter(gateway_session_id=session_reference).first()


def find_by_invoice(invoice_reference: str) -> Optional[PaymentTransaction]:
    return PaymentTransaction.objects.filter(gateway_invoice_id=invoice_reference).first()


def succeeded_transactions(booking_id: int, *, cycle: Optional[int] = None):
    queryset = PaymentTransaction.objects.filter(
        booking_id=booking_id,
        status=PaymentTransaction.SUCCEEDED,
    )
    if cycle is not None:
        queryset = queryset.filter(cycle=cycle)
    return queryset


def successful_attempt(booking_id: int, phase: str, *, cycle: int = 0) -> Optional[PaymentTransaction]:
    return succeeded_transactions(booking_id, cycle=cycle).filter(phase=phase).first()


def has_succeeded(booking_id: int, phase: str, *, cycle: int = 0) -> bool:
    return succeeded_transactions(booking_id, cycle=cycle).filter(phase=phase).exists()


def total_succeeded(booking_id: int, *, cycle: Optional[int] = None) -> int:
    """Sum of succeeded charges for the booking, across every cycle unless ``cycle`` is given."""
    total = succeeded_transactions(booking_id, cycle=cycle).aggregate(total=Sum("amount_cents"))["total"]
    return total or 0


def cycle_total_succeeded(booking_id: int, cycle: int) -> int:
    return total_succeeded(booking_id, cycle=cycle)


def summary(booking_id: int) -> Dict[str, bool]:
    return {
        "upfront_paid": has_succeeded(booking_id, PaymentTransaction.UPFRONT),
        "completion_paid": has_succeeded(booking_id, PaymentTransaction.COMPLETION),
    }


def next_cycle(booking_id: int) -> int:
    latest = PaymentTransaction.objects.filter(booking_id=booking_id).aggregate(latest=Max("cycle"))["latest"]
    return (latest or 0) + 1


def _check_can_succeed(entry: PaymentTransaction) -> None:
    existing = successful_attempt(entry.booking_id, entry.phase, cycle=entry.cycle)
    if existing is not None and existing.pk != entry.pk:
        raise DuplicatePaymentAttempt(existing)
    total = entry.booking.total_amount_cents or 0
    # The booking total bounds each cycle; renewals of a recurring booking start a new one.
    already_paid = cycle_total_succeeded(entry.booking_id, entry.cycle)
    if already_paid + entry.amount_cents > total:
        raise InvalidAmount(
            f"Recording {entry.amount_cents} cents would exceed booking {entry.booking_id} total of {total}."
        )


def resolve(
    attempt_id: int,
    outcome: str,
    *,
    payment_intent: str = "",
    subscription_id: str = "",
    invoice_id: str = "",
    failure_reason: str = "",
) -> ResolveResult:
    if outcome not in OUTCOMES:
        raise ValueError(f"Unknown payment outcome: {outcome}")

    with transaction.atomic():
        entry = PaymentTransaction.objects.select_for_update().select_related("booking").get(pk=attempt_id)
        if entry.is_resolved:
            if entry.status == outcome:
                return ResolveResult(transaction=entry, changed=False)
            raise TransactionAlreadyResolved(transaction_id=entry.id, status=entry.status)

        if outcome == PaymentTransaction.SUCCEEDED:
            _check_can_succeed(entry)

        entry.status = outcome
        entry.resolved_at = timezone.now()
        entry.failure_reason = failure_reason[:255]
        update_fields = ["status", "resolved_at", "failure_reason"]
        if payment_intent:
            entry.gateway_payment_intent = payment_intent
            update_fields.append("gateway_payment_intent")
        if subscription_id:
            entry.gateway_subscription_id = subscription_id
            update_fields.append("gateway_subscription_id")
        if invoice_id:
            entry.gateway_invoice_id = invoice_id
            update_fields.append("gateway_invoice_id")
        entry.save(update_fields=update_fields)

    logger.info("Payment %s for booking %s resolved as %s", entry.id, entry.booking_id, outcome)
    return ResolveResult(transaction=entry, changed=True)


def record_succeeded(
    *,
    booking,
    phase: str,
    amount_cents: int,
    cycle: int,
    invoice_id: str,
    subscription_id: str = "",
    payment_intent: str = "",
    currency: str = "usd",
) -> PaymentTransaction:
    """Append a charge the gateway collected on its own, such as a subscription renewal."""

    entry = PaymentTransaction(
        booking=booking,
        phase=phase,
        cycle=cycle,
        amount_cents=amount_cents,
        currency=currency,
        mode=PaymentTransaction.MODE_SUBSCRIPTION,
        gateway_session_id=invoice_id,
        gateway_invoice_id=invoice_id,
        gateway_subscription_id=subscription_id,
        gateway_payment_intent=payment_intent,
        status=PaymentTransaction.PENDING,
    )
    with transaction.atomic():
        _check_can_succeed(entry)
        entry.status = PaymentTransaction.SUCCEEDED
        entry.resolved_at = timezone.now()
        entry.save()
    logger.info(
        "Recorded %s charge %s (cycle %s) for booking %s",
        phase,
        entry.id,
        cycle,
        booking.id,
    )
    return entry
