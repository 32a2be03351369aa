from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction

from bookings.models import Booking
from bookings.services import lifecycle
from core.exceptions import DuplicatePaymentAttempt, InvalidAmount, InvalidTransition
from payments.models import PaymentTransaction, RefundRequest
from payments.services import gateway, ledger

logger = logging.getLogger(__name__)

# Booking status a phase can be paid from.
PHASE_STATUS = {
    PaymentTransaction.UPFRONT: Booking.APPROVED,
    PaymentTransaction.COMPLETION: Booking.IN_PROGRESS,
}


@dataclass
class CheckoutHandle:
    redirect_url: Optional[str]
    session_reference: str
    transaction: PaymentTransaction
    already_paid: bool = False


@dataclass
class ConfirmResult:
    transaction: PaymentTransaction
    booking: Booking
    changed: bool


def _phase_amount(booking: Booking, phase: str) -> int:
    if phase == PaymentTransaction.UPFRONT:
        return booking.upfront_amount_cents
    return booking.completion_amount_cents


def _ensure_phase_unpaid(booking: Booking, phase: str) -> None:
    existing = ledger.successful_attempt(booking.id, phase)
    if existing is not None:
        raise DuplicatePaymentAttempt(existing)


def initiate_payment(booking_id: int, phase: str) -> CheckoutHandle:
    """
    Open a gateway checkout for one payment phase and record a pending attempt.

    Amounts come from the split stored on the booking. Calling this for a phase
    that already succeeded returns the earlier attempt instead of charging again.
    """

    if phase not in PHASE_STATUS:
        raise ValueError(f"Unknown payment phase: {phase}")

    booking = Booking.objects.select_related("service", "customer").get(pk=booking_id)
    try:
        _ensure_phase_unpaid(booking, phase)
    except DuplicatePaymentAttempt as exc:
        logger.info("Booking %s already paid %s; returning prior attempt", booking.id, phase)
        return CheckoutHandle(
            redirect_url=None,
            session_reference=exc.transaction.gateway_session_id,
            transaction=exc.transaction,
            already_paid=True,
        )

    required_status = PHASE_STATUS[phase]
    if booking.status != required_status:
        raise InvalidTransition(
            f"The {phase} payment needs the booking to be {required_status.replace('_', ' ')}.",
            status=booking.status,
            event=f"pay_{phase}",
        )
    if not booking.is_priced:
        raise InvalidAmount("This booking has no agreed amount yet.")

    amount_cents = _phase_amount(booking, phase)
    session = gateway.create_checkout_session(booking=booking, phase=phase, amount_cents=amount_cents)
    entry = ledger.record_pending(
        booking=booking,
        phase=phase,
        amount_cents=amount_cents,
        session_id=session.id,
        mode=gateway.checkout_mode(booking, phase),
        currency=booking.pricing_snapshot.get("currency", "usd"),
        subscription_id=getattr(session, "subscription", None) or "",
    )
    return CheckoutHandle(redirect_url=session.url, session_reference=session.id, transaction=entry)


def issue_refund(entry: PaymentTransaction, *, reason: str) -> RefundRequest:
    """
    Request a full refund of a succeeded charge, at most once per charge.

    A request the gateway could not act on is kept with a blank reference for
    manual follow-up and does not stop a later call from refunding for real.
    """

    existing = entry.refunds.exclude(gateway_reference="").first()
    if existing is not None:
        return existing
    reference = gateway.refund_charge(entry, reason=reason)
    if not reference:
        logger.warning(
            "No gateway charge reference for transaction %s on booking %s; refund needs manual follow-up",
            entry.id,
            entry.booking_id,
        )
        pending = entry.refunds.filter(gateway_reference="").first()
        if pending is not None:
            return pending
    refund = RefundRequest.objects.create(
        transaction=entry,
        amount_cents=entry.amount_cents,
        gateway_reference=reference,
        reason=reason[:255],
    )
    logger.info("Refund %s requested for transaction %s (%s cents)", refund.id, entry.id, entry.amount_cents)
    return refund


def _advance_booking(entry: PaymentTransaction, *, subscription_id: str = "") -> Booking:
    booking = Booking.objects.get(pk=entry.booking_id)
    if booking.status in {Booking.CANCELLED, Booking.REJECTED}:
        logger.warning(
            "Payment %s succeeded for booking %s which is %s; refunding",
            entry.id,
            booking.id,
            booking.status,
        )
        issue_refund(entry, reason=f"booking {booking.status}")
        return booking

    if entry.phase == PaymentTransaction.UPFRONT:
        if entry.mode != PaymentTransaction.MODE_SUBSCRIPTION:
            subscription_id = ""
        return lifecycle.mark_upfront_paid(booking.id, subscription_id=subscription_id).booking
    return lifecycle.mark_completed(booking.id).booking


def confirm_payment(
    session_reference: str,
    outcome: str,
    *,
    amount_cents: Optional[int] = None,
    payment_intent: str = "",
    subscription_id: str = "",
    invoice_id: str = "",
    failure_reason: str = "",
) -> Optional[ConfirmResult]:
    """
    Settle a gateway outcome against its pending attempt.

    Safe under redelivery: once an attempt is resolved, the same outcome is a
    no-op. A failure never moves the booking, so the customer can retry.
    """

    entry = ledger.find_by_session(session_reference)
    if entry is None:
        logger.info("Ignoring gateway outcome for unknown session %s", session_reference)
        return None
    if amount_cents is not None and amount_cents != entry.amount_cents:
        logger.error(
            "Gateway reported %s cents for session %s but %s were requested",
            amount_cents,
            session_reference,
            entry.amount_cents,
        )
        raise InvalidAmount(
            "Reported amount does not match the payment attempt.",
            expected_amount_cents=entry.amount_cents,
        )

    with transaction.atomic():
        try:
            result = ledger.resolve(
                entry.id,
                outcome,
                payment_intent=payment_intent,
                subscription_id=subscription_id,
                invoice_id=invoice_id,
                failure_reason=failure_reason,
            )
        except DuplicatePaymentAttempt:
            # The customer paid the same phase through two sessions.
            result = ledger.resolve(
                entry.id,
                PaymentTransaction.FAILED,
                payment_intent=payment_intent,
                subscription_id=subscription_id,
                invoice_id=invoice_id,
                failure_reason="duplicate charge",
            )
            if result.changed:
                issue_refund(result.transaction, reason="duplicate charge")
            return ConfirmResult(transaction=result.transaction, booking=result.transaction.booking, changed=False)

        booking = result.transaction.booking
        if result.changed and outcome == PaymentTransaction.SUCCEEDED:
            booking = _advance_booking(result.transaction, subscription_id=subscription_id)
        elif result.changed:
            logger.info(
                "Payment %s failed for booking %s; booking stays %s",
                entry.id,
                booking.id,
                booking.status,
            )

    return ConfirmResult(transaction=result.transaction, booking=booking, changed=result.changed)


def record_recurring_charge(
    subscription_reference: str,
    invoice_reference: str,
    amount_cents: int,
    *,
    payment_intent: str = "",
) -> Optional[PaymentTransaction]:
    """Record a renewal collected by a booking's subscription as the next completion cycle."""

    existing = ledger.find_by_invoice(invoice_reference)
    if existing is not None:
        return existing

    with transaction.atomic():
        booking = (
            Booking.objects.select_for_update()
            .filter(gateway_subscription_id=subscription_reference)
            .first()
        )
        if booking is None:
            logger.info("Ignoring invoice %s for unknown subscription %s", invoice_reference, subscription_reference)
            return None
        existing = ledger.find_by_invoice(invoice_reference)
        if existing is not None:
            return existing
        return ledger.record_succeeded(
            booking=booking,
            phase=PaymentTransaction.COMPLETION,
            amount_cents=amount_cents,
            cycle=ledger.next_cycle(booking.id),
            invoice_id=invoice_reference,
            subscription_id=subscription_reference,
            payment_intent=payment_intent,
            currency=booking.pricing_snapshot.get("currency", "usd"),
        )


def cancel_booking(booking_id: int, *, reason: str = "") -> lifecycle.TransitionResult:
    """
    Cancel a booking, stopping any subscription and refunding succeeded charges.

    Gateway calls carry idempotency keys, so a cancel that failed part way
    through can be retried without refunding anything twice.
    """

    def _refund_all(booking: Booking):
        if booking.gateway_subscription_id:
            gateway.cancel_subscription(booking.gateway_subscription_id)
        for entry in ledger.succeeded_transactions(booking.id):
            issue_refund(entry, reason=reason or "booking cancelled")

    return lifecycle.cancel_booking(booking_id, reason=reason, refund_handler=_refund_all)
