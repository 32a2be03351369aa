from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.services.slots import ensure_slot_available
from core.exceptions import InvalidAmount, InvalidDuration, InvalidTransition, ServiceInactive
from listings.models import Service
from listings.pricing import build_pricing_snapshot, quote_for_service, split_manual_amount
from payments.models import PaymentTransaction
from payments.services import ledger

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
EXPIRE = "expire"
UPFRONT_PAID = "upfront_paid"
START = "start"
COMPLETION_PAID = "completion_paid"
CANCEL = "cancel"

TRANSITIONS: Dict[Tuple[str, str], str] = {
    (Booking.REQUESTED, APPROVE): Booking.APPROVED,
    (Booking.REQUESTED, REJECT): Booking.REJECTED,
    (Booking.REQUESTED, EXPIRE): Booking.REJECTED,
    (Booking.APPROVED, UPFRONT_PAID): Booking.UPFRONT_PAID,
    (Booking.APPROVED, CANCEL): Booking.CANCELLED,
    (Booking.UPFRONT_PAID, START): Booking.IN_PROGRESS,
    (Booking.UPFRONT_PAID, CANCEL): Booking.CANCELLED,
    (Booking.IN_PROGRESS, COMPLETION_PAID): Booking.COMPLETED,
    (Booking.IN_PROGRESS, CANCEL): Booking.CANCELLED,
}

EVENT_TARGETS = {event: target for (_, event), target in TRANSITIONS.items()}


@dataclass
class TransitionResult:
    booking: Booking
    changed: bool


def next_status(current: str, event: str) -> Optional[str]:
    """
    Return the status ``event`` moves a booking to from ``current``.

    Returns None when the booking already sits in the event's target status so
    redelivered events are no-ops. Anything else raises InvalidTransition.
    """

    target = TRANSITIONS.get((current, event))
    if target is not None:
        return target
    if EVENT_TARGETS.get(event) == current:
        return None
    raise InvalidTransition(
        f"Cannot {event.replace('_', ' ')} a booking that is {current.replace('_', ' ')}.",
        status=current,
        event=event,
    )


def transition(
    booking_id: int,
    event: str,
    *,
    apply: Optional[Callable[[Booking], None]] = None,
) -> TransitionResult:
    """
    Move a booking through the state machine as one atomic read-modify-write.

    ``apply`` runs with the row locked, after the transition is known to be
    legal; it can enforce guards by raising and can set extra fields.
    """

    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking_id)
        try:
            target = next_status(booking.status, event)
        except InvalidTransition:
            logger.warning(
                "Rejected transition %s for booking %s in status %s",
                event,
                booking.id,
                booking.status,
            )
            raise
        if target is None:
            return TransitionResult(booking=booking, changed=False)
        if apply is not None:
            apply(booking)
        previous = booking.status
        booking.status = target
        booking.save()
    logger.info("Booking %s moved %s -> %s (%s)", booking.id, previous, target, event)
    return TransitionResult(booking=booking, changed=True)


def _lock_provider_schedule(provider_id) -> None:
    # Approvals for one provider serialise on the provider's user row.
    get_user_model().objects.select_for_update().only("pk").get(pk=provider_id)


def _resolve_duration(service: Service, duration_minutes: Optional[int]) -> int:
    if duration_minutes is None:
        if service.pricing_model == Service.HOURLY:
            raise InvalidDuration("Hourly services need a duration.")
        return service.default_duration_minutes
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise InvalidDuration("Duration must be a positive number of minutes.")
    return duration_minutes


def request_booking(
    *,
    service: Service,
    customer,
    start: datetime,
    duration_minutes: Optional[int] = None,
    booking_type: str = Booking.ONE_TIME,
    recurring_frequency: str = "",
    customer_notes: str = "",
    amount_cents: Optional[int] = None,
) -> Booking:
    """Price and validate a booking request, then record it as ``requested``."""

    if not service.is_active:
        raise ServiceInactive()
    if booking_type == Booking.RECURRING:
        if recurring_frequency not in dict(Booking.FREQUENCIES):
            raise ValueError("Recurring bookings need a weekly, monthly or quarterly frequency.")
    else:
        recurring_frequency = ""

    duration = _resolve_duration(service, duration_minutes)
    quote = quote_for_service(service, duration)
    if quote.requires_manual_amount:
        if amount_cents is not None:
            quote = split_manual_amount(amount_cents)
        elif service.pricing_model == Service.DONATION:
            raise InvalidAmount("Donations need an amount.")

    ensure_slot_available(service.provider_id, start, duration)

    booking = Booking(
        service=service,
        provider_id=service.provider_id,
        customer=customer,
        booking_type=booking_type,
        recurring_frequency=recurring_frequency,
        start=start,
        duration_minutes=duration,
        pricing_snapshot=build_pricing_snapshot(service, duration),
        customer_notes=customer_notes or "",
    )
    booking.apply_quote(quote)
    booking.save()
    logger.info(
        "Booking %s requested for service %s at %s (total=%s)",
        booking.id,
        service.id,
        start.isoformat(),
        booking.total_amount_cents,
    )
    return booking


def approve_booking(
    booking_id: int,
    *,
    provider_notes: str = "",
    amount_cents: Optional[int] = None,
) -> TransitionResult:
    """Approve a request after re-checking the slot under the provider's lock."""

    with transaction.atomic():
        provider_id = Booking.objects.values_list("provider_id", flat=True).get(pk=booking_id)
        _lock_provider_schedule(provider_id)

        def _apply(booking: Booking):
            if amount_cents is not None:
                booking.apply_quote(split_manual_amount(amount_cents))
            elif not booking.is_priced:
                raise InvalidAmount("Set a quoted amount before approving this booking.")
            ensure_slot_available(
                booking.provider_id,
                booking.start,
                booking.duration_minutes,
                exclude_booking_id=booking.id,
            )
            booking.approved_at = timezone.now()
            if provider_notes:
                booking.provider_notes = provider_notes

        return transition(booking_id, APPROVE, apply=_apply)


def reject_booking(booking_id: int, *, provider_notes: str = "") -> TransitionResult:
    def _apply(booking: Booking):
        if provider_notes:
            booking.provider_notes = provider_notes

    return transition(booking_id, REJECT, apply=_apply)


def expire_booking(booking_id: int) -> TransitionResult:
    def _apply(booking: Booking):
        booking.cancellation_reason = "expired"

    return transition(booking_id, EXPIRE, apply=_apply)


def expire_stale_requests(now: Optional[datetime] = None) -> int:
    """Reject requests nobody approved before their start time. Returns how many expired."""

    now = now or timezone.now()
    expired = 0
    stale_ids = Booking.objects.filter(status=Booking.REQUESTED, start__lte=now).values_list("id", flat=True)
    for booking_id in list(stale_ids):
        try:
            result = expire_booking(booking_id)
        except InvalidTransition:
            # Approved or rejected since the query ran.
            continue
        if result.changed:
            expired += 1
    return expired


def mark_upfront_paid(booking_id: int, *, subscription_id: str = "") -> TransitionResult:
    def _apply(booking: Booking):
        if not ledger.has_succeeded(booking.id, PaymentTransaction.UPFRONT):
            raise InvalidTransition("Upfront payment has not succeeded.")
        if subscription_id:
            booking.gateway_subscription_id = subscription_id

    return transition(booking_id, UPFRONT_PAID, apply=_apply)


def start_service(booking_id: int) -> TransitionResult:
    def _apply(booking: Booking):
        booking.started_at = timezone.now()

    return transition(booking_id, START, apply=_apply)


def mark_completed(booking_id: int) -> TransitionResult:
    def _apply(booking: Booking):
        if not ledger.has_succeeded(booking.id, PaymentTransaction.COMPLETION):
            raise InvalidTransition("Completion payment has not succeeded.")
        booking.completed_at = timezone.now()

    return transition(booking_id, COMPLETION_PAID, apply=_apply)


def cancel_booking(
    booking_id: int,
    *,
    reason: str = "",
    refund_handler: Optional[Callable[[Booking], None]] = None,
) -> TransitionResult:
    """
    Cancel a booking.

    Before any money moves this is a plain transition. Once a charge has
    succeeded ``refund_handler`` must be supplied; it runs inside the same
    atomic unit so a failed refund request leaves the booking untouched.
    """

    def _apply(booking: Booking):
        paid = ledger.succeeded_transactions(booking.id).exists()
        if booking.status == Booking.APPROVED and paid:
            raise InvalidTransition("A payment already succeeded for this booking.")
        if paid:
            if refund_handler is None:
                raise RuntimeError("Cancelling a paid booking requires a refund handler.")
            refund_handler(booking)
        booking.cancelled_at = timezone.now()
        booking.cancellation_reason = reason[:255]

    return transition(booking_id, CANCEL, apply=_apply)
