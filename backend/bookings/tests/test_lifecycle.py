from datetime import timedelta

import pytest
from django.utils import timezone

from bookings.models import Booking
from bookings.services import lifecycle
from core.exceptions import InvalidAmount, InvalidDuration, InvalidTransition, ServiceInactive, SlotConflict
from listings.models import Service
from payments.models import PaymentTransaction

ALL_STATUSES = [value for value, _ in Booking.STATUSES]
ALL_EVENTS = sorted(lifecycle.EVENT_TARGETS)


def _force_status(booking, status):
    Booking.objects.filter(pk=booking.pk).update(status=status)
    booking.refresh_from_db()
    return booking


@pytest.mark.django_db
def test_request_snapshots_price_terms(make_booking, fixed_service):
    booking = make_booking(customer_notes="Outdoor ceremony")

    assert booking.status == Booking.REQUESTED
    assert booking.total_amount_cents == 10000
    assert booking.upfront_amount_cents == 5000
    assert booking.completion_amount_cents == 5000
    assert booking.commission_cents == 1200
    assert booking.duration_minutes == fixed_service.default_duration_minutes
    assert booking.pricing_snapshot["price_cents"] == 10000
    assert booking.customer_notes == "Outdoor ceremony"

    fixed_service.price_cents = 20000
    fixed_service.save()
    booking.refresh_from_db()
    assert booking.total_amount_cents == 10000


@pytest.mark.django_db
def test_hourly_request_prices_requested_duration(make_booking, hourly_service):
    booking = make_booking(service=hourly_service, duration_minutes=90)

    assert booking.total_amount_cents == 6000
    assert booking.upfront_amount_cents == 3000
    assert booking.completion_amount_cents == 3000


@pytest.mark.django_db
def test_hourly_request_without_duration_is_rejected(make_booking, hourly_service):
    with pytest.raises(InvalidDuration):
        make_booking(service=hourly_service)
    assert Booking.objects.count() == 0


@pytest.mark.django_db
def test_inactive_service_is_rejected(make_booking, fixed_service):
    fixed_service.is_active = False
    fixed_service.save()

    with pytest.raises(ServiceInactive):
        make_booking()
    assert Booking.objects.count() == 0


@pytest.mark.django_db
def test_one_time_booking_drops_frequency(make_booking):
    booking = make_booking(recurring_frequency=Booking.WEEKLY)

    assert booking.recurring_frequency == ""


@pytest.mark.django_db
def test_recurring_booking_requires_frequency(make_booking):
    with pytest.raises(ValueError):
        make_booking(booking_type=Booking.RECURRING)


@pytest.mark.django_db
def test_donation_needs_donor_amount(make_booking, provider):
    donation = Service.objects.create(provider=provider, title="Hospital Visit", pricing_model=Service.DONATION)

    with pytest.raises(InvalidAmount):
        make_booking(service=donation)

    booking = make_booking(service=donation, amount_cents=2500)
    assert booking.total_amount_cents == 2500
    assert booking.upfront_amount_cents == 1250


@pytest.mark.django_db
def test_quote_is_priced_at_approval(make_booking, provider):
    quoted = Service.objects.create(provider=provider, title="Event Planning", pricing_model=Service.QUOTE)
    booking = make_booking(service=quoted)
    assert booking.is_priced is False

    with pytest.raises(InvalidAmount):
        lifecycle.approve_booking(booking.id)
    booking.refresh_from_db()
    assert booking.status == Booking.REQUESTED

    result = lifecycle.approve_booking(booking.id, amount_cents=45001, provider_notes="Includes venue walkthrough")
    assert result.changed is True
    assert result.booking.status == Booking.APPROVED
    assert result.booking.total_amount_cents == 45001
    assert result.booking.upfront_amount_cents == 22501
    assert result.booking.completion_amount_cents == 22500
    assert result.booking.provider_notes == "Includes venue walkthrough"


@pytest.mark.django_db
def test_approve_records_timestamp_and_is_idempotent(make_booking):
    booking = make_booking()

    first = lifecycle.approve_booking(booking.id)
    second = lifecycle.approve_booking(booking.id)

    assert first.changed is True
    assert first.booking.approved_at is not None
    assert second.changed is False
    assert second.booking.status == Booking.APPROVED


@pytest.mark.django_db
def test_second_overlapping_approval_conflicts(make_booking, other_customer):
    first = make_booking()
    second = make_booking(customer=other_customer)

    lifecycle.approve_booking(first.id)
    with pytest.raises(SlotConflict):
        lifecycle.approve_booking(second.id)

    second.refresh_from_db()
    assert second.status == Booking.REQUESTED
    assert Booking.objects.filter(status=Booking.APPROVED).count() == 1


@pytest.mark.django_db
def test_reject_is_terminal(make_booking):
    booking = make_booking()

    lifecycle.reject_booking(booking.id, provider_notes="Fully booked that week")
    assert lifecycle.reject_booking(booking.id).changed is False

    with pytest.raises(InvalidTransition):
        lifecycle.approve_booking(booking.id)
    booking.refresh_from_db()
    assert booking.status == Booking.REJECTED
    assert booking.provider_notes == "Fully booked that week"


@pytest.mark.parametrize("status", ALL_STATUSES)
@pytest.mark.parametrize("event", ALL_EVENTS)
def test_unlisted_transitions_are_rejected(status, event):
    if (status, event) in lifecycle.TRANSITIONS:
        assert lifecycle.next_status(status, event) == lifecycle.TRANSITIONS[(status, event)]
    elif lifecycle.EVENT_TARGETS[event] == status:
        assert lifecycle.next_status(status, event) is None
    else:
        with pytest.raises(InvalidTransition):
            lifecycle.next_status(status, event)


@pytest.mark.django_db
@pytest.mark.parametrize("status", [Booking.REQUESTED, Booking.APPROVED, Booking.COMPLETED, Booking.CANCELLED])
def test_illegal_start_leaves_state_unchanged(make_booking, status):
    booking = _force_status(make_booking(), status)

    with pytest.raises(InvalidTransition):
        lifecycle.start_service(booking.id)

    booking.refresh_from_db()
    assert booking.status == status
    assert booking.started_at is None


@pytest.mark.django_db
def test_upfront_paid_requires_ledger_entry(approved_booking):
    with pytest.raises(InvalidTransition):
        lifecycle.mark_upfront_paid(approved_booking.id)

    approved_booking.refresh_from_db()
    assert approved_booking.status == Booking.APPROVED


@pytest.mark.django_db
def test_completion_requires_ledger_entry(approved_booking, pay_phase):
    pay_phase(approved_booking)
    lifecycle.start_service(approved_booking.id)

    with pytest.raises(InvalidTransition):
        lifecycle.mark_completed(approved_booking.id)


@pytest.mark.django_db
def test_cancel_before_payment(approved_booking):
    result = lifecycle.cancel_booking(approved_booking.id, reason="Change of plans")

    assert result.booking.status == Booking.CANCELLED
    assert result.booking.cancellation_reason == "Change of plans"
    assert result.booking.cancelled_at is not None
    assert lifecycle.cancel_booking(approved_booking.id).changed is False


@pytest.mark.django_db
def test_cancel_paid_booking_needs_refund_handler(approved_booking, pay_phase):
    pay_phase(approved_booking)

    with pytest.raises(RuntimeError):
        lifecycle.cancel_booking(approved_booking.id)

    refunded = []
    result = lifecycle.cancel_booking(approved_booking.id, refund_handler=refunded.append)
    assert result.booking.status == Booking.CANCELLED
    assert [booking.id for booking in refunded] == [approved_booking.id]


@pytest.mark.django_db
def test_requested_booking_cannot_be_cancelled(make_booking):
    booking = make_booking()

    with pytest.raises(InvalidTransition):
        lifecycle.cancel_booking(booking.id)


@pytest.mark.django_db
def test_expire_stale_requests(make_booking, other_customer):
    past = make_booking(start=timezone.now() - timedelta(hours=1))
    future = make_booking(customer=other_customer, start=timezone.now() + timedelta(days=2))

    assert lifecycle.expire_stale_requests() == 1
    assert lifecycle.expire_stale_requests() == 0

    past.refresh_from_db()
    future.refresh_from_db()
    assert past.status == Booking.REJECTED
    assert past.cancellation_reason == "expired"
    assert future.status == Booking.REQUESTED


@pytest.mark.django_db
def test_full_one_time_lifecycle(approved_booking, pay_phase):
    pay_phase(approved_booking)
    assert approved_booking.status == Booking.UPFRONT_PAID

    lifecycle.start_service(approved_booking.id)
    pay_phase(approved_booking, PaymentTransaction.COMPLETION)

    assert approved_booking.status == Booking.COMPLETED
    assert approved_booking.started_at is not None
    assert approved_booking.completed_at is not None
