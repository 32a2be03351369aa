from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from bookings.models import Booking
from core.exceptions import SlotConflict


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval intersection; touching endpoints do not overlap."""
    return start_a < end_b and start_b < end_a


def held_bookings(provider_id, *, exclude_booking_id: Optional[int] = None):
    queryset = Booking.objects.filter(
        provider_id=provider_id,
        status__in=Booking.SLOT_HOLDING_STATUSES,
    )
    if exclude_booking_id is not None:
        queryset = queryset.exclude(pk=exclude_booking_id)
    return queryset


def find_conflicts(
    *,
    start: datetime,
    duration_minutes: int,
    existing: Iterable[Booking],
) -> List[Booking]:
    end = start + timedelta(minutes=duration_minutes)
    return [
        booking
        for booking in existing
        if intervals_overlap(start, end, booking.start, booking.end)
    ]


def ensure_slot_available(
    provider_id,
    start: datetime,
    duration_minutes: int,
    *,
    exclude_booking_id: Optional[int] = None,
) -> None:
    """
    Raise SlotConflict when the window overlaps a booking that holds the provider's time.

    Only approved or later bookings hold a slot. At approval time this must run
    while the provider's schedule lock is held.
    """

    end = start + timedelta(minutes=duration_minutes)
    # Narrow on the database side; the exact half-open test happens in Python
    # because the stored end is derived from duration.
    candidates = held_bookings(provider_id, exclude_booking_id=exclude_booking_id).filter(
        start__lt=end,
    )
    conflicts = find_conflicts(start=start, duration_minutes=duration_minutes, existing=candidates)
    if conflicts:
        raise SlotConflict(conflicting_booking_ids=[booking.id for booking in conflicts])
