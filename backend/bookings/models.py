from datetime import timedelta

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class Booking(models.Model):
    """A customer's reservation of a provider's service for a time slot."""

    REQUESTED = "requested"
    APPROVED = "approved"
    UPFRONT_PAID = "upfront_paid"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    STATUSES = [
        (REQUESTED, "Requested"),
        (APPROVED, "Approved"),
        (UPFRONT_PAID, "Upfront paid"),
        (IN_PROGRESS, "In progress"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
        (REJECTED, "Rejected"),
    ]
    TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED, REJECTED})
    # Statuses that reserve the provider's calendar.
    SLOT_HOLDING_STATUSES = frozenset({APPROVED, UPFRONT_PAID, IN_PROGRESS})

    ONE_TIME = "one_time"
    RECURRING = "recurring"
    BOOKING_TYPES = [
        (ONE_TIME, "One-time"),
        (RECURRING, "Recurring"),
    ]

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    FREQUENCIES = [
        (WEEKLY, "Weekly"),
        (MONTHLY, "Monthly"),
        (QUARTERLY, "Quarterly"),
    ]

    service = models.ForeignKey("listings.Service", on_delete=models.PROTECT, related_name="bookings")
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="provider_bookings",
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="customer_bookings",
    )
    booking_type = models.CharField(max_length=12, choices=BOOKING_TYPES, default=ONE_TIME)
    recurring_frequency = models.CharField(max_length=12, choices=FREQUENCIES, blank=True)
    start = models.DateTimeField()
    duration_minutes = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    pricing_snapshot = models.JSONField(default=dict, blank=True)
    total_amount_cents = models.PositiveIntegerField(null=True, blank=True)
    upfront_amount_cents = models.PositiveIntegerField(null=True, blank=True)
    completion_amount_cents = models.PositiveIntegerField(null=True, blank=True)
    commission_cents = models.PositiveIntegerField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=STATUSES, default=REQUESTED)
    customer_notes = models.TextField(blank=True)
    provider_notes = models.TextField(blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    gateway_subscription_id = models.CharField(max_length=200, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["start", "id"]
        indexes = [
            models.Index(fields=["provider", "status", "start"], name="booking_provider_status_idx"),
        ]

    def __str__(self):
        return f"{self.service.title} on {self.start:%Y-%m-%d %H:%M} ({self.status})"

    @property
    def end(self):
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def is_priced(self) -> bool:
        return self.total_amount_cents is not None

    @property
    def is_recurring(self) -> bool:
        return self.booking_type == self.RECURRING

    def apply_quote(self, quote):
        self.total_amount_cents = quote.total_cents
        self.upfront_amount_cents = quote.upfront_cents
        self.completion_amount_cents = quote.completion_cents
        self.commission_cents = quote.commission_cents
