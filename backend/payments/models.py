from django.db import models
from django.db.models import Q


class PaymentTransaction(models.Model):
    """One payment attempt against a booking phase. Rows are never deleted."""

    UPFRONT = "upfront"
    COMPLETION = "completion"
    PHASES = [
        (UPFRONT, "Upfront"),
        (COMPLETION, "Completion"),
    ]

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STATUSES = [
        (PENDING, "Pending"),
        (SUCCEEDED, "Succeeded"),
        (FAILED, "Failed"),
    ]

    MODE_PAYMENT = "payment"
    MODE_SUBSCRIPTION = "subscription"
    MODES = [
        (MODE_PAYMENT, "One-time payment"),
        (MODE_SUBSCRIPTION, "Subscription"),
    ]

    booking = models.ForeignKey("bookings.Booking", on_delete=models.PROTECT, related_name="transactions")
    phase = models.CharField(max_length=12, choices=PHASES)
    # 0 is the booking's own settlement; recurring renewals count up from 1.
    cycle = models.PositiveIntegerField(default=0)
    amount_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default="usd")
    mode = models.CharField(max_length=12, choices=MODES, default=MODE_PAYMENT)
    gateway_session_id = models.CharField(max_length=200, unique=True)
    gateway_payment_intent = models.CharField(max_length=200, blank=True)
    gateway_subscription_id = models.CharField(max_length=200, blank=True)
    gateway_invoice_id = models.CharField(max_length=200, blank=True)
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    failure_reason = models.CharField(max_length=255, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "phase", "cycle"],
                condition=Q(status="succeeded"),
                name="one_succeeded_transaction_per_phase",
            ),
        ]

    def __str__(self):
        return f"{self.get_phase_display()} #{self.cycle} for booking {self.booking_id} ({self.status})"

    @property
    def is_resolved(self) -> bool:
        return self.status != self.PENDING


class RefundRequest(models.Model):
    """Refund issued to the gateway for a succeeded charge."""

    transaction = models.ForeignKey("PaymentTransaction", on_delete=models.PROTECT, related_name="refunds")
    amount_cents = models.PositiveIntegerField()
    gateway_reference = models.CharField(max_length=200, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"Refund of {self.amount_cents} for transaction {self.transaction_id}"
