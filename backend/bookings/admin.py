from django.contrib import admin

from payments.models import PaymentTransaction

from .models import Booking


class PaymentTransactionInline(admin.TabularInline):
    model = PaymentTransaction
    extra = 0
    can_delete = False
    fields = ("phase", "cycle", "amount_cents", "mode", "status", "gateway_session_id", "resolved_at")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("service", "customer", "provider", "start", "duration_minutes", "status", "total_amount_cents")
    list_filter = ("status", "booking_type")
    search_fields = ("service__title", "customer__email", "provider__email")
    # Status only changes through the booking lifecycle.
    readonly_fields = (
        "status",
        "pricing_snapshot",
        "total_amount_cents",
        "upfront_amount_cents",
        "completion_amount_cents",
        "commission_cents",
        "gateway_subscription_id",
    )
    inlines = [PaymentTransactionInline]
