from django.contrib import admin

from .models import PaymentTransaction, RefundRequest


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(ReadOnlyAdmin):
    list_display = ("booking", "phase", "cycle", "amount_cents", "mode", "status", "created_at", "resolved_at")
    list_filter = ("phase", "status", "mode")
    search_fields = ("gateway_session_id", "gateway_payment_intent", "gateway_subscription_id")


@admin.register(RefundRequest)
class RefundRequestAdmin(ReadOnlyAdmin):
    list_display = ("transaction", "amount_cents", "gateway_reference", "reason", "created_at")
    search_fields = ("gateway_reference",)
