from django.contrib import admin

from .models import Service


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("title", "provider", "pricing_model", "price_cents", "hourly_rate_cents", "is_active")
    list_filter = ("pricing_model", "is_active")
    search_fields = ("title", "provider__email")
