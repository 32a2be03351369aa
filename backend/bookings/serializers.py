from rest_framework import serializers

from bookings.models import Booking
from listings.models import Service
from payments.models import PaymentTransaction
from payments.services import ledger


class BookingRequestSerializer(serializers.Serializer):
    service = serializers.PrimaryKeyRelatedField(queryset=Service.objects.all())
    start = serializers.DateTimeField()
    duration_minutes = serializers.IntegerField(min_value=1, required=False)
    booking_type = serializers.ChoiceField(choices=Booking.BOOKING_TYPES, default=Booking.ONE_TIME)
    recurring_frequency = serializers.ChoiceField(
        choices=Booking.FREQUENCIES,
        required=False,
        allow_blank=True,
        allow_null=True,
    )
    customer_notes = serializers.CharField(required=False, allow_blank=True)
    amount_cents = serializers.IntegerField(min_value=1, required=False)

    def validate(self, attrs):
        if attrs.get("booking_type") == Booking.RECURRING and not attrs.get("recurring_frequency"):
            raise serializers.ValidationError(
                {"recurring_frequency": "Recurring bookings need a frequency."}
            )
        attrs["recurring_frequency"] = attrs.get("recurring_frequency") or ""
        return attrs


class BookingRequestResponseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Booking
        fields = [
            "id",
            "status",
            "total_amount_cents",
            "upfront_amount_cents",
            "completion_amount_cents",
        ]
        read_only_fields = fields


class ApproveBookingSerializer(serializers.Serializer):
    provider_notes = serializers.CharField(required=False, allow_blank=True, default="")
    amount_cents = serializers.IntegerField(min_value=1, required=False)


class RejectBookingSerializer(serializers.Serializer):
    provider_notes = serializers.CharField(required=False, allow_blank=True, default="")


class CancelBookingSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)


class PaymentRequestSerializer(serializers.Serializer):
    phase = serializers.ChoiceField(choices=PaymentTransaction.PHASES)


class PaymentTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentTransaction
        fields = [
            "id",
            "phase",
            "cycle",
            "amount_cents",
            "currency",
            "mode",
            "status",
            "created_at",
            "resolved_at",
        ]
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    service_title = serializers.CharField(source="service.title", read_only=True)
    end = serializers.DateTimeField(read_only=True)
    ledger = serializers.SerializerMethodField()
    transactions = PaymentTransactionSerializer(many=True, read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "service",
            "service_title",
            "provider",
            "customer",
            "booking_type",
            "recurring_frequency",
            "start",
            "end",
            "duration_minutes",
            "pricing_snapshot",
            "total_amount_cents",
            "upfront_amount_cents",
            "completion_amount_cents",
            "commission_cents",
            "status",
            "customer_notes",
            "provider_notes",
            "cancellation_reason",
            "approved_at",
            "started_at",
            "completed_at",
            "cancelled_at",
            "created_at",
            "updated_at",
            "ledger",
            "transactions",
        ]
        read_only_fields = fields

    def get_ledger(self, obj: Booking):
        return ledger.summary(obj.id)
