from django.db.models import Q
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.models import Booking
from bookings.serializers import (
    ApproveBookingSerializer,
    BookingRequestResponseSerializer,
    BookingRequestSerializer,
    BookingSerializer,
    CancelBookingSerializer,
    PaymentRequestSerializer,
    RejectBookingSerializer,
)
from bookings.services import lifecycle
from payments.services import orchestrator


class BookingViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "booking_type", "service"]
    ordering_fields = ["start", "created_at"]

    def get_queryset(self):
        user = self.request.user
        return (
            Booking.objects.filter(Q(customer=user) | Q(provider=user))
            .select_related("service")
            .prefetch_related("transactions")
        )

    def _forbidden(self):
        return Response({"detail": "Not permitted."}, status=status.HTTP_403_FORBIDDEN)

    def create(self, request, *args, **kwargs):
        serializer = BookingRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = lifecycle.request_booking(
            service=data["service"],
            customer=request.user,
            start=data["start"],
            duration_minutes=data.get("duration_minutes"),
            booking_type=data["booking_type"],
            recurring_frequency=data["recurring_frequency"],
            customer_notes=data.get("customer_notes", ""),
            amount_cents=data.get("amount_cents"),
        )
        output = BookingRequestResponseSerializer(booking)
        return Response(output.data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        booking = self.get_object()
        if booking.provider_id != request.user.id:
            return self._forbidden()
        serializer = ApproveBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = lifecycle.approve_booking(
            booking.id,
            provider_notes=serializer.validated_data["provider_notes"],
            amount_cents=serializer.validated_data.get("amount_cents"),
        )
        return Response(BookingSerializer(result.booking).data)

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        booking = self.get_object()
        if booking.provider_id != request.user.id:
            return self._forbidden()
        serializer = RejectBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = lifecycle.reject_booking(booking.id, provider_notes=serializer.validated_data["provider_notes"])
        return Response(BookingSerializer(result.booking).data)

    @action(detail=True, methods=["post"])
    def start(self, request, pk=None):
        booking = self.get_object()
        if booking.provider_id != request.user.id:
            return self._forbidden()
        result = lifecycle.start_service(booking.id)
        return Response(BookingSerializer(result.booking).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        booking = self.get_object()
        serializer = CancelBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = orchestrator.cancel_booking(booking.id, reason=serializer.validated_data["reason"])
        return Response(BookingSerializer(result.booking).data)

    @action(detail=True, methods=["post"])
    def payments(self, request, pk=None):
        booking = self.get_object()
        if booking.customer_id != request.user.id:
            return self._forbidden()
        serializer = PaymentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        handle = orchestrator.initiate_payment(booking.id, serializer.validated_data["phase"])
        return Response(
            {
                "redirect_url": handle.redirect_url,
                "session_reference": handle.session_reference,
                "already_paid": handle.already_paid,
            },
            status=status.HTTP_200_OK if handle.already_paid else status.HTTP_201_CREATED,
        )
