import logging

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import InvalidAmount, TransactionAlreadyResolved
from payments.services import orchestrator
from payments.services.webhooks import CheckoutOutcome, RenewalCharge, parse_event

logger = logging.getLogger(__name__)


class PaymentWebhookView(APIView):
    """Receive Stripe checkout and invoice events and settle them against bookings."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("Stripe webhook secret not configured.")
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError:
            logger.warning("Invalid payload received on payment webhook.")
            return Response(status=status.HTTP_400_BAD_REQUEST)
        except stripe.SignatureVerificationError:
            logger.warning("Invalid Stripe signature on payment webhook.")
            return Response(status=status.HTTP_400_BAD_REQUEST)

        parsed = parse_event(event)
        if isinstance(parsed, CheckoutOutcome):
            try:
                orchestrator.confirm_payment(
                    parsed.session_reference,
                    parsed.outcome,
                    amount_cents=parsed.amount_cents,
                    payment_intent=parsed.payment_intent,
                    subscription_id=parsed.subscription_id,
                    invoice_id=parsed.invoice_reference,
                    failure_reason=parsed.failure_reason,
                )
            except InvalidAmount as exc:
                return Response(exc.as_payload(), status=status.HTTP_400_BAD_REQUEST)
            except TransactionAlreadyResolved as exc:
                # Redelivery cannot change a settled attempt; acknowledge so the gateway stops retrying.
                logger.warning(
                    "Conflicting %s outcome for session %s: %s",
                    parsed.outcome,
                    parsed.session_reference,
                    exc.detail,
                )
        elif isinstance(parsed, RenewalCharge):
            orchestrator.record_recurring_charge(
                parsed.subscription_reference,
                parsed.invoice_reference,
                parsed.amount_cents,
                payment_intent=parsed.payment_intent,
            )
        else:
            logger.debug("Ignoring payment webhook event %s", event.get("type"))

        return Response(status=status.HTTP_200_OK)
