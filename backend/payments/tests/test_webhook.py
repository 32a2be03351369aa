import pytest
import stripe
from django.urls import reverse
from rest_framework.test import APIClient

from bookings.models import Booking
from bookings.services import lifecycle
from payments.models import PaymentTransaction
from payments.services import orchestrator
from payments.services.webhooks import CheckoutOutcome, RenewalCharge, parse_event


def _checkout_event(event_type, session_id, *, payment_status="paid", amount_total=5000, **extra):
    data_object = {
        "id": session_id,
        "object": "checkout.session",
        "mode": "payment",
        "payment_status": payment_status,
        "amount_total": amount_total,
        "payment_intent": "pi_webhook_123",
    }
    data_object.update(extra)
    return {"id": "evt_123", "type": event_type, "data": {"object": data_object}}


def _invoice_event(subscription_id, invoice_id, *, billing_reason="subscription_cycle", amount_paid=5000):
    return {
        "id": "evt_456",
        "type": "invoice.paid",
        "data": {
            "object": {
                "id": invoice_id,
                "object": "invoice",
                "billing_reason": billing_reason,
                "subscription": subscription_id,
                "amount_paid": amount_paid,
                "payment_intent": "pi_renewal_123",
            }
        },
    }


@pytest.fixture
def deliver(monkeypatch):
    client = APIClient()

    def _deliver(event):
        monkeypatch.setattr(
            "payments.api.stripe.Webhook.construct_event",
            lambda payload, sig_header, secret: event,
        )
        return client.post(
            reverse("payment-webhook"),
            data={"dummy": "value"},
            format="json",
            HTTP_STRIPE_SIGNATURE="sig_test",
        )

    return _deliver


@pytest.mark.django_db
def test_completed_checkout_marks_upfront_paid(deliver, approved_booking):
    handle = orchestrator.initiate_payment(approved_booking.id, PaymentTransaction.UPFRONT)
    event = _checkout_event("checkout.session.completed", handle.session_reference)

    first = deliver(event)
    replay = deliver(event)

    assert first.status_code == 200
    assert replay.status_code == 200
    approved_booking.refresh_from_db()
    assert approved_booking.status == Booking.UPFRONT_PAID
    entry = PaymentTransaction.objects.get(pk=handle.transaction.pk)
    assert entry.status == PaymentTransaction.SUCCEEDED
    assert entry.gateway_payment_intent == "pi_webhook_123"
    assert PaymentTransaction.objects.filter(status=PaymentTransaction.SUCCEEDED).count() == 1


@pytest.mark.django_db
def test_expired_checkout_records_failure(deliver, approved_booking):
    handle = orchestrator.initiate_payment(approved_booking.id, PaymentTransaction.UPFRONT)

    response = deliver(_checkout_event("checkout.session.expired", handle.session_reference, payment_status="unpaid"))

    assert response.status_code == 200
    entry = PaymentTransaction.objects.get(pk=handle.transaction.pk)
    assert entry.status == PaymentTransaction.FAILED
    assert entry.failure_reason == "checkout.session.expired"
    approved_booking.refresh_from_db()
    assert approved_booking.status == Booking.APPROVED


@pytest.mark.django_db
def test_conflicting_redelivery_is_acknowledged(deliver, approved_booking):
    handle = orchestrator.initiate_payment(approved_booking.id, PaymentTransaction.UPFRONT)
    deliver(_checkout_event("checkout.session.completed", handle.session_reference))

    response = deliver(_checkout_event("checkout.session.expired", handle.session_reference))

    assert response.status_code == 200
    approved_booking.refresh_from_db()
    assert approved_booking.status == Booking.UPFRONT_PAID


@pytest.mark.django_db
def test_amount_mismatch_is_rejected(deliver, approved_booking):
    handle = orchestrator.initiate_payment(approved_booking.id, PaymentTransaction.UPFRONT)

    response = deliver(_checkout_event("checkout.session.completed", handle.session_reference, amount_total=100))

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_amount"
    approved_booking.refresh_from_db()
    assert approved_booking.status == Booking.APPROVED


@pytest.mark.django_db
def test_unknown_session_is_acknowledged(deliver):
    response = deliver(_checkout_event("checkout.session.completed", "cs_someone_else"))

    assert response.status_code == 200
    assert PaymentTransaction.objects.count() == 0


@pytest.mark.django_db
def test_invalid_signature_is_rejected(monkeypatch):
    def fake_construct_event(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr("payments.api.stripe.Webhook.construct_event", fake_construct_event)

    response = APIClient().post(
        reverse("payment-webhook"),
        data={"dummy": "value"},
        format="json",
        HTTP_STRIPE_SIGNATURE="sig_forged",
    )

    assert response.status_code == 400


@pytest.mark.django_db
def test_missing_webhook_secret(settings):
    settings.STRIPE_WEBHOOK_SECRET = ""

    response = APIClient().post(reverse("payment-webhook"), data={}, format="json")

    assert response.status_code == 500


@pytest.mark.django_db
def test_subscription_renewal_is_recorded(deliver, make_booking):
    booking = make_booking(booking_type=Booking.RECURRING, recurring_frequency=Booking.WEEKLY)
    lifecycle.approve_booking(booking.id)
    handle = orchestrator.initiate_payment(booking.id, PaymentTransaction.UPFRONT)
    deliver(
        _checkout_event(
            "checkout.session.completed",
            handle.session_reference,
            mode="subscription",
            payment_intent=None,
            subscription="sub_weekly_123",
            invoice="in_first_weekly",
        )
    )

    response = deliver(_invoice_event("sub_weekly_123", "in_renewal_1"))
    deliver(_invoice_event("sub_weekly_123", "in_renewal_1"))

    assert response.status_code == 200
    booking.refresh_from_db()
    assert booking.gateway_subscription_id == "sub_weekly_123"
    assert booking.status == Booking.UPFRONT_PAID
    renewal = PaymentTransaction.objects.get(gateway_invoice_id="in_renewal_1")
    assert renewal.cycle == 1
    assert renewal.amount_cents == 5000
    assert renewal.gateway_payment_intent == "pi_renewal_123"
    upfront = PaymentTransaction.objects.get(phase=PaymentTransaction.UPFRONT)
    assert upfront.gateway_invoice_id == "in_first_weekly"


def test_parse_completed_checkout():
    parsed = parse_event(_checkout_event("checkout.session.completed", "cs_1"))

    assert parsed == CheckoutOutcome(
        session_reference="cs_1",
        outcome=PaymentTransaction.SUCCEEDED,
        amount_cents=5000,
        mode="payment",
        payment_intent="pi_webhook_123",
    )


def test_parse_expanded_references():
    event = _checkout_event(
        "checkout.session.async_payment_succeeded",
        "cs_1",
        payment_intent={"id": "pi_expanded", "object": "payment_intent"},
    )

    assert parse_event(event).payment_intent == "pi_expanded"


def test_parse_subscription_checkout_keeps_its_invoice():
    event = _checkout_event(
        "checkout.session.completed",
        "cs_1",
        mode="subscription",
        payment_intent=None,
        subscription="sub_1",
        invoice={"id": "in_first", "object": "invoice"},
    )

    parsed = parse_event(event)

    assert parsed.subscription_id == "sub_1"
    assert parsed.invoice_reference == "in_first"
    assert parsed.payment_intent == ""


@pytest.mark.parametrize(
    "event",
    [
        _checkout_event("checkout.session.completed", "cs_1", payment_status="unpaid"),
        _invoice_event("sub_1", "in_1", billing_reason="subscription_create"),
        {"type": "customer.created", "data": {"object": {"id": "cus_1"}}},
    ],
)
def test_parse_ignores_events_without_settlement(event):
    assert parse_event(event) is None


def test_parse_renewal_from_invoice_parent():
    event = _invoice_event(None, "in_2")
    event["data"]["object"]["parent"] = {"subscription_details": {"subscription": "sub_nested"}}

    assert parse_event(event) == RenewalCharge(
        subscription_reference="sub_nested",
        invoice_reference="in_2",
        amount_cents=5000,
        payment_intent="pi_renewal_123",
    )
