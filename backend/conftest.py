from datetime import datetime, timezone

import pytest
import stripe
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from bookings.services import lifecycle
from listings.models import Service
from payments.models import PaymentTransaction
from payments.services import orchestrator

User = get_user_model()


@pytest.fixture
def provider(db):
    return User.objects.create_user(
        username="provider@example.com",
        email="provider@example.com",
        password="password123",
        first_name="Priya",
        last_name="Provider",
    )


@pytest.fixture
def customer(db):
    return User.objects.create_user(
        username="customer@example.com",
        email="customer@example.com",
        password="password123",
        first_name="Casey",
        last_name="Customer",
    )


@pytest.fixture
def other_customer(db):
    return User.objects.create_user(
        username="second@example.com",
        email="second@example.com",
        password="password123",
    )


@pytest.fixture
def fixed_service(provider):
    return Service.objects.create(
        provider=provider,
        title="Wedding Officiant",
        pricing_model=Service.FIXED,
        price_cents=10000,
    )


@pytest.fixture
def hourly_service(provider):
    return Service.objects.create(
        provider=provider,
        title="Counseling Session",
        pricing_model=Service.HOURLY,
        hourly_rate_cents=4000,
    )


@pytest.fixture
def slot_start():
    return datetime(2030, 6, 1, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_booking(customer, fixed_service, slot_start):
    def _make(**overrides):
        params = {
            "service": fixed_service,
            "customer": customer,
            "start": slot_start,
        }
        params.update(overrides)
        return lifecycle.request_booking(**params)

    return _make


@pytest.fixture
def approved_booking(make_booking):
    booking = make_booking()
    return lifecycle.approve_booking(booking.id).booking


@pytest.fixture
def pay_phase():
    def _pay(booking, phase=PaymentTransaction.UPFRONT, **confirm_kwargs):
        handle = orchestrator.initiate_payment(booking.id, phase)
        orchestrator.confirm_payment(handle.session_reference, PaymentTransaction.SUCCEEDED, **confirm_kwargs)
        booking.refresh_from_db()
        return handle

    return _pay


@pytest.fixture
def live_stripe(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    original_api_key = stripe.api_key
    original_retries = stripe.max_network_retries
    yield
    stripe.api_key = original_api_key
    stripe.max_network_retries = original_retries


@pytest.fixture
def customer_client(customer):
    client = APIClient()
    client.force_authenticate(customer)
    return client


@pytest.fixture
def provider_client(provider):
    client = APIClient()
    client.force_authenticate(provider)
    return client
