from datetime import timedelta

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.services import lifecycle
from listings.models import Service


SEED_PASSWORD = "Marketplace123!"

User = get_user_model()


class Command(BaseCommand):
    help = "Populate the local development database with a provider, a customer and sample services."

    def handle(self, *args, **options):
        if not settings.DEBUG:
            raise CommandError("Refusing to seed data while DEBUG is False.")

        with transaction.atomic():
            self.stdout.write(self.style.MIGRATE_HEADING("Creating users"))
            provider = self._ensure_user(
                email="provider@marketplace.test",
                first_name="Priya",
                last_name="Provider",
            )
            customer = self._ensure_user(
                email="customer@marketplace.test",
                first_name="Casey",
                last_name="Customer",
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Creating services"))
            services = [
                self._ensure_service(provider, "Wedding Officiant", Service.FIXED, price_cents=10000),
                self._ensure_service(provider, "Counseling Session", Service.HOURLY, hourly_rate_cents=4000),
                self._ensure_service(provider, "Event Planning", Service.QUOTE),
                self._ensure_service(provider, "Hospital Visit", Service.DONATION),
            ]

            self.stdout.write(self.style.MIGRATE_HEADING("Creating a sample booking"))
            if not Booking.objects.filter(customer=customer).exists():
                start = (timezone.now() + timedelta(days=7)).replace(hour=14, minute=0, second=0, microsecond=0)
                booking = lifecycle.request_booking(
                    service=services[0],
                    customer=customer,
                    start=start,
                    customer_notes="Outdoor ceremony, about 40 guests.",
                )
                self.stdout.write(f"  booking #{booking.id} requested for {start:%Y-%m-%d %H:%M}")

        self.stdout.write(self.style.SUCCESS("Seed data ready."))
        self.stdout.write(f"Log in as {provider.email} or {customer.email} with password {SEED_PASSWORD}")

    def _ensure_user(self, email: str, first_name: str, last_name: str):
        user, created = User.objects.get_or_create(
            username=email,
            defaults={"email": email, "first_name": first_name, "last_name": last_name},
        )
        if created:
            user.set_password(SEED_PASSWORD)
            user.save()
        return user

    def _ensure_service(self, provider, title: str, pricing_model: str, **prices) -> Service:
        service, created = Service.objects.get_or_create(
            provider=provider,
            title=title,
            defaults={"pricing_model": pricing_model, **prices},
        )
        if created:
            self.stdout.write(f"  {service}")
        return service
