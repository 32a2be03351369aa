from django.core.management.base import BaseCommand

from bookings.services.lifecycle import expire_stale_requests


class Command(BaseCommand):
    help = "Reject booking requests that were never approved before their start time."

    def handle(self, *args, **options):
        expired = expire_stale_requests()
        self.stdout.write(self.style.SUCCESS(f"Expired {expired} booking request(s)."))
