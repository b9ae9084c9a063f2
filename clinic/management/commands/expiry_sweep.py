from django.conf import settings
from django.core.management.base import BaseCommand

from clinic.services.runtime import get_engine


class Command(BaseCommand):
    help = "Flag drugs expiring within the threshold and broadcast InventoryExpiring events."

    def add_arguments(self, parser):
        parser.add_argument('--days', type=int, default=None,
                            help='threshold in days (defaults to CLINIC_EXPIRY_THRESHOLD_DAYS)')

    def handle(self, *args, **options):
        days = options['days'] if options['days'] is not None else settings.CLINIC_EXPIRY_THRESHOLD_DAYS
        flagged = get_engine().sweep_expiring(days)
        for item in flagged:
            self.stdout.write(f"{item.drug_id}: {item.name} expires {item.expiry_date} ({item.quantity} on hand)")
        self.stdout.write(self.style.SUCCESS(f"Flagged {len(flagged)} items expiring within {days} days"))
