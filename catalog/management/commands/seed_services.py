from django.core.management.base import BaseCommand

from catalog.services import ServiceCatalog


class Command(BaseCommand):
    help = 'Seed the sample training and online services (use --force to deactivate and reseed everything)'

    def add_arguments(self, parser):
        parser.add_argument('--force', action='store_true', help='Deactivate all active services before seeding')

    def handle(self, *args, **options):
        catalog = ServiceCatalog.from_settings()

        if options['force']:
            seeded = catalog.reseed(force=True)
        else:
            seeded = catalog.seed_sample_services()

        self.stdout.write(
            f"Seeded {seeded['training']} training services and {seeded['online']} online services."
        )
