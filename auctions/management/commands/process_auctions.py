import time
import signal
import sys
from datetime import datetime

from django.core.management.base import BaseCommand

from auctions.engine.lifecycle import run_lifecycle
from auctions.models import Listing


class Command(BaseCommand):
    help = 'Runs the listing lifecycle: opens scheduled auctions, closes ended ones, expires offers and listings.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Keep running, sweeping every --interval seconds',
        )
        parser.add_argument(
            '--interval',
            type=float,
            default=60.0,
            help='Seconds between sweeps when looping (default: 60)',
        )

    def handle(self, *args, **options):
        if not options['loop']:
            self._sweep()
            return

        self.stdout.write(self.style.SUCCESS('='*60))
        self.stdout.write(self.style.SUCCESS('  AUCTION LIFECYCLE'))
        self.stdout.write(self.style.SUCCESS('='*60))
        self.stdout.write('')
        self.stdout.write('Processing:')
        self.stdout.write('  - Scheduled auctions whose start time arrived')
        self.stdout.write('  - Auctions past their end time')
        self.stdout.write('  - Offers past their expiry')
        self.stdout.write('  - Fixed-price listings past their end time')
        self.stdout.write('')

        # Handle graceful shutdown
        def signal_handler(sig, frame):
            self.stdout.write(self.style.WARNING('\nStopping lifecycle loop...'))
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        while True:
            try:
                self._sweep()
            except Exception as e:
                self.stdout.write(self.style.ERROR(f"Error in lifecycle loop: {e}"))
            time.sleep(options['interval'])

    def _sweep(self):
        result = run_lifecycle()
        timestamp = datetime.now().strftime('%H:%M:%S')

        self.stdout.write(
            f"[{timestamp}] Activated {result['activated']}, "
            f"closed {result['processed']} (skipped {result['skipped']}), "
            f"expired {result['offers_expired']} offers and {result['listings_expired']} listings"
        )
        for error in result['errors']:
            self.stdout.write(self.style.ERROR(f"  {error}"))

        active = Listing.objects.filter(status=Listing.Status.ACTIVE).count()
        self.stdout.write(f"  Active listings: {active}")
        return result
