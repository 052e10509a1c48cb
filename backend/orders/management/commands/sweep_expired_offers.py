import time

from django.conf import settings
from django.core.management.base import BaseCommand

from services.dispatch import ExpirationSweeper


class Command(BaseCommand):
    help = "Return orders whose offer window elapsed to searching and reject the drivers who held them."

    def add_arguments(self, parser):
        parser.add_argument(
            "--loop",
            action="store_true",
            help="Keep sweeping on a fixed interval instead of running once.",
        )
        parser.add_argument(
            "--interval",
            type=int,
            default=getattr(settings, "DISPATCH_SWEEP_INTERVAL_SECONDS", 60),
            help="Seconds between sweeps with --loop (default: DISPATCH_SWEEP_INTERVAL_SECONDS).",
        )

    def handle(self, *args, **options):
        sweeper = ExpirationSweeper()

        while True:
            result = sweeper.sweep()
            self.stdout.write(
                self.style.SUCCESS(
                    f"Scanned {result.scanned} offering order(s); expired {result.expired}; "
                    f"requeued {result.requeued} stalled search(es)."
                )
            )
            if not options["loop"]:
                break
            time.sleep(options["interval"])
