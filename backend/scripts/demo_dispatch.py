"""Seed a few drivers and an order, then run one broadcast and one sweep."""

import os
import sys
from datetime import timedelta
from pathlib import Path

import django

BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "dispatch_backend.settings")
# Run queued tasks inline so the demo works without a broker
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "1")
django.setup()

from django.utils import timezone  # noqa: E402
from drivers.models import Driver  # noqa: E402
from orders.models import Order  # noqa: E402
from services.dispatch import ExpirationSweeper, OfferBroadcaster  # noqa: E402


def ensure_driver(name: str, lat: float, lon: float) -> Driver:
    driver, _ = Driver.objects.update_or_create(
        name=name,
        defaults={
            "is_online": True,
            "is_available": True,
            "current_latitude": lat,
            "current_longitude": lon,
            "last_location_update": timezone.now(),
        },
    )
    if not driver.notification_address:
        driver.notification_address = f"driver_{driver.pk}"
        driver.save(update_fields=["notification_address"])
    return driver


def main():
    drivers = [
        ensure_driver("demo_driver_near", 28.6145, 77.2050),
        ensure_driver("demo_driver_mid", 28.6100, 77.2100),
        ensure_driver("demo_driver_far", 28.5000, 77.5000),
        ensure_driver("demo_driver_farthest", 28.4000, 77.6000),
    ]
    print(f"{len(drivers)} demo drivers online.")

    # Created as "searching" so the create trigger does not also queue a search
    order = Order.objects.create(
        status="searching",
        order_number="DEMO-1",
        customer_name="Demo Customer",
        total_amount=180,
        pickup_latitude=28.6139,
        pickup_longitude=77.2090,
    )

    offered = OfferBroadcaster().broadcast(order.id)
    order.refresh_from_db()
    print(f"Order {order.id} is {order.assignment_status}, offered to {sorted(offered)}")
    print(f"Offer expires at {order.assignment_timeout:%Y-%m-%d %H:%M:%S}")

    # Pretend nobody answered in time; the retry it triggers runs inline
    later = order.assignment_timeout + timedelta(seconds=1)
    result = ExpirationSweeper(clock=lambda: later).sweep()
    order.refresh_from_db()
    print(f"Sweep expired {result.expired} order(s); order {order.id} is {order.assignment_status}")
    print(f"Rejected drivers so far: {order.rejected_by_drivers}")


if __name__ == "__main__":
    main()
