from decimal import Decimal

from django.test import TestCase

from common.utils import MISSING_DISTANCE_KM
from drivers.models import Driver
from services.dispatch import DriverPool

PICKUP = (Decimal("28.613900"), Decimal("77.209000"))


class DriverPoolTests(TestCase):

    def setUp(self):
        self.pool = DriverPool()

    def add_driver(self, lat=None, lon=None, **kwargs):
        defaults = {"is_online": True, "is_available": True}
        defaults.update(kwargs)
        return Driver.objects.create(current_latitude=lat, current_longitude=lon, **defaults)

    def test_sorted_closest_first(self):
        far = self.add_driver(Decimal("28.700000"), Decimal("77.209000"))
        near = self.add_driver(Decimal("28.614000"), Decimal("77.209000"))
        middle = self.add_driver(Decimal("28.650000"), Decimal("77.209000"))

        candidates = self.pool.find_eligible(*PICKUP)

        self.assertEqual([c.driver_id for c in candidates], [near.pk, middle.pk, far.pk])
        distances = [c.distance_km for c in candidates]
        self.assertEqual(distances, sorted(distances))

    def test_only_online_and_available_drivers(self):
        eligible = self.add_driver(Decimal("28.614000"), Decimal("77.209000"))
        self.add_driver(Decimal("28.614000"), Decimal("77.209000"), is_online=False)
        self.add_driver(Decimal("28.614000"), Decimal("77.209000"), is_available=False)

        candidates = self.pool.find_eligible(*PICKUP)

        self.assertEqual([c.driver_id for c in candidates], [eligible.pk])

    def test_excluded_drivers_are_dropped(self):
        first = self.add_driver(Decimal("28.614000"), Decimal("77.209000"))
        second = self.add_driver(Decimal("28.615000"), Decimal("77.209000"))

        candidates = self.pool.find_eligible(*PICKUP, excluded_driver_ids=[first.pk])

        self.assertEqual([c.driver_id for c in candidates], [second.pk])

    def test_drivers_without_location_sort_last_in_id_order(self):
        unknown_one = self.add_driver()
        located_far = self.add_driver(Decimal("30.000000"), Decimal("77.209000"))
        unknown_two = self.add_driver(Decimal("28.614000"), None)
        located_near = self.add_driver(Decimal("28.614000"), Decimal("77.209000"))

        candidates = self.pool.find_eligible(*PICKUP)

        self.assertEqual(
            [c.driver_id for c in candidates],
            [located_near.pk, located_far.pk, unknown_one.pk, unknown_two.pk],
        )
        self.assertEqual(candidates[-1].distance_km, MISSING_DISTANCE_KM)

    def test_equal_distances_keep_id_order(self):
        drivers = [self.add_driver(Decimal("28.620000"), Decimal("77.209000")) for _ in range(4)]

        for _ in range(3):
            candidates = self.pool.find_eligible(*PICKUP)
            self.assertEqual([c.driver_id for c in candidates], [d.pk for d in drivers])

    def test_missing_pickup_keeps_id_order(self):
        drivers = [self.add_driver(Decimal("28.620000"), Decimal("77.2%d0000" % i)) for i in range(3)]

        candidates = self.pool.find_eligible(None, None)

        self.assertEqual([c.driver_id for c in candidates], [d.pk for d in drivers])

    def test_no_drivers_returns_empty_list(self):
        self.assertEqual(self.pool.find_eligible(*PICKUP), [])
