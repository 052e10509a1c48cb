from decimal import Decimal

from django.test import SimpleTestCase

from common.utils import distance_km, MISSING_DISTANCE_KM


class DistanceTests(SimpleTestCase):

    def test_one_degree_of_latitude(self):
        self.assertAlmostEqual(distance_km(10.0, 20.0, 11.0, 20.0), 111.19, places=1)

    def test_same_point_is_zero(self):
        self.assertEqual(distance_km(12.9716, 77.5946, 12.9716, 77.5946), 0.0)

    def test_known_city_pair(self):
        # London -> Paris
        self.assertAlmostEqual(distance_km(51.5074, -0.1278, 48.8566, 2.3522), 343.5, delta=1.0)

    def test_accepts_decimals_and_strings(self):
        self.assertAlmostEqual(
            distance_km(Decimal("10.0"), Decimal("20.0"), "11.0", "20.0"),
            distance_km(10.0, 20.0, 11.0, 20.0),
        )

    def test_missing_coordinate_returns_sentinel(self):
        self.assertEqual(distance_km(None, 77.5, 12.9, 77.5), MISSING_DISTANCE_KM)
        self.assertEqual(distance_km(12.9, 77.5, 12.9, None), MISSING_DISTANCE_KM)

    def test_zero_is_a_real_coordinate(self):
        # Gulf of Guinea origin to one degree north
        self.assertAlmostEqual(distance_km(0, 0, 1, 0), 111.19, places=1)

    def test_sentinel_is_beyond_any_surface_distance(self):
        antipode = distance_km(0, 0, 0, 180)
        self.assertLess(antipode, MISSING_DISTANCE_KM)
