"""
Eligible driver lookup.

Builds the proximity-ranked candidate list for an order's pickup point from
drivers that are online, available and have not rejected the order.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List

from common.utils import distance_km
from drivers.models import Driver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    driver: Driver
    distance_km: float

    @property
    def driver_id(self):
        return self.driver.pk


class DriverPool:
    """Queries eligible drivers and ranks them by distance (closest first)."""

    def find_eligible(self, pickup_latitude, pickup_longitude, excluded_driver_ids: Iterable = ()) -> List[Candidate]:
        """
        Return eligible drivers sorted by distance from the pickup point.

        Args:
            pickup_latitude: Pickup latitude (may be None)
            pickup_longitude: Pickup longitude (may be None)
            excluded_driver_ids: Driver ids that rejected this order

        Returns:
            List of Candidate, closest first. Drivers at equal distance
            (including those without a location) keep primary-key order.
        """
        excluded = list(excluded_driver_ids or [])
        drivers = (
            Driver.objects
            .filter(is_online=True, is_available=True)
            .exclude(pk__in=excluded)
            .order_by("pk")
        )

        candidates = [
            Candidate(
                driver=driver,
                distance_km=distance_km(
                    pickup_latitude,
                    pickup_longitude,
                    driver.current_latitude,
                    driver.current_longitude,
                ),
            )
            for driver in drivers
        ]

        # sorted() is stable, so pk order breaks ties
        candidates = sorted(candidates, key=lambda candidate: candidate.distance_km)

        logger.debug(
            "Found %d eligible drivers (%d excluded)",
            len(candidates), len(excluded)
        )
        return candidates
