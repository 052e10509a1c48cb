"""
Driver dispatch service.

This module handles:
    - Ranking eligible drivers by distance
    - Broadcasting offers to the nearest drivers
    - The order assignment state machine and offer responses
    - Expiring offers nobody accepted
    - Order create/update triggers
"""

from .assignment import AssignmentResult, accept_offer, decline_offer
from .broadcaster import OfferBroadcaster
from .driver_pool import Candidate, DriverPool
from .exceptions import (
    DispatchError,
    InvalidTransitionError,
    NotificationDeliveryError,
    OfferNotFoundError,
    OrderNotFoundError,
)
from .sweeper import ExpirationSweeper, SweepResult

__all__ = [
    # Components
    "DriverPool",
    "Candidate",
    "OfferBroadcaster",
    "ExpirationSweeper",
    "SweepResult",
    # Offer responses
    "accept_offer",
    "decline_offer",
    "AssignmentResult",
    # Exceptions
    "DispatchError",
    "InvalidTransitionError",
    "NotificationDeliveryError",
    "OfferNotFoundError",
    "OrderNotFoundError",
]
