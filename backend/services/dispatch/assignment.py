"""
Driver responses to an offer.

Acceptance and decline both run as a single ``select_for_update``
transaction on the order row, so concurrent responses from different
drivers serialize and exactly one acceptance wins. A driver that loses the
race gets an unsuccessful result, not an exception.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.db import transaction
from django.utils import timezone

from drivers.models import Driver
from orders.models import AssignmentStatus, Order

from .exceptions import OfferNotFoundError, OrderNotFoundError
from .state_machine import offer_holders, plan_acceptance, plan_decline

logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    """Result object for offer responses."""
    success: bool
    order: Optional[Order] = None
    message: str = ""
    error_code: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


def _lock_order(order_id) -> Order:
    order = Order.objects.select_for_update().filter(pk=order_id).first()
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def accept_offer(order_id, driver_id, now=None) -> AssignmentResult:
    """
    Accept an offer on behalf of a driver.

    Args:
        order_id: ID of the order being accepted
        driver_id: ID of the accepting driver
        now: Acceptance time (defaults to timezone.now())

    Returns:
        AssignmentResult; ``success`` is False when the order was already
        taken or the driver does not hold the offer

    Raises:
        OrderNotFoundError: If the order does not exist
    """
    now = now or timezone.now()

    with transaction.atomic():
        order = _lock_order(order_id)
        holders = offer_holders(order)
        update = plan_acceptance(order, driver_id, now)
        if update is None:
            logger.info(
                "Driver %s acceptance of order %s ignored (assignment status %r)",
                driver_id, order_id, order.assignment_status
            )
            return AssignmentResult(
                success=False,
                order=order,
                message="This order is no longer available",
                error_code="offer_unavailable",
            )

        order.save(update_fields=update.apply(order))

    logger.info("Order %s accepted by driver %s", order_id, driver_id)
    _release_driver_offers(order.id, holders, accepted_driver_id=driver_id)

    return AssignmentResult(
        success=True,
        order=order,
        message="Order accepted",
        extra={"released_driver_ids": [holder for holder in holders if holder != driver_id]},
    )


def decline_offer(order_id, driver_id, now=None) -> AssignmentResult:
    """
    Decline an offer on behalf of a driver.

    The driver is added to the order's rejected set and never offered this
    order again. When the last holder declines, the order returns to
    searching and the retry trigger starts a new round.

    Raises:
        OrderNotFoundError: If the order does not exist
        OfferNotFoundError: If the driver holds no live offer for the order
    """
    now = now or timezone.now()

    with transaction.atomic():
        order = _lock_order(order_id)
        update = plan_decline(order, driver_id, now)
        if update is None:
            raise OfferNotFoundError(f"Driver {driver_id} holds no active offer for order {order_id}")

        order.save(update_fields=update.apply(order))

    logger.info(
        "Driver %s declined order %s (assignment status now %r)",
        driver_id, order_id, order.assignment_status
    )
    _release_driver_offers(order.id, [driver_id])

    return AssignmentResult(
        success=True,
        order=order,
        message="Offer declined",
        extra={"requeued": order.assignment_status == AssignmentStatus.SEARCHING},
    )


def _release_driver_offers(order_id, driver_ids, accepted_driver_id=None):
    """Clear the drivers' current offer back-reference (best-effort)."""
    try:
        Driver.objects.filter(pk__in=driver_ids, current_offer_order_id=order_id).update(
            current_offer_order=None,
            current_offer_expires_at=None,
        )
        if accepted_driver_id is not None:
            Driver.objects.filter(pk=accepted_driver_id).update(is_available=False)
    except Exception:
        logger.exception("Failed to release driver offers for order %s", order_id)
