"""
Offer broadcast.

Handles one offer round for an order:
1. Lock the order and re-check it is still searching
2. Pick the nearest eligible drivers (top K)
3. Move the order to broadcasting with a fresh offer window
4. After commit, push the offer to every selected driver in parallel

If nobody is eligible the order ends in failed_no_drivers and the admin
group is alerted.
"""

import logging
from datetime import timedelta
from typing import Callable, Optional, Set

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from drivers.models import Driver
from orders.models import AssignmentStatus, Order
from realtime import notifications

from .driver_pool import DriverPool
from .state_machine import can_start_offer, plan_no_drivers, plan_offer

logger = logging.getLogger(__name__)


class OfferBroadcaster:

    def __init__(
        self,
        pool: Optional[DriverPool] = None,
        notifier=None,
        alerter=None,
        batch_size: Optional[int] = None,
        offer_window_seconds: Optional[int] = None,
        clock: Callable = timezone.now,
    ):
        self.pool = pool or DriverPool()
        self.notifier = notifier or notifications.ChannelLayerNotifier()
        self.alerter = alerter or notifications.AdminAlerter(notifier=self.notifier)
        if batch_size is None:
            batch_size = getattr(settings, "DISPATCH_BROADCAST_SIZE", 3)
        if offer_window_seconds is None:
            offer_window_seconds = getattr(settings, "DISPATCH_OFFER_WINDOW_SECONDS", 20)
        self.batch_size = batch_size
        self.offer_window = timedelta(seconds=offer_window_seconds)
        self.clock = clock

    def broadcast(self, order_id) -> Set:
        """
        Run one offer round for the order.

        Args:
            order_id: Primary key of the order

        Returns:
            Set of driver ids the order was offered to (empty when the order
            is missing, no longer searching, or no driver is eligible)
        """
        with transaction.atomic():
            order = Order.objects.select_for_update().filter(pk=order_id).first()
            if order is None:
                logger.info("Order %s not found, nothing to broadcast", order_id)
                return set()

            if not can_start_offer(order.assignment_status):
                logger.info(
                    "Skipping broadcast for order %s: assignment status is already %r",
                    order_id, order.assignment_status
                )
                return set()

            candidates = self.pool.find_eligible(
                order.pickup_latitude,
                order.pickup_longitude,
                order.rejected_by_drivers,
            )
            selected = candidates[:self.batch_size]
            now = self.clock()

            if selected:
                update = plan_offer(order, [c.driver_id for c in selected], now, self.offer_window)
            else:
                update = plan_no_drivers(order, now)

            update_fields = update.apply(order)
            order.save(update_fields=update_fields)

        if order.assignment_status == AssignmentStatus.FAILED_NO_DRIVERS:
            logger.warning("No eligible drivers for order %s, marked failed_no_drivers", order_id)
            self.alerter.no_drivers_found(order)
            return set()

        offered_ids = list(order.offered_driver_ids)
        logger.info("Broadcasting order %s to %d drivers: %s", order_id, len(offered_ids), offered_ids)

        drivers = [c.driver for c in selected if c.driver_id in offered_ids]
        self._mark_driver_offers(order, offered_ids)
        notifications.send_offer_notifications(self.notifier, order, drivers)

        return set(offered_ids)

    def _mark_driver_offers(self, order, driver_ids):
        """Point each offered driver at the order (best-effort)."""
        try:
            Driver.objects.filter(pk__in=driver_ids).update(
                current_offer_order=order,
                current_offer_expires_at=order.assignment_timeout,
            )
        except Exception:
            logger.exception("Failed to record current offer on drivers for order %s", order.id)
