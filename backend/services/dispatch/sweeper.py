"""Periodic expiry of offers nobody accepted in time."""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from drivers.models import Driver
from orders.models import AssignmentStatus, Order

from . import triggers
from .state_machine import OFFERING_STATES, SEARCH_STATES, normalize_status, offer_holders, plan_expiry

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    scanned: int = 0
    expired_order_ids: List = field(default_factory=list)
    rejected_driver_ids: List = field(default_factory=list)
    requeued_order_ids: List = field(default_factory=list)

    @property
    def expired(self) -> int:
        return len(self.expired_order_ids)

    @property
    def requeued(self) -> int:
        return len(self.requeued_order_ids)


class ExpirationSweeper:
    """
    Moves expired broadcasting (and legacy offered) orders back to searching.

    Every offer holder is added to the order's rejected set. All expiries
    found in one sweep commit together or not at all; a failed sweep is
    simply redone on the next tick.

    Orders left waiting for a search for longer than one offer window (the
    search task failed or was never queued) get a fresh search scheduled.
    """

    def __init__(self, clock: Callable = timezone.now, offer_window_seconds: Optional[int] = None):
        self.clock = clock
        if offer_window_seconds is None:
            offer_window_seconds = getattr(settings, "DISPATCH_OFFER_WINDOW_SECONDS", 20)
        self.offer_window = timedelta(seconds=offer_window_seconds)

    def sweep(self) -> SweepResult:
        now = self.clock()
        result = SweepResult()

        with transaction.atomic():
            orders = (
                Order.objects.select_for_update()
                .filter(assignment_status__in=list(OFFERING_STATES))
                .order_by("pk")
            )
            for order in orders:
                result.scanned += 1
                holders = offer_holders(order)
                update = plan_expiry(order, now)
                if update is None:
                    continue

                logger.info("Order %s offer expired, rejecting drivers %s", order.id, holders)
                order.save(update_fields=update.apply(order))
                result.expired_order_ids.append(order.id)
                result.rejected_driver_ids.extend(holders)

            self._requeue_stalled_searches(now, result)

        if result.expired_order_ids:
            self._release_driver_offers(result.expired_order_ids)

        return result

    def is_stalled(self, order, now) -> bool:
        """True when ``order`` still waits for a search started over one window ago."""
        status = normalize_status(order.assignment_status)
        if status not in SEARCH_STATES:
            return False
        if status == AssignmentStatus.UNSET and not triggers.wants_search_on_create({"status": order.status}):
            return False
        last_touched = order.updated_at or order.created_at
        return last_touched is not None and now - last_touched >= self.offer_window

    def _requeue_stalled_searches(self, now, result):
        waiting = (
            Order.objects.select_for_update()
            .filter(assignment_status__in=list(SEARCH_STATES))
            .exclude(pk__in=result.expired_order_ids)
            .order_by("pk")
        )
        for order in waiting:
            if not self.is_stalled(order, now):
                continue
            logger.warning("Order %s still waiting for a driver search, requeueing", order.id)
            triggers.schedule_search(order.id)
            result.requeued_order_ids.append(order.id)

        # Touch the orders so the next requeue waits another full window
        if result.requeued_order_ids:
            Order.objects.filter(pk__in=result.requeued_order_ids).update(updated_at=now)

    def _release_driver_offers(self, order_ids):
        """Clear current offer on drivers whose offer just expired (best-effort)."""
        try:
            Driver.objects.filter(current_offer_order_id__in=order_ids).update(
                current_offer_order=None,
                current_offer_expires_at=None,
            )
        except Exception:
            logger.exception("Failed to clear expired driver offers for orders %s", order_ids)
