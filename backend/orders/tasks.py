"""Celery tasks for order dispatch background processing."""

from celery import shared_task
from django.db import DatabaseError
import logging

logger = logging.getLogger(__name__)


@shared_task(autoretry_for=(DatabaseError,), retry_backoff=True, max_retries=5)
def start_driver_search_task(order_id: int):
    """
    Run one offer round for an order.

    Scheduled by the order create/update triggers after the triggering
    write commits. Store errors are retried with backoff; an order whose
    search never ran is picked up again by the periodic sweep.
    """
    from services.dispatch import OfferBroadcaster

    offered = OfferBroadcaster().broadcast(order_id)
    logger.info("Driver search for order %s offered to %d drivers", order_id, len(offered))
    return sorted(offered)


@shared_task
def sweep_expired_offers_task():
    """
    Periodic sweep (Celery beat, DISPATCH_SWEEP_INTERVAL_SECONDS) that
    returns expired offers to searching and requeues stalled searches.
    """
    from services.dispatch import ExpirationSweeper

    result = ExpirationSweeper().sweep()
    if result.expired or result.requeued:
        logger.info(
            "Offer sweep expired %d of %d offering orders, requeued %d searches",
            result.expired, result.scanned, result.requeued
        )
    return result.expired_order_ids


@shared_task
def notify_admins_new_order_task(order_id: int):
    """Tell operators a new order was placed."""
    from realtime.notifications import AdminAlerter
    from .models import Order

    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        logger.info("Order %s not found for admin alert", order_id)
        return False
    return AdminAlerter().order_created(order)
