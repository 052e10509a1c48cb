"""
Order event triggers.

Two events start an offer round:
    - an order is created with status "pending" or "new" (any case)
    - an order's assignment status changes to "searching" from anything else

The ``wants_*`` functions only look at event fields. The ``on_*`` handlers
schedule the search once the triggering write has committed.
"""

import logging
from typing import Any, Mapping, Optional

from django.db import transaction

from orders.models import AssignmentStatus

logger = logging.getLogger(__name__)

SEARCH_START_STATUSES = ("pending", "new")


def wants_search_on_create(fields: Optional[Mapping[str, Any]]) -> bool:
    if not fields:
        return False
    status = str(fields.get("status") or "").lower()
    return status in SEARCH_START_STATUSES


def wants_search_on_update(before: Optional[Mapping[str, Any]], after: Optional[Mapping[str, Any]]) -> bool:
    if not before or not after:
        return False
    return (
        after.get("assignment_status") == AssignmentStatus.SEARCHING
        and before.get("assignment_status") != AssignmentStatus.SEARCHING
    )


def schedule_search(order_id):
    """Enqueue an offer round for ``order_id`` after the current transaction commits."""
    from orders.tasks import start_driver_search_task

    transaction.on_commit(lambda: start_driver_search_task.delay(order_id))


def on_order_created(order_id, fields: Mapping[str, Any]) -> bool:
    if not wants_search_on_create(fields):
        logger.info("Order %s created with status %r, not searching", order_id, fields.get("status"))
        return False

    logger.info("Order %s created, starting driver search", order_id)
    schedule_search(order_id)
    return True


def on_order_updated(order_id, before: Mapping[str, Any], after: Mapping[str, Any]) -> bool:
    if not wants_search_on_update(before, after):
        return False

    logger.info(
        "Order %s moved %r -> searching, retrying driver search",
        order_id, before.get("assignment_status")
    )
    schedule_search(order_id)
    return True
