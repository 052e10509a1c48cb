"""
Push delivery for driver offers and admin alerts.

Offers and alerts go out over the channel layer: every address is a group
name (``driver_<id>`` for drivers, ``DISPATCH_ADMIN_GROUP`` for operators)
that the receiving device or dashboard subscribes to. Delivery is
best-effort and at-least-once; nothing here retries.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.utils import timezone

from services.dispatch.exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryReceipt:
    address: str
    message_id: str


class Notifier:
    """Abstract push sender."""

    async def send(self, address: str, payload: Dict[str, Any]) -> DeliveryReceipt:
        raise NotImplementedError


class ChannelLayerNotifier(Notifier):
    """Sends each payload to the channel-layer group named by the address."""

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    async def send(self, address: str, payload: Dict[str, Any]) -> DeliveryReceipt:
        channel_layer = self.channel_layer
        if channel_layer is None:
            raise NotificationDeliveryError("No channel layer configured")

        try:
            await channel_layer.group_send(address, payload)
        except Exception as exc:
            raise NotificationDeliveryError(f"Send to {address} failed: {exc}") from exc

        return DeliveryReceipt(address=address, message_id=uuid.uuid4().hex)


# ---------------------- Parallel Fan-out ----------------------

async def _send_all_async(notifier: Notifier, messages: List[Tuple[str, Dict[str, Any]]]) -> list:
    return await asyncio.gather(
        *(notifier.send(address, payload) for address, payload in messages),
        return_exceptions=True,
    )


def send_all(notifier: Notifier, messages: Iterable[Tuple[str, Dict[str, Any]]]) -> List[DeliveryReceipt]:
    """
    Send every (address, payload) pair concurrently.

    A failure for one address is logged and does not stop the others.

    Returns:
        Receipts for the sends that succeeded
    """
    messages = list(messages)
    if not messages:
        return []

    results = async_to_sync(_send_all_async)(notifier, messages)

    receipts = []
    for (address, _), result in zip(messages, results):
        if isinstance(result, NotificationDeliveryError):
            logger.warning("Push to %s failed: %s", address, result)
        elif isinstance(result, Exception):
            logger.error("Unexpected error pushing to %s", address, exc_info=result)
        else:
            receipts.append(result)
    return receipts


# ---------------------- Offer Payloads ----------------------

def driver_address(driver) -> str:
    return driver.notification_address or ""


def build_offer_payload(order) -> Dict[str, Any]:
    """High-priority offer message for one order."""
    from orders.serializers import OrderOfferSerializer

    customer_name = order.customer_name or "Customer"
    amount = order.total_amount or 0
    return {
        "type": "order_offer",
        "order_id": order.id,
        "order_number": order.order_number or str(order.id),
        "title": "New Order Offer!",
        "body": f"{customer_name} - {float(amount):.0f}. Tap to accept!",
        "priority": "high",
        "sent_at": timezone.now().isoformat(),
        "order_data": dict(OrderOfferSerializer(order).data),
    }


def send_offer_notifications(notifier: Notifier, order, drivers) -> List[DeliveryReceipt]:
    """Push the offer for ``order`` to every driver in parallel."""
    payload = build_offer_payload(order)
    messages = []
    for driver in drivers:
        address = driver_address(driver)
        if not address:
            logger.warning("Driver %s has no notification address, skipping offer for order %s",
                           driver.pk, order.id)
            continue
        messages.append((address, payload))

    receipts = send_all(notifier, messages)
    logger.info("Offer for order %s delivered to %d/%d drivers",
                order.id, len(receipts), len(messages))
    return receipts


# ---------------------- Admin Alerts ----------------------

class AdminAlerter:
    """Reports orders that need operator attention to the admin group."""

    def __init__(self, notifier: Notifier | None = None, group: str | None = None):
        self.notifier = notifier or ChannelLayerNotifier()
        self.group = group or getattr(settings, "DISPATCH_ADMIN_GROUP", "admins")

    def _alert(self, event_type: str, order, message: str) -> bool:
        """Send one alert to the admin group; flag the order once it is delivered."""
        from orders.models import Order
        from orders.serializers import OrderAlertSerializer

        payload = {
            "type": event_type,
            "order_id": order.id,
            "message": message,
            "order_data": dict(OrderAlertSerializer(order).data),
        }
        delivered = bool(send_all(self.notifier, [(self.group, payload)]))
        if delivered:
            Order.objects.filter(pk=order.pk).update(notification_sent_to_admin=True)
            order.notification_sent_to_admin = True
        else:
            logger.warning("Admin %s alert for order %s was not delivered", event_type, order.id)
        return delivered

    def order_created(self, order) -> bool:
        return self._alert(
            "new_order",
            order,
            f"A new order #{order.order_number or order.id} has been placed and needs assignment.",
        )

    def no_drivers_found(self, order) -> bool:
        return self._alert(
            "order_unassigned",
            order,
            f"No drivers available for order #{order.order_number or order.id}.",
        )
