from decimal import Decimal
from unittest.mock import AsyncMock, Mock

from channels.layers import InMemoryChannelLayer
from django.test import SimpleTestCase, TestCase

from orders.models import Order
from services.dispatch.exceptions import NotificationDeliveryError

from .notifications import (
    AdminAlerter,
    ChannelLayerNotifier,
    DeliveryReceipt,
    build_offer_payload,
    send_all,
    send_offer_notifications,
)


class FlakyNotifier:

    def __init__(self, failing=(), crashing=()):
        self.failing = set(failing)
        self.crashing = set(crashing)
        self.sent = []

    async def send(self, address, payload):
        if address in self.failing:
            raise NotificationDeliveryError("unreachable")
        if address in self.crashing:
            raise RuntimeError("bug in transport")
        self.sent.append(address)
        return DeliveryReceipt(address=address, message_id=address)


class SendAllTests(SimpleTestCase):

    def test_every_message_is_attempted(self):
        notifier = FlakyNotifier(failing={"driver_2"}, crashing={"driver_3"})

        with self.assertLogs("realtime.notifications", level="WARNING") as logs:
            receipts = send_all(notifier, [(f"driver_{i}", {"type": "order_offer"}) for i in range(1, 5)])

        self.assertEqual(sorted(r.address for r in receipts), ["driver_1", "driver_4"])
        self.assertEqual(sorted(notifier.sent), ["driver_1", "driver_4"])
        self.assertTrue(any("driver_2" in line for line in logs.output))
        self.assertTrue(any("driver_3" in line for line in logs.output))

    def test_nothing_to_send(self):
        self.assertEqual(send_all(FlakyNotifier(), []), [])


class ChannelLayerNotifierTests(SimpleTestCase):

    async def test_delivers_to_address_group(self):
        layer = InMemoryChannelLayer()
        channel = await layer.new_channel()
        await layer.group_add("driver_7", channel)
        notifier = ChannelLayerNotifier(channel_layer=layer)

        receipt = await notifier.send("driver_7", {"type": "order_offer", "order_id": 1})

        self.assertEqual(receipt.address, "driver_7")
        message = await layer.receive(channel)
        self.assertEqual(message["order_id"], 1)

    async def test_transport_error_becomes_delivery_error(self):
        layer = Mock()
        layer.group_send = AsyncMock(side_effect=ConnectionError("redis down"))
        notifier = ChannelLayerNotifier(channel_layer=layer)

        with self.assertRaises(NotificationDeliveryError):
            await notifier.send("driver_7", {"type": "order_offer"})


class OfferPayloadTests(TestCase):

    def setUp(self):
        self.order = Order.objects.create(
            status="searching",
            order_number="ORD-77",
            customer_name="",
            total_amount=Decimal("99.60"),
        )

    def test_payload_falls_back_to_generic_customer(self):
        payload = build_offer_payload(self.order)

        self.assertEqual(payload["type"], "order_offer")
        self.assertEqual(payload["order_number"], "ORD-77")
        self.assertEqual(payload["body"], "Customer - 100. Tap to accept!")
        self.assertEqual(payload["priority"], "high")

    def test_drivers_without_address_are_skipped(self):
        notifier = FlakyNotifier()
        drivers = [Mock(pk=1, notification_address="driver_1"), Mock(pk=2, notification_address="")]

        receipts = send_offer_notifications(notifier, self.order, drivers)

        self.assertEqual([r.address for r in receipts], ["driver_1"])


class AdminAlerterTests(TestCase):

    def setUp(self):
        self.order = Order.objects.create(status="pending", order_number="ORD-5")

    def test_no_drivers_alert_marks_order(self):
        notifier = FlakyNotifier()
        alerter = AdminAlerter(notifier=notifier, group="ops")

        self.assertTrue(alerter.no_drivers_found(self.order))

        self.assertEqual(notifier.sent, ["ops"])
        self.order.refresh_from_db()
        self.assertTrue(self.order.notification_sent_to_admin)

    def test_undelivered_alert_leaves_flag_unset(self):
        alerter = AdminAlerter(notifier=FlakyNotifier(failing={"ops"}), group="ops")

        self.assertFalse(alerter.no_drivers_found(self.order))

        self.order.refresh_from_db()
        self.assertFalse(self.order.notification_sent_to_admin)

    def test_new_order_alert(self):
        notifier = FlakyNotifier()

        self.assertTrue(AdminAlerter(notifier=notifier, group="ops").order_created(self.order))
        self.assertEqual(notifier.sent, ["ops"])
        self.order.refresh_from_db()
        self.assertTrue(self.order.notification_sent_to_admin)

    def test_undelivered_new_order_alert_leaves_flag_unset(self):
        alerter = AdminAlerter(notifier=FlakyNotifier(failing={"ops"}), group="ops")

        self.assertFalse(alerter.order_created(self.order))

        self.order.refresh_from_db()
        self.assertFalse(self.order.notification_sent_to_admin)
