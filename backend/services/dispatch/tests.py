import threading
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import Mock, patch

from django.db import DatabaseError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings

from drivers.models import Driver
from orders.models import AssignmentStatus, Order

from . import triggers
from .assignment import accept_offer, decline_offer
from .broadcaster import OfferBroadcaster
from .exceptions import InvalidTransitionError, NotificationDeliveryError, OfferNotFoundError, OrderNotFoundError
from .state_machine import (
    OrderUpdate,
    TERMINAL_STATES,
    TRANSITIONS,
    can_transition,
    offer_holders,
    plan_acceptance,
    plan_decline,
    plan_expiry,
    plan_offer,
)
from .sweeper import ExpirationSweeper
from realtime.notifications import DeliveryReceipt

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=dt_timezone.utc)
PICKUP_LAT = Decimal("12.971600")
PICKUP_LON = Decimal("77.594600")
KM_PER_DEGREE_LAT = 111.195


class RecordingNotifier:
    """Notifier double that records sends and fails for chosen addresses."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    async def send(self, address, payload):
        if address in self.failing:
            raise NotificationDeliveryError(f"device {address} unreachable")
        self.sent.append((address, payload))
        return DeliveryReceipt(address=address, message_id=f"msg-{len(self.sent)}")

    @property
    def addresses(self):
        return [address for address, _ in self.sent]


def make_driver(km_north=None, name="", **kwargs):
    """Online, available driver ``km_north`` kilometers north of the pickup."""
    latitude = None
    longitude = None
    if km_north is not None:
        latitude = Decimal(str(round(float(PICKUP_LAT) + km_north / KM_PER_DEGREE_LAT, 6)))
        longitude = PICKUP_LON
    defaults = {
        "name": name,
        "is_online": True,
        "is_available": True,
        "current_latitude": latitude,
        "current_longitude": longitude,
    }
    defaults.update(kwargs)
    driver = Driver.objects.create(**defaults)
    if "notification_address" not in kwargs:
        driver.notification_address = f"driver_{driver.pk}"
        driver.save(update_fields=["notification_address"])
    return driver


def make_order(**kwargs):
    defaults = {
        "status": "pending",
        "order_number": "ORD-1001",
        "customer_name": "Asha",
        "total_amount": Decimal("249.00"),
        "pickup_latitude": PICKUP_LAT,
        "pickup_longitude": PICKUP_LON,
    }
    defaults.update(kwargs)
    return Order.objects.create(**defaults)


# ---------------------- State Machine ----------------------

class TransitionTableTests(SimpleTestCase):

    def test_terminal_states_have_no_automated_exits(self):
        for state in TERMINAL_STATES:
            self.assertEqual(TRANSITIONS[state], frozenset())
        for target in AssignmentStatus:
            self.assertFalse(can_transition(AssignmentStatus.FAILED_NO_DRIVERS, target))

    def test_offering_states_resolve_to_accepted_or_searching(self):
        for state in (AssignmentStatus.BROADCASTING, AssignmentStatus.OFFERED):
            self.assertTrue(can_transition(state, AssignmentStatus.ACCEPTED))
            self.assertTrue(can_transition(state, AssignmentStatus.SEARCHING))
            self.assertFalse(can_transition(state, AssignmentStatus.FAILED_NO_DRIVERS))

    def test_unset_and_none_are_the_same_state(self):
        self.assertTrue(can_transition(None, AssignmentStatus.BROADCASTING))
        self.assertTrue(can_transition("", AssignmentStatus.SEARCHING))

    def test_unknown_status_cannot_transition(self):
        self.assertFalse(can_transition("in_transit", AssignmentStatus.SEARCHING))

    def test_apply_rejects_illegal_transition(self):
        order = Order(assignment_status=AssignmentStatus.FAILED_NO_DRIVERS)
        with self.assertRaises(InvalidTransitionError):
            OrderUpdate(assignment_status=AssignmentStatus.BROADCASTING).apply(order)


class PlanningTests(SimpleTestCase):
    window = timedelta(seconds=20)

    def test_plan_offer_sets_broadcast_fields(self):
        order = Order(assignment_status=AssignmentStatus.SEARCHING, rejected_by_drivers=[9])
        update = plan_offer(order, [4, 2, 7], NOW, self.window)
        fields = update.apply(order)

        self.assertEqual(order.assignment_status, AssignmentStatus.BROADCASTING)
        self.assertEqual(order.status, "searching")
        self.assertEqual(order.offered_driver_ids, [4, 2, 7])
        self.assertEqual(order.assignment_timeout, NOW + self.window)
        self.assertEqual(order.updated_at, NOW)
        self.assertIn("assignment_timeout", fields)
        self.assertNotIn("rejected_by_drivers", fields)

    def test_plan_offer_never_offers_rejected_driver(self):
        order = Order(assignment_status=AssignmentStatus.SEARCHING, rejected_by_drivers=[2])
        plan_offer(order, [1, 2, 3], NOW, self.window).apply(order)

        self.assertEqual(order.offered_driver_ids, [1, 3])
        self.assertFalse(set(order.offered_driver_ids) & set(order.rejected_by_drivers))

    def test_plan_offer_with_only_rejected_drivers_fails_the_order(self):
        order = Order(assignment_status=AssignmentStatus.SEARCHING, rejected_by_drivers=[1])
        plan_offer(order, [1], NOW, self.window).apply(order)

        self.assertEqual(order.assignment_status, AssignmentStatus.FAILED_NO_DRIVERS)
        self.assertFalse(order.notification_sent_to_admin)

    def test_plan_offer_is_noop_once_order_left_searching(self):
        order = Order(assignment_status=AssignmentStatus.ACCEPTED)
        self.assertIsNone(plan_offer(order, [1], NOW, self.window))

    def test_plan_expiry_waits_for_timeout(self):
        order = Order(
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=[1],
            assignment_timeout=NOW + timedelta(seconds=1),
        )
        self.assertIsNone(plan_expiry(order, NOW))

    def test_plan_expiry_skips_missing_or_malformed_timeout(self):
        missing = Order(assignment_status=AssignmentStatus.BROADCASTING, offered_driver_ids=[1])
        malformed = Order(assignment_status=AssignmentStatus.BROADCASTING, offered_driver_ids=[1])
        malformed.assignment_timeout = "soon"

        self.assertIsNone(plan_expiry(missing, NOW))
        self.assertIsNone(plan_expiry(malformed, NOW))

    def test_plan_expiry_rejects_every_holder_once(self):
        order = Order(
            assignment_status=AssignmentStatus.OFFERED,
            offered_driver_ids=[1, 2],
            current_offered_driver_id=2,
            rejected_by_drivers=[7],
            assignment_timeout=NOW - timedelta(seconds=1),
        )
        self.assertEqual(offer_holders(order), [1, 2])

        fields = plan_expiry(order, NOW).apply(order)

        self.assertEqual(order.assignment_status, AssignmentStatus.SEARCHING)
        self.assertEqual(order.rejected_by_drivers, [7, 1, 2])
        self.assertEqual(order.offered_driver_ids, [])
        self.assertIsNone(order.current_offered_driver_id)
        self.assertIsNone(order.assignment_timeout)
        self.assertIn("rejected_by_drivers", fields)

    def test_rejection_union_is_idempotent(self):
        order = Order(
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=[1, 2],
            rejected_by_drivers=[1],
            assignment_timeout=NOW,
        )
        plan_expiry(order, NOW).apply(order)
        self.assertEqual(order.rejected_by_drivers, [1, 2])

    def test_plan_acceptance_requires_live_offer(self):
        order = Order(assignment_status=AssignmentStatus.BROADCASTING, offered_driver_ids=[1, 2])

        self.assertIsNone(plan_acceptance(order, 3, NOW))

        plan_acceptance(order, 2, NOW).apply(order)
        self.assertEqual(order.assignment_status, AssignmentStatus.ACCEPTED)
        self.assertEqual(order.accepted_driver_id, 2)
        self.assertEqual(order.offered_driver_ids, [])

        # Second acceptance sees the order already taken
        self.assertIsNone(plan_acceptance(order, 1, NOW))

    def test_plan_decline_keeps_offer_open_for_other_holders(self):
        order = Order(
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=[1, 2, 3],
            assignment_timeout=NOW,
        )
        plan_decline(order, 2, NOW).apply(order)

        self.assertEqual(order.assignment_status, AssignmentStatus.BROADCASTING)
        self.assertEqual(order.offered_driver_ids, [1, 3])
        self.assertEqual(order.rejected_by_drivers, [2])
        self.assertEqual(order.assignment_timeout, NOW)

    def test_plan_decline_by_last_holder_returns_to_searching(self):
        order = Order(
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=[5],
            rejected_by_drivers=[1],
            assignment_timeout=NOW,
        )
        plan_decline(order, 5, NOW).apply(order)

        self.assertEqual(order.assignment_status, AssignmentStatus.SEARCHING)
        self.assertEqual(order.rejected_by_drivers, [1, 5])
        self.assertIsNone(order.assignment_timeout)


# ---------------------- Broadcaster ----------------------

class OfferBroadcasterTests(TestCase):

    def setUp(self):
        self.notifier = RecordingNotifier()
        self.alerter = Mock()

    def broadcaster(self, **kwargs):
        return OfferBroadcaster(
            notifier=kwargs.pop("notifier", self.notifier),
            alerter=self.alerter,
            batch_size=3,
            offer_window_seconds=20,
            clock=lambda: NOW,
            **kwargs
        )

    def test_offers_three_nearest_drivers(self):
        drivers = {km: make_driver(km) for km in (4, 1, 5, 2, 3)}
        order = make_order()

        offered = self.broadcaster().broadcast(order.id)

        nearest = [drivers[1].pk, drivers[2].pk, drivers[3].pk]
        self.assertEqual(offered, set(nearest))

        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.BROADCASTING)
        self.assertEqual(order.offered_driver_ids, nearest)
        self.assertEqual(order.assignment_timeout, NOW + timedelta(seconds=20))
        self.assertEqual(order.status, "searching")
        self.assertEqual(sorted(self.notifier.addresses), sorted(f"driver_{pk}" for pk in nearest))

        drivers[1].refresh_from_db()
        self.assertEqual(drivers[1].current_offer_order_id, order.id)
        self.assertEqual(drivers[1].current_offer_expires_at, NOW + timedelta(seconds=20))
        drivers[5].refresh_from_db()
        self.assertIsNone(drivers[5].current_offer_order_id)

    def test_offer_payload_describes_order(self):
        make_driver(1)
        order = make_order()

        self.broadcaster().broadcast(order.id)

        _, payload = self.notifier.sent[0]
        self.assertEqual(payload["type"], "order_offer")
        self.assertEqual(payload["order_id"], order.id)
        self.assertEqual(payload["order_number"], "ORD-1001")
        self.assertEqual(payload["body"], "Asha - 249. Tap to accept!")
        self.assertEqual(payload["order_data"]["id"], order.id)

    def test_skips_previously_rejected_drivers(self):
        drivers = [make_driver(km) for km in (1, 2, 3, 4, 5)]
        order = make_order(
            assignment_status=AssignmentStatus.SEARCHING,
            rejected_by_drivers=[d.pk for d in drivers[:3]],
        )

        offered = self.broadcaster().broadcast(order.id)

        self.assertEqual(offered, {drivers[3].pk, drivers[4].pk})
        order.refresh_from_db()
        self.assertFalse(set(order.offered_driver_ids) & set(order.rejected_by_drivers))

    def test_no_online_drivers_fails_order_without_notifications(self):
        make_driver(1, is_online=False)
        make_driver(2, is_available=False)
        order = make_order()

        offered = self.broadcaster().broadcast(order.id)

        self.assertEqual(offered, set())
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.FAILED_NO_DRIVERS)
        self.assertEqual(order.offered_driver_ids, [])
        self.assertEqual(self.notifier.sent, [])
        self.alerter.no_drivers_found.assert_called_once()

    def test_all_drivers_rejected_fails_order(self):
        driver = make_driver(1)
        order = make_order(assignment_status=AssignmentStatus.SEARCHING, rejected_by_drivers=[driver.pk])

        self.assertEqual(self.broadcaster().broadcast(order.id), set())
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.FAILED_NO_DRIVERS)

    def test_skips_order_no_longer_searching(self):
        make_driver(1)
        order = make_order(assignment_status=AssignmentStatus.ACCEPTED)

        self.assertEqual(self.broadcaster().broadcast(order.id), set())
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.ACCEPTED)
        self.assertEqual(self.notifier.sent, [])

    def test_terminal_order_is_not_rebroadcast(self):
        make_driver(1)
        order = make_order(assignment_status=AssignmentStatus.FAILED_NO_DRIVERS)

        self.assertEqual(self.broadcaster().broadcast(order.id), set())
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.FAILED_NO_DRIVERS)

    def test_missing_order_is_ignored(self):
        self.assertEqual(self.broadcaster().broadcast(987654), set())

    def test_failed_push_keeps_offer(self):
        first, second, third = make_driver(1), make_driver(2), make_driver(3)
        notifier = RecordingNotifier(failing={f"driver_{second.pk}"})
        order = make_order()

        offered = self.broadcaster(notifier=notifier).broadcast(order.id)

        self.assertEqual(offered, {first.pk, second.pk, third.pk})
        self.assertEqual(sorted(notifier.addresses), sorted([f"driver_{first.pk}", f"driver_{third.pk}"]))
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.BROADCASTING)

    def test_driver_without_address_still_holds_offer(self):
        silent = make_driver(1, notification_address="")
        order = make_order()

        offered = self.broadcaster().broadcast(order.id)

        self.assertEqual(offered, {silent.pk})
        self.assertEqual(self.notifier.sent, [])

    def test_explicit_zero_window_is_not_replaced_by_setting(self):
        make_driver(1)
        order = make_order()
        broadcaster = OfferBroadcaster(
            notifier=self.notifier, alerter=self.alerter, offer_window_seconds=0, clock=lambda: NOW
        )

        broadcaster.broadcast(order.id)

        order.refresh_from_db()
        self.assertEqual(order.assignment_timeout, NOW)

    @override_settings(DISPATCH_BROADCAST_SIZE=1, DISPATCH_OFFER_WINDOW_SECONDS=45)
    def test_unset_knobs_come_from_settings(self):
        broadcaster = OfferBroadcaster(notifier=self.notifier, alerter=self.alerter)

        self.assertEqual(broadcaster.batch_size, 1)
        self.assertEqual(broadcaster.offer_window, timedelta(seconds=45))


# ---------------------- Sweeper ----------------------

class ExpirationSweeperTests(TestCase):

    def setUp(self):
        self.sweeper = ExpirationSweeper(clock=lambda: NOW)

    def make_offering_order(self, driver_ids, expires_in=-1, **kwargs):
        defaults = {
            "status": "searching",
            "assignment_status": AssignmentStatus.BROADCASTING,
            "offered_driver_ids": list(driver_ids),
            "assignment_timeout": NOW + timedelta(seconds=expires_in),
        }
        defaults.update(kwargs)
        return make_order(**defaults)

    def test_expired_broadcast_returns_to_searching(self):
        d1, d2, d3 = make_driver(1), make_driver(2), make_driver(3)
        order = self.make_offering_order([d1.pk, d2.pk, d3.pk])
        Driver.objects.filter(pk__in=[d1.pk, d2.pk, d3.pk]).update(current_offer_order=order)

        result = self.sweeper.sweep()

        self.assertEqual(result.expired_order_ids, [order.id])
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.SEARCHING)
        self.assertEqual(order.rejected_by_drivers, [d1.pk, d2.pk, d3.pk])
        self.assertEqual(order.offered_driver_ids, [])
        self.assertIsNone(order.assignment_timeout)
        self.assertEqual(order.updated_at, NOW)
        self.assertFalse(Driver.objects.filter(current_offer_order=order).exists())

    def test_live_offer_is_left_alone(self):
        order = self.make_offering_order([1], expires_in=5)

        result = self.sweeper.sweep()

        self.assertEqual(result.scanned, 1)
        self.assertEqual(result.expired, 0)
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.BROADCASTING)

    def test_offer_without_timeout_is_skipped(self):
        order = self.make_offering_order([1], assignment_timeout=None)

        self.assertEqual(self.sweeper.sweep().expired, 0)
        order.refresh_from_db()
        self.assertEqual(order.offered_driver_ids, [1])

    def test_legacy_single_offer_is_expired(self):
        driver = make_driver(1)
        order = self.make_offering_order(
            [],
            assignment_status=AssignmentStatus.OFFERED,
            current_offered_driver=driver,
            current_offered_at=NOW - timedelta(seconds=50),
        )

        self.sweeper.sweep()

        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.SEARCHING)
        self.assertEqual(order.rejected_by_drivers, [driver.pk])
        self.assertIsNone(order.current_offered_driver_id)
        self.assertIsNone(order.current_offered_at)

    def test_rejected_set_only_grows(self):
        order = self.make_offering_order([3, 4], rejected_by_drivers=[1, 2])

        self.sweeper.sweep()

        order.refresh_from_db()
        self.assertEqual(order.rejected_by_drivers, [1, 2, 3, 4])

    def test_terminal_and_accepted_orders_are_not_touched(self):
        failed = make_order(
            assignment_status=AssignmentStatus.FAILED_NO_DRIVERS,
            assignment_timeout=NOW - timedelta(minutes=5),
        )
        accepted = make_order(
            assignment_status=AssignmentStatus.ACCEPTED,
            assignment_timeout=NOW - timedelta(minutes=5),
        )

        result = self.sweeper.sweep()

        self.assertEqual(result.scanned, 0)
        failed.refresh_from_db()
        accepted.refresh_from_db()
        self.assertEqual(failed.assignment_status, AssignmentStatus.FAILED_NO_DRIVERS)
        self.assertEqual(accepted.assignment_status, AssignmentStatus.ACCEPTED)

    def test_failed_batch_applies_nothing_and_next_sweep_recovers(self):
        first = self.make_offering_order([1])
        second = self.make_offering_order([2])
        original_save = Order.save
        saves = []

        def flaky_save(instance, *args, **kwargs):
            saves.append(instance.pk)
            if len(saves) == 2:
                raise DatabaseError("connection lost")
            return original_save(instance, *args, **kwargs)

        with patch.object(Order, "save", flaky_save):
            with self.assertRaises(DatabaseError):
                self.sweeper.sweep()

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.assignment_status, AssignmentStatus.BROADCASTING)
        self.assertEqual(second.assignment_status, AssignmentStatus.BROADCASTING)

        result = self.sweeper.sweep()

        self.assertEqual(sorted(result.expired_order_ids), sorted([first.id, second.id]))

    @patch("orders.tasks.start_driver_search_task")
    def test_stalled_search_is_requeued_once_per_window(self, search_task):
        order = make_order(
            status="searching",
            assignment_status=AssignmentStatus.SEARCHING,
            updated_at=NOW - timedelta(hours=1),
        )

        with self.captureOnCommitCallbacks(execute=True):
            result = self.sweeper.sweep()

        self.assertEqual(result.requeued_order_ids, [order.id])
        self.assertEqual(result.scanned, 0)
        search_task.delay.assert_called_once_with(order.id)
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.SEARCHING)
        self.assertEqual(order.updated_at, NOW)

        with self.captureOnCommitCallbacks(execute=True):
            self.assertEqual(self.sweeper.sweep().requeued, 0)
        search_task.delay.assert_called_once()

    @patch("orders.tasks.start_driver_search_task")
    def test_recent_search_is_left_to_its_task(self, search_task):
        make_order(
            status="searching",
            assignment_status=AssignmentStatus.SEARCHING,
            updated_at=NOW - timedelta(seconds=5),
        )

        with self.captureOnCommitCallbacks(execute=True):
            result = self.sweeper.sweep()

        self.assertEqual(result.requeued, 0)
        search_task.delay.assert_not_called()

    @patch("orders.tasks.start_driver_search_task")
    def test_new_order_whose_search_never_ran_is_requeued(self, search_task):
        never_searched = make_order(status="new")
        not_for_dispatch = make_order(status="assigned")
        Order.objects.filter(pk__in=[never_searched.pk, not_for_dispatch.pk]).update(
            created_at=NOW - timedelta(minutes=10)
        )

        with self.captureOnCommitCallbacks(execute=True):
            result = self.sweeper.sweep()

        self.assertEqual(result.requeued_order_ids, [never_searched.id])
        search_task.delay.assert_called_once_with(never_searched.id)


# ---------------------- Offer Responses ----------------------

class AcceptOfferTests(TestCase):

    def setUp(self):
        self.drivers = [make_driver(km) for km in (1, 2, 3)]
        self.ids = [d.pk for d in self.drivers]
        self.order = make_order(
            status="searching",
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=self.ids,
            assignment_timeout=NOW + timedelta(seconds=20),
        )
        Driver.objects.filter(pk__in=self.ids).update(current_offer_order=self.order)

    def test_holder_wins_and_offer_is_cleared(self):
        result = accept_offer(self.order.id, self.ids[1], now=NOW)

        self.assertTrue(result.success)
        self.order.refresh_from_db()
        self.assertEqual(self.order.assignment_status, AssignmentStatus.ACCEPTED)
        self.assertEqual(self.order.accepted_driver_id, self.ids[1])
        self.assertEqual(self.order.accepted_at, NOW)
        self.assertEqual(self.order.offered_driver_ids, [])
        self.assertIsNone(self.order.assignment_timeout)
        self.assertEqual(result.extra["released_driver_ids"], [self.ids[0], self.ids[2]])

        winner = Driver.objects.get(pk=self.ids[1])
        self.assertFalse(winner.is_available)
        self.assertFalse(Driver.objects.filter(current_offer_order=self.order).exists())

    def test_only_first_of_competing_acceptances_succeeds(self):
        results = [accept_offer(self.order.id, driver_id, now=NOW) for driver_id in self.ids]

        self.assertEqual([r.success for r in results], [True, False, False])
        self.assertEqual(results[1].error_code, "offer_unavailable")
        self.order.refresh_from_db()
        self.assertEqual(self.order.accepted_driver_id, self.ids[0])

    def test_non_holder_cannot_accept(self):
        outsider = make_driver(9)

        result = accept_offer(self.order.id, outsider.pk, now=NOW)

        self.assertFalse(result.success)
        self.order.refresh_from_db()
        self.assertEqual(self.order.assignment_status, AssignmentStatus.BROADCASTING)

    def test_missing_order_raises(self):
        with self.assertRaises(OrderNotFoundError):
            accept_offer(987654, self.ids[0])


class ConcurrentAcceptTests(TransactionTestCase):
    """Acceptances racing on separate connections still produce one winner."""

    def setUp(self):
        for name in ("start_driver_search_task", "notify_admins_new_order_task"):
            patcher = patch(f"orders.tasks.{name}")
            patcher.start()
            self.addCleanup(patcher.stop)

        self.drivers = [make_driver(km) for km in (1, 2, 3, 4, 5)]
        self.ids = [d.pk for d in self.drivers]
        self.order = make_order(
            status="searching",
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=self.ids,
            assignment_timeout=NOW + timedelta(seconds=20),
        )

    def test_losing_acceptances_are_noops(self):
        start = threading.Barrier(len(self.ids))
        outcomes = {}

        def accept(driver_id):
            try:
                start.wait()
                outcomes[driver_id] = accept_offer(self.order.id, driver_id, now=NOW)
            except Exception as exc:
                outcomes[driver_id] = exc
            finally:
                connection.close()

        workers = [threading.Thread(target=accept, args=(driver_id,)) for driver_id in self.ids]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        errors = [outcome for outcome in outcomes.values() if isinstance(outcome, Exception)]
        self.assertEqual(errors, [])
        winners = [driver_id for driver_id, result in outcomes.items() if result.success]
        self.assertEqual(len(winners), 1)
        losers = [result for result in outcomes.values() if not result.success]
        self.assertEqual(len(losers), len(self.ids) - 1)
        self.assertTrue(all(result.error_code == "offer_unavailable" for result in losers))

        self.order.refresh_from_db()
        self.assertEqual(self.order.assignment_status, AssignmentStatus.ACCEPTED)
        self.assertEqual(self.order.accepted_driver_id, winners[0])


class DeclineOfferTests(TestCase):

    def setUp(self):
        self.drivers = [make_driver(km) for km in (1, 2)]
        self.ids = [d.pk for d in self.drivers]
        self.order = make_order(
            status="searching",
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=self.ids,
            assignment_timeout=NOW + timedelta(seconds=20),
        )

    def test_decline_moves_driver_to_rejected(self):
        result = decline_offer(self.order.id, self.ids[0], now=NOW)

        self.assertTrue(result.success)
        self.assertFalse(result.extra["requeued"])
        self.order.refresh_from_db()
        self.assertEqual(self.order.offered_driver_ids, [self.ids[1]])
        self.assertEqual(self.order.rejected_by_drivers, [self.ids[0]])

    def test_last_decline_requeues_order(self):
        decline_offer(self.order.id, self.ids[0], now=NOW)
        result = decline_offer(self.order.id, self.ids[1], now=NOW)

        self.assertTrue(result.extra["requeued"])
        self.order.refresh_from_db()
        self.assertEqual(self.order.assignment_status, AssignmentStatus.SEARCHING)
        self.assertEqual(self.order.rejected_by_drivers, self.ids)

    def test_decline_without_offer_raises(self):
        decline_offer(self.order.id, self.ids[0], now=NOW)

        with self.assertRaises(OfferNotFoundError):
            decline_offer(self.order.id, self.ids[0], now=NOW)


# ---------------------- Triggers ----------------------

class TriggerDecisionTests(SimpleTestCase):

    def test_creation_starts_search_for_pending_or_new(self):
        for status in ("pending", "Pending", "NEW", "new"):
            self.assertTrue(triggers.wants_search_on_create({"status": status}), status)

    def test_creation_ignores_other_statuses(self):
        for fields in ({"status": "assigned"}, {"status": None}, {}, None):
            self.assertFalse(triggers.wants_search_on_create(fields))

    def test_update_fires_only_on_change_to_searching(self):
        searching = {"assignment_status": "searching"}

        self.assertTrue(triggers.wants_search_on_update({"assignment_status": "broadcasting"}, searching))
        self.assertTrue(triggers.wants_search_on_update({"assignment_status": "failed_no_drivers"}, searching))
        self.assertTrue(triggers.wants_search_on_update({"assignment_status": ""}, searching))
        self.assertFalse(triggers.wants_search_on_update(searching, searching))
        self.assertFalse(triggers.wants_search_on_update(
            {"assignment_status": "searching"}, {"assignment_status": "broadcasting"}
        ))
        self.assertFalse(triggers.wants_search_on_update(None, searching))
