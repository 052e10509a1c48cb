from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from drivers.models import Driver
from services.dispatch import ExpirationSweeper, OfferBroadcaster, accept_offer
from services.dispatch.tests import NOW, RecordingNotifier, make_driver, make_order

from .models import AssignmentStatus, Order
from .tasks import start_driver_search_task, sweep_expired_offers_task


class OrderTriggerSignalTests(TestCase):
    """Order saves schedule driver searches once the write commits."""

    @patch("orders.tasks.notify_admins_new_order_task")
    @patch("orders.tasks.start_driver_search_task")
    def test_new_pending_order_starts_search(self, search_task, alert_task):
        with self.captureOnCommitCallbacks(execute=True):
            order = Order.objects.create(status="Pending")

        search_task.delay.assert_called_once_with(order.id)
        alert_task.delay.assert_called_once_with(order.id)

    @patch("orders.tasks.notify_admins_new_order_task")
    @patch("orders.tasks.start_driver_search_task")
    def test_order_created_in_other_status_is_ignored(self, search_task, alert_task):
        with self.captureOnCommitCallbacks(execute=True):
            Order.objects.create(status="assigned")

        search_task.delay.assert_not_called()
        alert_task.delay.assert_called_once()

    @patch("orders.tasks.start_driver_search_task")
    def test_admin_reset_to_searching_retries(self, search_task):
        order = make_order(status="searching", assignment_status=AssignmentStatus.FAILED_NO_DRIVERS)

        with self.captureOnCommitCallbacks(execute=True):
            order.assignment_status = AssignmentStatus.SEARCHING
            order.save(update_fields=["assignment_status"])

        search_task.delay.assert_called_once_with(order.id)

    @patch("orders.tasks.start_driver_search_task")
    def test_saving_without_status_change_does_not_retry(self, search_task):
        order = make_order(status="searching", assignment_status=AssignmentStatus.SEARCHING)

        with self.captureOnCommitCallbacks(execute=True):
            order.customer_name = "Ravi"
            order.save()

        search_task.delay.assert_not_called()

    @patch("orders.tasks.start_driver_search_task")
    def test_sweeper_expiry_feeds_retry(self, search_task):
        order = make_order(
            status="searching",
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=[1],
            assignment_timeout=NOW - timedelta(seconds=1),
        )

        with self.captureOnCommitCallbacks(execute=True):
            ExpirationSweeper(clock=lambda: NOW).sweep()

        search_task.delay.assert_called_once_with(order.id)

    @patch("orders.tasks.start_driver_search_task")
    def test_rolled_back_write_schedules_nothing(self, search_task):
        make_order(
            status="searching",
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=[1],
            assignment_timeout=NOW - timedelta(seconds=1),
        )

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with patch("services.dispatch.sweeper.plan_expiry", side_effect=RuntimeError("boom")):
                with self.assertRaises(RuntimeError):
                    ExpirationSweeper(clock=lambda: NOW).sweep()

        self.assertEqual(callbacks, [])
        search_task.delay.assert_not_called()


class OrderTaskTests(TestCase):

    def test_search_task_broadcasts_to_nearest_drivers(self):
        nearest = make_driver(1)
        make_driver(10)
        order = make_order()

        offered = start_driver_search_task(order.id)

        self.assertIn(nearest.pk, offered)
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.BROADCASTING)

    def test_search_task_for_deleted_order(self):
        self.assertEqual(start_driver_search_task(424242), [])

    def test_search_task_retries_store_errors(self):
        self.assertIn(DatabaseError, start_driver_search_task.autoretry_for)
        self.assertTrue(start_driver_search_task.retry_backoff)

    def test_sweep_task_returns_expired_order_ids(self):
        order = make_order(
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=[1],
            assignment_timeout=timezone.now() - timedelta(minutes=1),
        )

        self.assertEqual(sweep_expired_offers_task(), [order.id])

    def test_sweep_command(self):
        make_order(
            assignment_status=AssignmentStatus.BROADCASTING,
            offered_driver_ids=[1],
            assignment_timeout=timezone.now() - timedelta(minutes=1),
        )
        out = StringIO()

        call_command("sweep_expired_offers", stdout=out)

        self.assertIn("expired 1", out.getvalue())


class DispatchScenarioTests(TestCase):
    """Full assignment rounds: broadcast, expiry, retry, exhaustion, acceptance."""

    def setUp(self):
        self.now = NOW
        self.notifier = RecordingNotifier()
        self.drivers = [make_driver(km) for km in (1, 2, 3, 4, 5)]
        self.ids = [d.pk for d in self.drivers]

    def broadcaster(self):
        return OfferBroadcaster(
            notifier=self.notifier,
            alerter=AlerterSpy(),
            batch_size=3,
            offer_window_seconds=20,
            clock=lambda: self.now,
        )

    def sweep(self):
        return ExpirationSweeper(clock=lambda: self.now).sweep()

    def assert_offer_and_rejection_disjoint(self, order):
        self.assertFalse(set(order.offered_driver_ids) & set(order.rejected_by_drivers))

    def test_rounds_until_drivers_run_out(self):
        order = make_order(total_amount=Decimal("120.00"))
        rejected_sizes = []

        # Round 1: nearest three
        self.assertEqual(self.broadcaster().broadcast(order.id), set(self.ids[:3]))
        order.refresh_from_db()
        self.assertEqual(order.assignment_timeout, NOW + timedelta(seconds=20))
        self.assert_offer_and_rejection_disjoint(order)
        rejected_sizes.append(len(order.rejected_by_drivers))

        # Nobody answers
        self.now = NOW + timedelta(seconds=21)
        self.assertEqual(self.sweep().expired_order_ids, [order.id])
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.SEARCHING)
        self.assertEqual(order.rejected_by_drivers, self.ids[:3])
        self.assertEqual(order.offered_driver_ids, [])
        rejected_sizes.append(len(order.rejected_by_drivers))

        # Round 2: the remaining two
        self.assertEqual(self.broadcaster().broadcast(order.id), set(self.ids[3:]))
        order.refresh_from_db()
        self.assert_offer_and_rejection_disjoint(order)
        rejected_sizes.append(len(order.rejected_by_drivers))

        self.now = self.now + timedelta(seconds=21)
        self.sweep()
        order.refresh_from_db()
        rejected_sizes.append(len(order.rejected_by_drivers))

        # Round 3: everybody has rejected
        self.assertEqual(self.broadcaster().broadcast(order.id), set())
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.FAILED_NO_DRIVERS)
        rejected_sizes.append(len(order.rejected_by_drivers))

        self.assertEqual(rejected_sizes, sorted(rejected_sizes))

        # Terminal: neither sweeper nor broadcaster moves it
        self.now = self.now + timedelta(minutes=10)
        self.sweep()
        self.broadcaster().broadcast(order.id)
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.FAILED_NO_DRIVERS)

    def test_acceptance_before_expiry_wins_over_sweep(self):
        order = make_order()
        offered = self.broadcaster().broadcast(order.id)
        winner = sorted(offered)[0]

        result = accept_offer(order.id, winner, now=NOW + timedelta(seconds=5))
        self.assertTrue(result.success)

        self.now = NOW + timedelta(seconds=30)
        self.assertEqual(self.sweep().expired, 0)
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.ACCEPTED)
        self.assertEqual(order.accepted_driver_id, winner)
        self.assertEqual(order.rejected_by_drivers, [])

    def test_late_acceptance_after_expiry_is_noop(self):
        order = make_order()
        offered = self.broadcaster().broadcast(order.id)

        self.now = NOW + timedelta(seconds=21)
        self.sweep()

        result = accept_offer(order.id, sorted(offered)[0], now=self.now)
        self.assertFalse(result.success)
        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.SEARCHING)
        self.assertIsNone(order.accepted_driver_id)

    def test_no_drivers_online_at_creation(self):
        Driver.objects.update(is_online=False)
        order = make_order()
        alerter = AlerterSpy()

        broadcaster = OfferBroadcaster(notifier=self.notifier, alerter=alerter, clock=lambda: NOW)
        self.assertEqual(broadcaster.broadcast(order.id), set())

        order.refresh_from_db()
        self.assertEqual(order.assignment_status, AssignmentStatus.FAILED_NO_DRIVERS)
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(alerter.unassigned, [order.id])


class AlerterSpy:

    def __init__(self):
        self.unassigned = []

    def no_drivers_found(self, order):
        self.unassigned.append(order.id)
        return True
