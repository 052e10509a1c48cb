from unittest.mock import patch

from django.test import TestCase


class HealthCheckTests(TestCase):

    def test_reports_healthy_when_dispatch_tasks_are_registered(self):
        response = self.client.get("/health/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "healthy")
        self.assertEqual(body["services"]["database"], "healthy")
        self.assertEqual(body["services"]["channels"], "healthy")
        self.assertEqual(body["services"]["celery"], "healthy")

    def test_missing_task_makes_service_unavailable(self):
        required = ("orders.tasks.start_driver_search_task", "orders.tasks.reassign_order_task")

        with patch("dispatch_backend.views.REQUIRED_TASKS", required):
            response = self.client.get("/health/")

        self.assertEqual(response.status_code, 503)
        body = response.json()
        self.assertEqual(body["status"], "unhealthy")
        self.assertIn("orders.tasks.reassign_order_task", body["services"]["celery"])
        self.assertNotIn("start_driver_search_task", body["services"]["celery"])
