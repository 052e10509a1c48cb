"""Orders app configuration."""

from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'orders'

    def ready(self):
        # Order create/update triggers for driver search
        from . import signals  # noqa: F401
