from django.utils import timezone
from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status
from channels.layers import get_channel_layer

from orders.models import Order

from .celery import app as celery_app

# Tasks a worker must be able to run for orders to get drivers
REQUIRED_TASKS = (
    "orders.tasks.start_driver_search_task",
    "orders.tasks.sweep_expired_offers_task",
    "orders.tasks.notify_admins_new_order_task",
)


@api_view(["GET"])
def health_check(request):
    """Health check endpoint for monitoring system status"""

    health_status = {
        "status": "healthy",
        "timestamp": timezone.now().isoformat(),
        "services": {}
    }

    # Database check
    try:
        Order.objects.count()
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"unhealthy: {e}"
        health_status["status"] = "unhealthy"

    # Channel layer check
    try:
        channel_layer = get_channel_layer()
        if channel_layer is not None:
            health_status["services"]["channels"] = "healthy"
        else:
            health_status["services"]["channels"] = "unhealthy: no channel layer"
            health_status["status"] = "unhealthy"
    except Exception as e:
        health_status["services"]["channels"] = f"unhealthy: {e}"
        health_status["status"] = "unhealthy"

    # Celery check
    try:
        celery_app.autodiscover_tasks(force=True)
        missing = [name for name in REQUIRED_TASKS if name not in celery_app.tasks]
        if missing:
            health_status["services"]["celery"] = f"unhealthy: tasks not registered: {', '.join(missing)}"
            health_status["status"] = "unhealthy"
        else:
            health_status["services"]["celery"] = "healthy"
    except Exception as e:
        health_status["services"]["celery"] = f"unhealthy: {e}"
        health_status["status"] = "unhealthy"

    status_code = (
        status.HTTP_200_OK
        if health_status["status"] == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )

    return Response(health_status, status=status_code)
