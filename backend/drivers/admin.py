from django.contrib import admin
from drivers.models import Driver


@admin.register(Driver)
class DriverAdmin(admin.ModelAdmin):
    """Admin panel for managing delivery drivers"""

    list_display = [
        "id",
        "name",
        "is_online",
        "is_available",
        "current_latitude",
        "current_longitude",
        "current_offer_order",
        "last_location_update",
    ]

    list_filter = [
        "is_online",
        "is_available",
    ]

    search_fields = [
        "name",
        "notification_address",
    ]

    readonly_fields = [
        "last_location_update",
        "current_offer_order",
        "current_offer_expires_at",
    ]

    ordering = ("id",)
