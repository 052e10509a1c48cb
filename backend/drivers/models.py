from django.db import models
from django.utils import timezone


class Driver(models.Model):
    """Delivery driver record: availability, live location and push address"""

    name = models.CharField(max_length=100, blank=True)

    # Eligibility flags, written by the driver's app session
    is_online = models.BooleanField(default=False, db_index=True)
    is_available = models.BooleanField(default=False, db_index=True)

    # Live location
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    # Channel-layer group the driver's device listens on
    notification_address = models.CharField(max_length=100, blank=True)

    # Offer the driver currently holds
    current_offer_order = models.ForeignKey(
        'orders.Order',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    current_offer_expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'delivery_drivers'
        ordering = ['id']

    def __str__(self):
        return f"Driver #{self.id} - {self.name or 'unnamed'}"
