from django.db import models


class AssignmentStatus(models.TextChoices):
    """Driver-assignment sub-state of an order."""

    UNSET = '', 'Unset'
    SEARCHING = 'searching', 'Searching'
    BROADCASTING = 'broadcasting', 'Broadcasting'
    OFFERED = 'offered', 'Offered (legacy single offer)'
    ACCEPTED = 'accepted', 'Accepted'
    FAILED_NO_DRIVERS = 'failed_no_drivers', 'Failed - No Drivers'


class Order(models.Model):
    """Delivery order as seen by the driver-dispatch layer"""

    # Coarse lifecycle label, independent of the assignment sub-state
    status = models.CharField(max_length=30, default='pending')
    assignment_status = models.CharField(
        max_length=20,
        choices=AssignmentStatus.choices,
        default=AssignmentStatus.UNSET,
        blank=True,
        db_index=True,
    )

    # Descriptive fields carried into the offer notification
    order_number = models.CharField(max_length=30, blank=True)
    customer_name = models.CharField(max_length=100, blank=True)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    # Pickup location
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    # Driver ids never to be offered this order again
    rejected_by_drivers = models.JSONField(default=list, blank=True)

    # Broadcast offer holders
    offered_driver_ids = models.JSONField(default=list, blank=True)

    # Legacy single-offer holder
    current_offered_driver = models.ForeignKey(
        'drivers.Driver',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    current_offered_at = models.DateTimeField(null=True, blank=True)

    assignment_timeout = models.DateTimeField(null=True, blank=True)

    accepted_driver = models.ForeignKey(
        'drivers.Driver',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='accepted_orders',
    )
    accepted_at = models.DateTimeField(null=True, blank=True)

    notification_sent_to_admin = models.BooleanField(default=False)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'orders'
        ordering = ['-created_at']

    def __str__(self):
        return f"Order #{self.id} - {self.status} ({self.assignment_status or 'unset'})"
