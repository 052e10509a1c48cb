from rest_framework import serializers

from .models import Order


class OrderOfferSerializer(serializers.ModelSerializer):
    """Order fields a driver needs to decide on an offer"""

    class Meta:
        model = Order
        fields = ['id', 'order_number', 'customer_name', 'total_amount',
                  'pickup_latitude', 'pickup_longitude', 'assignment_timeout']
        read_only_fields = fields


class OrderAlertSerializer(serializers.ModelSerializer):
    """Order summary sent to the admin alert channel"""

    class Meta:
        model = Order
        fields = ['id', 'order_number', 'customer_name', 'status',
                  'assignment_status', 'rejected_by_drivers', 'created_at']
        read_only_fields = fields
