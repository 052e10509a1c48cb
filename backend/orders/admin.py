"""Tells what to show in the Django admin interface for orders app"""

from django.contrib import admin
from .models import Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Order admin"""
    list_display = ['id', 'order_number', 'status', 'assignment_status', 'accepted_driver',
                    'assignment_timeout', 'notification_sent_to_admin', 'created_at']
    list_filter = ['assignment_status', 'status', 'created_at']
    search_fields = ['order_number', 'customer_name']
    readonly_fields = ['created_at', 'updated_at', 'accepted_at']
    date_hierarchy = 'created_at'
