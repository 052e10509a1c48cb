"""
Realtime delivery over the Channels layer.

Key Components:
    - notifications.py: push notifier, parallel offer fan-out and admin alerts

Usage:
    from realtime.notifications import ChannelLayerNotifier, AdminAlerter, send_offer_notifications
"""
