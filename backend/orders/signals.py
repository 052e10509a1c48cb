"""Order save signals feeding the driver-search triggers."""

import logging

from django.db import transaction
from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from services.dispatch import triggers

from .models import Order

logger = logging.getLogger(__name__)

TRIGGER_FIELDS = ("status", "assignment_status")


def _event_fields(values) -> dict:
    return {name: values.get(name) for name in TRIGGER_FIELDS}


@receiver(pre_save, sender=Order)
def capture_previous_state(sender, instance, raw=False, **kwargs):
    """Remember the stored trigger fields so post_save can see the change."""
    if raw or instance.pk is None:
        instance._trigger_before = None
        return

    instance._trigger_before = (
        Order.objects.filter(pk=instance.pk).values(*TRIGGER_FIELDS).first()
    )


@receiver(post_save, sender=Order)
def order_saved(sender, instance, created, raw=False, **kwargs):
    if raw:
        return

    after = _event_fields(instance.__dict__)
    if created:
        triggers.on_order_created(instance.pk, after)
        transaction.on_commit(lambda: _alert_admins(instance.pk))
        return

    before = getattr(instance, "_trigger_before", None)
    if before is None:
        return
    triggers.on_order_updated(instance.pk, _event_fields(before), after)


def _alert_admins(order_id):
    from .tasks import notify_admins_new_order_task

    notify_admins_new_order_task.delay(order_id)
