"""
Order assignment state machine.

All assignment status changes go through the transition table below. The
``plan_*`` functions are pure: given an order snapshot and the event data
they return an ``OrderUpdate`` describing the store operations (field sets,
field deletes and a set-union onto ``rejected_by_drivers``) or ``None`` when
the event is a no-op for the order's current state. Callers apply the plan
to a row they have locked with ``select_for_update``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from orders.models import AssignmentStatus

from .exceptions import InvalidTransitionError


OFFERING_STATES = frozenset({AssignmentStatus.BROADCASTING, AssignmentStatus.OFFERED})

# States from which an offer round may start. Unset orders are searching
# implicitly (creation trigger).
SEARCH_STATES = frozenset({AssignmentStatus.UNSET, AssignmentStatus.SEARCHING})

TERMINAL_STATES = frozenset({AssignmentStatus.FAILED_NO_DRIVERS})

# Automated transitions only. Administrative resets to ``searching`` happen
# outside this layer and are picked up by the update trigger.
TRANSITIONS = {
    AssignmentStatus.UNSET: frozenset({
        AssignmentStatus.SEARCHING,
        AssignmentStatus.BROADCASTING,
        AssignmentStatus.FAILED_NO_DRIVERS,
    }),
    AssignmentStatus.SEARCHING: frozenset({
        AssignmentStatus.BROADCASTING,
        AssignmentStatus.FAILED_NO_DRIVERS,
    }),
    AssignmentStatus.BROADCASTING: frozenset({
        AssignmentStatus.ACCEPTED,
        AssignmentStatus.SEARCHING,
    }),
    AssignmentStatus.OFFERED: frozenset({
        AssignmentStatus.ACCEPTED,
        AssignmentStatus.SEARCHING,
    }),
    AssignmentStatus.ACCEPTED: frozenset(),
    AssignmentStatus.FAILED_NO_DRIVERS: frozenset(),
}


def normalize_status(value) -> str:
    """Map a stored value (possibly None or unknown) onto an AssignmentStatus."""
    if not value:
        return AssignmentStatus.UNSET
    try:
        return AssignmentStatus(value)
    except ValueError:
        return value


def can_transition(current, target) -> bool:
    return normalize_status(target) in TRANSITIONS.get(normalize_status(current), frozenset())


def ensure_transition(current, target):
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def is_offering(value) -> bool:
    return normalize_status(value) in OFFERING_STATES


def can_start_offer(value) -> bool:
    return normalize_status(value) in SEARCH_STATES


def _unique(ids: Iterable) -> List:
    seen = set()
    result = []
    for driver_id in ids:
        if driver_id is None or driver_id in seen:
            continue
        seen.add(driver_id)
        result.append(driver_id)
    return result


def offer_holders(order) -> List:
    """Driver ids holding a live offer: broadcast set plus the legacy holder."""
    holders = list(order.offered_driver_ids or [])
    holders.append(order.current_offered_driver_id)
    return _unique(holders)


@dataclass(frozen=True)
class OrderUpdate:
    """Store operations for one assignment write on one order."""

    assignment_status: str
    set_fields: Dict[str, Any] = field(default_factory=dict)
    delete_fields: Tuple[str, ...] = ()
    reject_driver_ids: Tuple = ()

    def apply(self, order) -> List[str]:
        """Write the update onto ``order`` and return its ``update_fields``."""
        if normalize_status(order.assignment_status) != normalize_status(self.assignment_status):
            ensure_transition(order.assignment_status, self.assignment_status)

        order.assignment_status = self.assignment_status
        update_fields = ['assignment_status']

        for name, value in self.set_fields.items():
            setattr(order, name, value)
            update_fields.append(name)

        for name in self.delete_fields:
            setattr(order, name, _empty_value(name))
            update_fields.append(name)

        if self.reject_driver_ids:
            order.rejected_by_drivers = _unique(
                list(order.rejected_by_drivers or []) + list(self.reject_driver_ids)
            )
            update_fields.append('rejected_by_drivers')

        return _unique(update_fields)


# Empty value written for each deletable field
_FIELD_EMPTY_VALUES = {
    'offered_driver_ids': list,
    'current_offered_driver': lambda: None,
    'current_offered_at': lambda: None,
    'assignment_timeout': lambda: None,
}

OFFER_FIELDS = ('offered_driver_ids', 'current_offered_driver', 'current_offered_at')


def _empty_value(name):
    return _FIELD_EMPTY_VALUES[name]()


# ---------------------- Planning ----------------------

def plan_offer(order, driver_ids: Iterable, now: datetime, offer_window: timedelta) -> Optional[OrderUpdate]:
    """
    Plan the searching -> broadcasting write for a selected batch.

    Drivers already in ``rejected_by_drivers`` are dropped; if nobody is left
    the order has no eligible drivers and ``plan_no_drivers`` applies.
    """
    if not can_start_offer(order.assignment_status):
        return None

    rejected = set(order.rejected_by_drivers or [])
    selected = [driver_id for driver_id in _unique(driver_ids) if driver_id not in rejected]
    if not selected:
        return plan_no_drivers(order, now)

    return OrderUpdate(
        assignment_status=AssignmentStatus.BROADCASTING,
        set_fields={
            'status': 'searching',
            'offered_driver_ids': selected,
            'assignment_timeout': now + offer_window,
            'updated_at': now,
        },
        delete_fields=('current_offered_driver', 'current_offered_at'),
    )


def plan_no_drivers(order, now: datetime) -> Optional[OrderUpdate]:
    if not can_start_offer(order.assignment_status):
        return None

    return OrderUpdate(
        assignment_status=AssignmentStatus.FAILED_NO_DRIVERS,
        set_fields={
            'notification_sent_to_admin': False,
            'updated_at': now,
        },
        delete_fields=OFFER_FIELDS + ('assignment_timeout',),
    )


def is_expired(order, now: datetime) -> bool:
    timeout = order.assignment_timeout
    if not isinstance(timeout, datetime):
        return False
    return now >= timeout


def plan_expiry(order, now: datetime) -> Optional[OrderUpdate]:
    """Plan offering -> searching once the offer window has elapsed."""
    if not is_offering(order.assignment_status) or not is_expired(order, now):
        return None

    return OrderUpdate(
        assignment_status=AssignmentStatus.SEARCHING,
        set_fields={'updated_at': now},
        delete_fields=OFFER_FIELDS + ('assignment_timeout',),
        reject_driver_ids=tuple(offer_holders(order)),
    )


def plan_acceptance(order, driver_id, now: datetime) -> Optional[OrderUpdate]:
    """
    Plan offering -> accepted for ``driver_id``.

    Returns None when the order is no longer offering or the driver does not
    hold the offer: the caller lost the race (or never had an offer).
    """
    if not is_offering(order.assignment_status):
        return None
    if driver_id not in offer_holders(order):
        return None

    return OrderUpdate(
        assignment_status=AssignmentStatus.ACCEPTED,
        set_fields={
            'status': 'assigned',
            'accepted_driver_id': driver_id,
            'accepted_at': now,
            'updated_at': now,
        },
        delete_fields=OFFER_FIELDS + ('assignment_timeout',),
    )


def plan_decline(order, driver_id, now: datetime) -> Optional[OrderUpdate]:
    """
    Plan a single driver's decline.

    The driver moves from the offer set into ``rejected_by_drivers``. While
    other holders remain the order keeps offering; when the last holder
    declines the order returns to searching.
    """
    if not is_offering(order.assignment_status):
        return None
    holders = offer_holders(order)
    if driver_id not in holders:
        return None

    remaining = [holder for holder in holders if holder != driver_id]
    if remaining:
        set_fields = {'updated_at': now}
        delete_fields = ()
        if driver_id in (order.offered_driver_ids or []):
            set_fields['offered_driver_ids'] = [
                holder for holder in order.offered_driver_ids if holder != driver_id
            ]
        if order.current_offered_driver_id == driver_id:
            delete_fields = ('current_offered_driver', 'current_offered_at')
        return OrderUpdate(
            assignment_status=order.assignment_status,
            set_fields=set_fields,
            delete_fields=delete_fields,
            reject_driver_ids=(driver_id,),
        )

    return OrderUpdate(
        assignment_status=AssignmentStatus.SEARCHING,
        set_fields={'updated_at': now},
        delete_fields=OFFER_FIELDS + ('assignment_timeout',),
        reject_driver_ids=(driver_id,),
    )
