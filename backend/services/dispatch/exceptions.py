"""Custom exceptions for driver dispatch."""


class DispatchError(Exception):
    """Base class for driver dispatch errors."""
    pass


class InvalidTransitionError(DispatchError):
    """Raised when an assignment status change is not in the transition table."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Illegal assignment transition {current or 'unset'!r} -> {target!r}")


class OrderNotFoundError(DispatchError):
    """Raised when an order cannot be found."""
    pass


class OfferNotFoundError(DispatchError):
    """Raised when a driver does not hold a live offer for the order."""
    pass


class NotificationDeliveryError(DispatchError):
    """Raised by a notifier when a single push could not be delivered."""
    pass
