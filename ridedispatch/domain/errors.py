"""Error taxonomy shared by the domain, services and API layers."""


class DispatchError(Exception):
    """Base class for every error raised by the dispatch core."""


class ValidationError(DispatchError):
    """Malformed input (coordinates, fare, reason, ...)."""


class InvalidStateTransition(DispatchError):
    """Raised when a request status change violates the state machine."""


class ConcurrencyConflict(DispatchError):
    """A conditional update lost a race against a competing writer."""


class NotFound(DispatchError):
    """Unknown request / driver / promo id."""


class ProviderUnavailable(DispatchError):
    """Routing provider failure.  Always recovered locally."""
