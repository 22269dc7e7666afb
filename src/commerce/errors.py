"""Domain error taxonomy for the commerce context.

Malformed input is reported with Protean's ``ValidationError`` the same way
aggregates report it everywhere else. The classes here cover the outcomes
that are not about the shape of the input: missing entities, optimistic
precondition failures, illegal state transitions and degraded
collaborators. Each carries a ``kind`` so an outer layer can map it to a
status code without isinstance ladders.
"""


class CommerceError(Exception):
    kind = "error"

    def __init__(self, message: str = "", **context) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context


class NotFound(CommerceError):
    """Entity is absent, or is not owned by the requesting actor."""

    kind = "not_found"


class Conflict(CommerceError):
    """An optimistic precondition failed (stale version or status)."""

    kind = "conflict"


class InvalidState(Conflict):
    """Command is not legal for the entity's current status."""

    kind = "invalid_state"


class Unavailable(CommerceError):
    """A required collaborator or storage is degraded. Safe to retry."""

    kind = "unavailable"


class CartNotReady(CommerceError):
    kind = "cart_not_ready"


class InsufficientStock(CommerceError):
    kind = "insufficient_stock"


class PaymentFailed(CommerceError):
    kind = "payment_failed"


class InvoiceAlreadyRequested(CommerceError):
    """Raised by the write path when a concurrent request won the marker."""

    kind = "already_requested"


class PricingInvariantError(CommerceError):
    """A computed breakdown does not balance. Always a bug, never user error."""

    kind = "pricing_invariant"


class CollaboratorError(Exception):
    """Raised by collaborator adapters.

    ``transient`` failures are retried by the caller and surface as
    ``Unavailable`` once retries are exhausted. Permanent ones are not
    retried and surface as the error kind the caller names, ``Unavailable``
    unless it asks for another.
    """

    def __init__(self, message: str = "", transient: bool = True) -> None:
        super().__init__(message or "collaborator failure")
        self.transient = transient


class CollaboratorTimeout(CollaboratorError):
    def __init__(self, message: str = "collaborator timed out") -> None:
        super().__init__(message, transient=True)
