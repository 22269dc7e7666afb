"""Payment gateway port (abstract interface).

The checkout orchestrator only needs two things from a PSP: open a hosted
checkout session, and later ask what happened to it. Everything provider
specific stays behind this contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PaymentStatus(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELED = "canceled"


@dataclass(frozen=True)
class SessionResult:
    """Result of a checkout session request."""

    success: bool
    session_id: str | None = None
    provider: str | None = None
    intent_id: str | None = None
    redirect_url: str | None = None
    client_secret: str | None = None
    expires_at: datetime | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class SessionStatus:
    """What the PSP reports about a session's payment."""

    status: str
    intent_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    raw: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name = "abstract"

    @abstractmethod
    def create_session(
        self,
        amount: int,
        currency: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
        idempotency_key: str,
        metadata: dict,
        *,
        timeout: float,
    ) -> SessionResult:
        """Open a hosted checkout session for ``amount``."""
        ...

    @abstractmethod
    def get_session_status(self, session_id: str, intent_id: str | None, *, timeout: float) -> SessionStatus:
        """Look up the payment status behind a session."""
        ...
