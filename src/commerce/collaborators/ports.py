"""Collaborator ports (abstract interfaces) and their result types.

Every system the engine talks to but does not own sits behind one of these
narrow contracts: the user's address book, stock reservation, promotion
validation, tax and shipping-rate quoting, and invoice delivery. Adapters
raise ``commerce.errors.CollaboratorError`` on failure and mark whether the
failure is transient.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from commerce.money import TaxLine


@dataclass(frozen=True)
class Address:
    """Point-in-time copy of an address record owned by the profile service."""

    id: str
    country: str
    postal_code: str
    state: str | None = None
    city: str | None = None
    line1: str | None = None
    line2: str | None = None
    recipient: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class ReservationLine:
    product_id: str
    sku: str
    quantity: int


@dataclass(frozen=True)
class ReservationResult:
    success: bool
    reservation_id: str | None = None
    expires_at: datetime | None = None
    shortages: tuple[str, ...] = ()


@dataclass(frozen=True)
class PromotionDecision:
    code: str
    eligible: bool
    discount_amount: int = 0
    reason: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class TaxableItem:
    item_id: str
    sku: str
    quantity: int
    subtotal: int
    discount: int
    tax_code: str | None = None


@dataclass(frozen=True)
class TaxQuote:
    amount: int
    lines: tuple[TaxLine, ...] = ()


@dataclass(frozen=True)
class ShippableItem:
    item_id: str
    sku: str
    quantity: int
    weight_grams: int


@dataclass(frozen=True)
class ShippingRate:
    service_level: str
    carrier: str
    amount: int
    currency: str
    estimate_days: int | None = None


@dataclass(frozen=True)
class DispatchResult:
    dispatch_id: str
    channels: tuple[str, ...]


class AddressBook(ABC):
    @abstractmethod
    def get(self, user_id: str, address_id: str, *, timeout: float) -> Address | None:
        """Return the address if it exists and belongs to the user."""
        ...


class StockReservations(ABC):
    @abstractmethod
    def reserve(
        self,
        user_id: str,
        lines: list[ReservationLine],
        ttl: timedelta,
        idempotency_key: str,
        *,
        timeout: float,
    ) -> ReservationResult:
        """Hold stock for every line or for none of them."""
        ...

    @abstractmethod
    def release(self, reservation_id: str, reason: str, idempotency_key: str, *, timeout: float) -> None:
        """Release a reservation. Releasing twice is a no-op."""
        ...


class PromotionService(ABC):
    @abstractmethod
    def validate(
        self,
        code: str,
        user_id: str,
        cart_id: str,
        subtotal: int,
        currency: str,
        *,
        timeout: float,
    ) -> PromotionDecision: ...


class TaxService(ABC):
    @abstractmethod
    def quote(
        self,
        currency: str,
        destination: Address | None,
        items: list[TaxableItem],
        shipping_amount: int,
        *,
        timeout: float,
    ) -> TaxQuote: ...


class ShippingRateService(ABC):
    @abstractmethod
    def quote(
        self,
        currency: str,
        destination: Address,
        items: list[ShippableItem],
        subtotal: int,
        discount: int,
        *,
        timeout: float,
    ) -> list[ShippingRate]:
        """Return candidate service levels, possibly empty."""
        ...


class InvoiceDispatcher(ABC):
    @abstractmethod
    def dispatch(
        self,
        order_id: str,
        order_number: str,
        requested_by: str,
        notes: str | None,
        channels: tuple[str, ...],
        idempotency_key: str,
        *,
        timeout: float,
    ) -> DispatchResult: ...
