"""In-memory fake collaborators for development and testing.

Each fake records its calls and can be told to fail the next N calls,
transiently or permanently, so tests can drive the degraded paths.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from commerce.collaborators.ports import (
    Address,
    AddressBook,
    DispatchResult,
    InvoiceDispatcher,
    PromotionDecision,
    PromotionService,
    ReservationLine,
    ReservationResult,
    ShippableItem,
    ShippingRate,
    ShippingRateService,
    StockReservations,
    TaxableItem,
    TaxQuote,
    TaxService,
)
from commerce.errors import CollaboratorError
from commerce.money import TaxLine


class _FailureInjection:
    def __init__(self) -> None:
        self.calls: list[dict] = []
        self._failures_left = 0
        self._failure_transient = True

    def fail_next(self, times: int = 1, transient: bool = True) -> None:
        self._failures_left = times
        self._failure_transient = transient

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if self._failures_left > 0:
            self._failures_left -= 1
            raise CollaboratorError(f"{type(self).__name__}.{method} failed", transient=self._failure_transient)


class FakeAddressBook(_FailureInjection, AddressBook):
    def __init__(self) -> None:
        super().__init__()
        self.addresses: dict[tuple[str, str], Address] = {}

    def add(self, user_id: str, address: Address) -> Address:
        self.addresses[(str(user_id), address.id)] = address
        return address

    def get(self, user_id: str, address_id: str, *, timeout: float) -> Address | None:
        self._record("get", user_id=user_id, address_id=address_id)
        return self.addresses.get((str(user_id), str(address_id)))


class FakeStockReservations(_FailureInjection, StockReservations):
    """Unlimited stock unless ``available`` caps a SKU."""

    def __init__(self) -> None:
        super().__init__()
        self.available: dict[str, int] = {}
        self.reservations: dict[str, dict] = {}
        self.released: set[str] = set()
        self._by_key: dict[str, str] = {}

    def reserve(
        self,
        user_id: str,
        lines: list[ReservationLine],
        ttl: timedelta,
        idempotency_key: str,
        *,
        timeout: float,
    ) -> ReservationResult:
        self._record("reserve", user_id=user_id, lines=list(lines), idempotency_key=idempotency_key)

        existing = self._by_key.get(idempotency_key)
        if existing and existing not in self.released:
            held = self.reservations[existing]
            return ReservationResult(success=True, reservation_id=existing, expires_at=held["expires_at"])

        shortages = tuple(
            line.sku for line in lines if line.sku in self.available and self.available[line.sku] < line.quantity
        )
        if shortages:
            return ReservationResult(success=False, shortages=shortages)

        for line in lines:
            if line.sku in self.available:
                self.available[line.sku] -= line.quantity

        reservation_id = f"res_{uuid4().hex[:12]}"
        expires_at = datetime.now(UTC) + ttl
        self.reservations[reservation_id] = {"lines": list(lines), "expires_at": expires_at}
        self._by_key[idempotency_key] = reservation_id
        return ReservationResult(success=True, reservation_id=reservation_id, expires_at=expires_at)

    def release(self, reservation_id: str, reason: str, idempotency_key: str, *, timeout: float) -> None:
        self._record("release", reservation_id=reservation_id, reason=reason, idempotency_key=idempotency_key)
        if reservation_id in self.released or reservation_id not in self.reservations:
            return
        for line in self.reservations[reservation_id]["lines"]:
            if line.sku in self.available:
                self.available[line.sku] += line.quantity
        self.released.add(reservation_id)


class FakePromotionService(_FailureInjection, PromotionService):
    def __init__(self) -> None:
        super().__init__()
        self.codes: dict[str, int] = {}

    def add_code(self, code: str, discount_amount: int) -> None:
        self.codes[code.strip().upper()] = discount_amount

    def validate(
        self,
        code: str,
        user_id: str,
        cart_id: str,
        subtotal: int,
        currency: str,
        *,
        timeout: float,
    ) -> PromotionDecision:
        self._record("validate", code=code, user_id=user_id, cart_id=cart_id, subtotal=subtotal)
        normalized = code.strip().upper()
        if normalized not in self.codes:
            return PromotionDecision(code=normalized, eligible=False, reason="Unknown promotion code")
        return PromotionDecision(
            code=normalized,
            eligible=True,
            discount_amount=self.codes[normalized],
            description=f"{normalized} discount",
        )


class FakeTaxService(_FailureInjection, TaxService):
    """Flat consumption tax. ``fixed_amount`` pins the quote for scenario tests."""

    def __init__(self, rate_bps: int = 1000, jurisdiction: str = "JP") -> None:
        super().__init__()
        self.rate_bps = rate_bps
        self.jurisdiction = jurisdiction
        self.fixed_amount: int | None = None

    def quote(
        self,
        currency: str,
        destination: Address | None,
        items: list[TaxableItem],
        shipping_amount: int,
        *,
        timeout: float,
    ) -> TaxQuote:
        self._record("quote", currency=currency, items=list(items), shipping_amount=shipping_amount)
        taxable = sum(max(item.subtotal - item.discount, 0) for item in items)
        amount = self.fixed_amount if self.fixed_amount is not None else taxable * self.rate_bps // 10000
        line = TaxLine(
            name="Consumption tax",
            jurisdiction=destination.country if destination else self.jurisdiction,
            rate=self.rate_bps / 10000,
            amount=amount,
        )
        return TaxQuote(amount=amount, lines=(line,))


class FakeShippingRateService(_FailureInjection, ShippingRateService):
    def __init__(self) -> None:
        super().__init__()
        self.rates: list[ShippingRate] = [
            ShippingRate(service_level="standard", carrier="yamato", amount=600, currency="JPY", estimate_days=3),
            ShippingRate(service_level="express", carrier="sagawa", amount=1200, currency="JPY", estimate_days=1),
        ]

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
        self._record("quote", currency=currency, destination=destination, items=list(items))
        return list(self.rates)


class FakeInvoiceDispatcher(_FailureInjection, InvoiceDispatcher):
    """Deduplicates on the idempotency key like a real queue would."""

    def __init__(self) -> None:
        super().__init__()
        self.dispatched: dict[str, DispatchResult] = {}

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
    ) -> DispatchResult:
        self._record("dispatch", order_id=order_id, requested_by=requested_by, idempotency_key=idempotency_key)
        if idempotency_key in self.dispatched:
            return self.dispatched[idempotency_key]
        result = DispatchResult(dispatch_id=f"inv_{uuid4().hex[:12]}", channels=tuple(channels))
        self.dispatched[idempotency_key] = result
        return result
