"""Collaborator registry.

Provides get_*/set_* accessors for every collaborator port so handlers stay
decoupled from concrete adapters. Fakes are installed lazily by default;
production wiring calls the setters once at startup.
"""

from commerce.collaborators.fakes import (
    FakeAddressBook,
    FakeInvoiceDispatcher,
    FakePromotionService,
    FakeShippingRateService,
    FakeStockReservations,
    FakeTaxService,
)
from commerce.collaborators.ports import (
    AddressBook,
    InvoiceDispatcher,
    PromotionService,
    ShippingRateService,
    StockReservations,
    TaxService,
)

_DEFAULTS = {
    "address_book": FakeAddressBook,
    "stock": FakeStockReservations,
    "promotions": FakePromotionService,
    "tax": FakeTaxService,
    "shipping": FakeShippingRateService,
    "invoices": FakeInvoiceDispatcher,
}

_current: dict[str, object] = {}


def _get(name: str):
    if name not in _current:
        _current[name] = _DEFAULTS[name]()
    return _current[name]


def get_address_book() -> AddressBook:
    return _get("address_book")


def get_stock_reservations() -> StockReservations:
    return _get("stock")


def get_promotion_service() -> PromotionService:
    return _get("promotions")


def get_tax_service() -> TaxService:
    return _get("tax")


def get_shipping_rate_service() -> ShippingRateService:
    return _get("shipping")


def get_invoice_dispatcher() -> InvoiceDispatcher:
    return _get("invoices")


def set_collaborator(name: str, adapter) -> None:
    """Override one collaborator (``address_book``, ``stock``, ``promotions``, ``tax``, ``shipping``, ``invoices``)."""
    if name not in _DEFAULTS:
        raise ValueError(f"Unknown collaborator: {name}")
    _current[name] = adapter


def reset_collaborators() -> None:
    """Drop all overrides and cached fakes."""
    _current.clear()
