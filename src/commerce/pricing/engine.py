"""Cart pricing engine.

Turns a cart snapshot into an ``EstimateBreakdown`` in five steps: item
subtotals, promotion, shipping, tax, total. The engine never writes to the
cart; its only state is the shipping-quote cache.

Two modes share the same pipeline:

- estimate (default): a degraded tax, shipping, promotion or address
  collaborator adds a warning and a fallback value, so carts stay priceable
  during partial outages;
- strict (checkout): the same failures raise ``Unavailable``, because the
  amount is about to be charged.

Invalid input (unknown address, ineligible explicit promotion code, mixed
currencies) is an error in both modes.
"""

from dataclasses import dataclass

from protean.exceptions import ValidationError

from commerce import settings
from commerce.collaborators import (
    get_address_book,
    get_promotion_service,
    get_shipping_rate_service,
    get_tax_service,
)
from commerce.collaborators.ports import Address, ShippableItem, TaxableItem
from commerce.domain import logger
from commerce.errors import PricingInvariantError, Unavailable
from commerce.money import (
    DiscountLine,
    EstimateBreakdown,
    ItemLine,
    ShippingLine,
    TaxLine,
    allocate_by_weight,
)
from commerce.pricing.shipping_cache import ShippingQuoteCache, shipping_cache_key, shipping_quote_cache
from commerce.utils.retry import call_collaborator

WARN_SHIPPING_ADDRESS_MISSING = "shipping_address_missing"
WARN_SHIPPING_QUOTE_UNAVAILABLE = "shipping_quote_unavailable"
WARN_TAX_QUOTE_UNAVAILABLE = "tax_quote_unavailable"
WARN_PROMOTION_NOT_APPLIED = "promotion_not_applied"
WARN_PROMOTION_SERVICE_UNAVAILABLE = "promotion_service_unavailable"
WARN_ADDRESS_LOOKUP_UNAVAILABLE = "address_lookup_unavailable"


@dataclass(frozen=True)
class SnapshotItem:
    item_id: str
    product_id: str
    sku: str
    quantity: int
    unit_price: int
    currency: str
    requires_shipping: bool = True
    weight_grams: int = 0
    tax_code: str | None = None

    @property
    def subtotal(self) -> int:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class CartSnapshot:
    cart_id: str
    user_id: str
    currency: str
    items: tuple[SnapshotItem, ...] = ()
    promotion_code: str | None = None
    shipping_address_ref: str | None = None
    billing_address_ref: str | None = None

    @classmethod
    def from_cart(cls, cart) -> "CartSnapshot":
        return cls(
            cart_id=str(cart.id),
            user_id=str(cart.user_id),
            currency=cart.currency,
            items=tuple(
                SnapshotItem(
                    item_id=str(item.id),
                    product_id=str(item.product_id),
                    sku=item.sku,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    currency=item.currency or cart.currency,
                    requires_shipping=item.requires_shipping is not False,
                    weight_grams=item.weight_grams or 0,
                    tax_code=item.tax_code,
                )
                for item in cart.items or []
            ),
            promotion_code=cart.promotion.code if cart.promotion and cart.promotion.applied else None,
            shipping_address_ref=str(cart.shipping_address_ref) if cart.shipping_address_ref else None,
            billing_address_ref=str(cart.billing_address_ref) if cart.billing_address_ref else None,
        )


@dataclass(frozen=True)
class EstimateRequest:
    cart: CartSnapshot
    shipping_address: Address | None = None
    billing_address: Address | None = None
    promotion_code: str | None = None  # overrides the cart's promotion when given
    bypass_shipping_cache: bool = False


class PricingEngine:
    def __init__(
        self,
        promotions=None,
        tax=None,
        shipping=None,
        address_book=None,
        cache: ShippingQuoteCache | None = None,
        fallback_shipping_amount: int | None = None,
        fallback_tax_rate_bps: int | None = None,
    ):
        self.promotions = promotions or get_promotion_service()
        self.tax = tax or get_tax_service()
        self.shipping = shipping or get_shipping_rate_service()
        self.address_book = address_book or get_address_book()
        self.cache = cache if cache is not None else shipping_quote_cache
        self.fallback_shipping_amount = (
            settings.FALLBACK_SHIPPING_AMOUNT if fallback_shipping_amount is None else fallback_shipping_amount
        )
        self.fallback_tax_rate_bps = (
            settings.FALLBACK_TAX_RATE_BPS if fallback_tax_rate_bps is None else fallback_tax_rate_bps
        )

    # -------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------
    def estimate(self, request: EstimateRequest, strict: bool = False) -> EstimateBreakdown:
        cart = request.cart
        warnings: list[str] = []
        currency = self._single_currency(cart)

        # 1. item subtotals
        subtotals = [item.subtotal for item in cart.items]
        subtotal = sum(subtotals)

        # 2. promotion
        discount, discount_lines = self._promotion(request, subtotal, currency, strict, warnings)
        item_discounts = allocate_by_weight(discount, subtotals)
        nets = [line - disc for line, disc in zip(subtotals, item_discounts, strict=True)]
        if any(net < 0 for net in nets):
            raise PricingInvariantError("item discount exceeds item subtotal", cart_id=cart.cart_id)

        # 3. shipping
        destination = self._resolve_address(
            request.shipping_address, cart.shipping_address_ref, cart.user_id, "shipping_address_ref", strict, warnings
        )
        shipping, shipping_lines = self._shipping(
            request, destination, currency, subtotal, discount, strict, warnings
        )

        # 4. tax
        tax_destination = destination
        if tax_destination is None and (request.billing_address or cart.billing_address_ref):
            tax_destination = self._resolve_address(
                request.billing_address, cart.billing_address_ref, cart.user_id, "billing_address_ref", strict, warnings
            )
        taxable = [
            TaxableItem(
                item_id=item.item_id,
                sku=item.sku,
                quantity=item.quantity,
                subtotal=line,
                discount=disc,
                tax_code=item.tax_code,
            )
            for item, line, disc in zip(cart.items, subtotals, item_discounts, strict=True)
        ]
        tax, tax_lines = self._tax(currency, tax_destination, taxable, shipping, sum(nets), strict, warnings)

        # 5. totals
        net_subtotal = subtotal - discount
        if net_subtotal < 0:
            raise PricingInvariantError("discount exceeds subtotal", subtotal=subtotal, discount=discount)
        total = net_subtotal + tax + shipping
        if total < 0:
            raise PricingInvariantError("negative total", total=total)

        shipping_weights = [
            (item.weight_grams * item.quantity or net) if item.requires_shipping else 0
            for item, net in zip(cart.items, nets, strict=True)
        ]
        item_taxes = allocate_by_weight(tax, nets)
        item_shipping = allocate_by_weight(shipping, shipping_weights)
        items = tuple(
            ItemLine(
                item_id=item.item_id,
                subtotal=line,
                discount=disc,
                tax=item_tax,
                shipping=item_ship,
                total=line - disc + item_tax + item_ship,
            )
            for item, line, disc, item_tax, item_ship in zip(
                cart.items, subtotals, item_discounts, item_taxes, item_shipping, strict=True
            )
        )

        return EstimateBreakdown(
            currency=currency,
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            shipping=shipping,
            total=total,
            items=items,
            discounts=tuple(discount_lines),
            taxes=tuple(tax_lines),
            shipping_details=tuple(shipping_lines),
            warnings=tuple(warnings),
        )

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    @staticmethod
    def _single_currency(cart: CartSnapshot) -> str:
        currencies = {item.currency for item in cart.items if item.currency}
        if currencies - {cart.currency}:
            raise ValidationError({"currency": ["Cart items must share the cart currency"]})
        return cart.currency

    def _promotion(self, request, subtotal, currency, strict, warnings):
        explicit = request.promotion_code is not None
        raw = request.promotion_code if explicit else request.cart.promotion_code
        code = (raw or "").strip().upper()
        if not code:
            return 0, []

        try:
            decision = call_collaborator(
                "promotions",
                self.promotions.validate,
                code,
                request.cart.user_id,
                request.cart.cart_id,
                subtotal,
                currency,
            )
        except Unavailable:
            if strict:
                raise
            warnings.append(WARN_PROMOTION_SERVICE_UNAVAILABLE)
            return 0, []

        if not decision.eligible:
            if explicit:
                raise ValidationError({"promotion_code": [decision.reason or "Promotion code is not valid"]})
            if strict:
                raise ValidationError({"promotion": ["The cart's promotion is no longer valid"]})
            warnings.append(WARN_PROMOTION_NOT_APPLIED)
            return 0, []

        amount = max(decision.discount_amount, 0)
        if amount > subtotal:
            logger.info("Promotion discount capped at subtotal", code=decision.code, subtotal=subtotal, discount=amount)
            amount = subtotal
        line = DiscountLine(
            type="promotion",
            amount=amount,
            code=decision.code,
            source="promotion_service",
            description=decision.description or decision.reason,
        )
        return amount, [line]

    def _resolve_address(self, override, ref, user_id, field_name, strict, warnings):
        if override is not None:
            return override
        if not ref:
            return None
        try:
            address = call_collaborator("address_book", self.address_book.get, user_id, ref)
        except Unavailable:
            if strict:
                raise
            if WARN_ADDRESS_LOOKUP_UNAVAILABLE not in warnings:
                warnings.append(WARN_ADDRESS_LOOKUP_UNAVAILABLE)
            return None
        if address is None:
            raise ValidationError({field_name: ["Unknown address"]})
        return address

    def _fallback_shipping(self, currency):
        line = ShippingLine(
            service_level="fallback",
            carrier="flat_rate",
            amount=self.fallback_shipping_amount,
            currency=currency,
            selected=True,
        )
        return self.fallback_shipping_amount, [line]

    def _shipping(self, request, destination, currency, subtotal, discount, strict, warnings):
        cart = request.cart
        shippable = [
            ShippableItem(item_id=i.item_id, sku=i.sku, quantity=i.quantity, weight_grams=i.weight_grams)
            for i in cart.items
            if i.requires_shipping
        ]
        if not shippable:
            return 0, []

        if destination is None:
            if WARN_ADDRESS_LOOKUP_UNAVAILABLE in warnings:
                return self._fallback_shipping(currency)
            warnings.append(WARN_SHIPPING_ADDRESS_MISSING)
            return 0, []

        total_weight = sum(item.weight_grams * item.quantity for item in shippable)
        promo = cart.promotion_code if request.promotion_code is None else request.promotion_code
        key = shipping_cache_key(destination, currency, total_weight, subtotal, discount, promo, shippable)

        rates = None if request.bypass_shipping_cache else self.cache.get(key)
        if rates is None:
            try:
                rates = call_collaborator(
                    "shipping_rates",
                    self.shipping.quote,
                    currency,
                    destination,
                    shippable,
                    subtotal,
                    discount,
                )
            except Unavailable:
                if strict:
                    raise
                warnings.append(WARN_SHIPPING_QUOTE_UNAVAILABLE)
                return self._fallback_shipping(currency)
            if any(rate.amount < 0 for rate in rates):
                raise PricingInvariantError("negative shipping quote", cart_id=cart.cart_id)
            if rates:
                self.cache.put(key, rates)

        if not rates:
            if strict:
                raise Unavailable("No shipping rates available", cart_id=cart.cart_id)
            warnings.append(WARN_SHIPPING_QUOTE_UNAVAILABLE)
            return self._fallback_shipping(currency)

        chosen = min(range(len(rates)), key=lambda idx: (rates[idx].amount, idx))
        lines = [
            ShippingLine(
                service_level=rate.service_level,
                carrier=rate.carrier,
                amount=rate.amount,
                currency=rate.currency,
                estimate_days=rate.estimate_days,
                selected=idx == chosen,
            )
            for idx, rate in enumerate(rates)
        ]
        return rates[chosen].amount, lines

    def _tax(self, currency, destination, taxable, shipping, net_subtotal, strict, warnings):
        try:
            quote = call_collaborator("tax", self.tax.quote, currency, destination, taxable, shipping)
        except Unavailable:
            if strict:
                raise
            warnings.append(WARN_TAX_QUOTE_UNAVAILABLE)
            amount = net_subtotal * self.fallback_tax_rate_bps // 10000
            line = TaxLine(
                name="Estimated tax",
                jurisdiction="fallback",
                rate=self.fallback_tax_rate_bps / 10000,
                amount=amount,
            )
            return amount, [line]

        if quote.amount < 0:
            raise PricingInvariantError("negative tax quote", amount=quote.amount)
        return quote.amount, list(quote.lines)


def build_pricing_engine() -> PricingEngine:
    """Engine wired to the currently registered collaborators."""
    return PricingEngine()
