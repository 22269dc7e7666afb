"""Tests for the pricing engine: totals, allocation, degradation and strict mode."""

import pytest
from commerce.collaborators.fakes import (
    FakeAddressBook,
    FakePromotionService,
    FakeShippingRateService,
    FakeTaxService,
)
from commerce.collaborators.ports import Address
from commerce.errors import Unavailable
from commerce.pricing.engine import (
    WARN_PROMOTION_NOT_APPLIED,
    WARN_PROMOTION_SERVICE_UNAVAILABLE,
    WARN_SHIPPING_ADDRESS_MISSING,
    WARN_SHIPPING_QUOTE_UNAVAILABLE,
    WARN_TAX_QUOTE_UNAVAILABLE,
    CartSnapshot,
    EstimateRequest,
    PricingEngine,
    SnapshotItem,
)
from commerce.pricing.shipping_cache import ShippingQuoteCache
from protean.exceptions import ValidationError

HOME = Address(id="addr-home", country="JP", postal_code="150-0001", state="Tokyo")


def _snapshot(promotion_code="SPRING300", shipping_address_ref="addr-home", items=None, currency="JPY"):
    return CartSnapshot(
        cart_id="user-001",
        user_id="user-001",
        currency=currency,
        items=items
        or (
            SnapshotItem("i-1", "prod-ring", "RING-S", 1, 1500, "JPY", weight_grams=40),
            SnapshotItem("i-2", "prod-tag", "TAG-M", 2, 500, "JPY", weight_grams=20),
        ),
        promotion_code=promotion_code,
        shipping_address_ref=shipping_address_ref,
    )


@pytest.fixture()
def fakes():
    book = FakeAddressBook()
    book.add("user-001", HOME)
    promotions = FakePromotionService()
    promotions.add_code("SPRING300", 300)
    return {
        "address_book": book,
        "promotions": promotions,
        "tax": FakeTaxService(),
        "shipping": FakeShippingRateService(),
    }


@pytest.fixture()
def engine(fakes):
    return PricingEngine(
        promotions=fakes["promotions"],
        tax=fakes["tax"],
        shipping=fakes["shipping"],
        address_book=fakes["address_book"],
        cache=ShippingQuoteCache(ttl_seconds=300),
    )


class TestEstimateTotals:
    def test_priced_cart(self, engine):
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))

        assert (breakdown.subtotal, breakdown.discount, breakdown.tax, breakdown.shipping) == (2500, 300, 220, 600)
        assert breakdown.total == 3020
        assert breakdown.warnings == ()
        assert breakdown.discounts[0].code == "SPRING300"

    def test_item_lines_add_up_to_totals(self, engine):
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))

        assert sum(line.discount for line in breakdown.items) == breakdown.discount
        assert sum(line.tax for line in breakdown.items) == breakdown.tax
        assert sum(line.shipping for line in breakdown.items) == breakdown.shipping
        assert sum(line.total for line in breakdown.items) == breakdown.total

    def test_cheapest_rate_is_selected(self, engine):
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))
        selected = [line for line in breakdown.shipping_details if line.selected]
        assert [line.service_level for line in selected] == ["standard"]
        assert len(breakdown.shipping_details) == 2

    def test_same_input_same_breakdown(self, engine):
        request = EstimateRequest(cart=_snapshot())
        assert engine.estimate(request).to_dict() == engine.estimate(request).to_dict()

    def test_empty_cart_is_zero(self, engine):
        cart = CartSnapshot(cart_id="user-001", user_id="user-001", currency="JPY")
        breakdown = engine.estimate(EstimateRequest(cart=cart))
        assert breakdown.total == 0

    def test_address_override_skips_lookup(self, engine, fakes):
        engine.estimate(EstimateRequest(cart=_snapshot(shipping_address_ref=None), shipping_address=HOME))
        assert fakes["address_book"].calls == []


class TestEstimateInputErrors:
    def test_mixed_currencies(self, engine):
        items = (
            SnapshotItem("i-1", "prod-ring", "RING-S", 1, 1500, "JPY"),
            SnapshotItem("i-2", "prod-tag", "TAG-M", 1, 500, "USD"),
        )
        with pytest.raises(ValidationError) as exc:
            engine.estimate(EstimateRequest(cart=_snapshot(items=items)))
        assert "currency" in exc.value.messages

    def test_explicit_ineligible_code(self, engine):
        with pytest.raises(ValidationError) as exc:
            engine.estimate(EstimateRequest(cart=_snapshot(), promotion_code="NOPE"))
        assert "promotion_code" in exc.value.messages

    def test_unknown_address_reference(self, engine):
        with pytest.raises(ValidationError) as exc:
            engine.estimate(EstimateRequest(cart=_snapshot(shipping_address_ref="addr-unknown")))
        assert "shipping_address_ref" in exc.value.messages


class TestDegradedEstimates:
    def test_missing_address_warns(self, engine):
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot(shipping_address_ref=None)))
        assert WARN_SHIPPING_ADDRESS_MISSING in breakdown.warnings
        assert breakdown.shipping == 0

    def test_stale_stored_promotion_warns(self, engine):
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot(promotion_code="EXPIRED")))
        assert WARN_PROMOTION_NOT_APPLIED in breakdown.warnings
        assert breakdown.discount == 0

    def test_tax_outage_uses_fallback_rate(self, engine, fakes):
        fakes["tax"].fail_next(times=10)
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))
        assert WARN_TAX_QUOTE_UNAVAILABLE in breakdown.warnings
        assert breakdown.tax == 220
        assert breakdown.taxes[0].jurisdiction == "fallback"

    def test_shipping_outage_uses_flat_rate(self, engine, fakes):
        fakes["shipping"].fail_next(times=10)
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))
        assert WARN_SHIPPING_QUOTE_UNAVAILABLE in breakdown.warnings
        assert breakdown.shipping == 800
        assert breakdown.total == 2500 - 300 + 220 + 800

    def test_rejected_tax_quote_uses_fallback_rate(self, engine, fakes):
        fakes["tax"].fail_next(times=1, transient=False)
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))
        assert WARN_TAX_QUOTE_UNAVAILABLE in breakdown.warnings
        assert breakdown.tax == 220
        assert len(fakes["tax"].calls) == 1

    def test_rejected_shipping_quote_uses_flat_rate(self, engine, fakes):
        fakes["shipping"].fail_next(times=1, transient=False)
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))
        assert WARN_SHIPPING_QUOTE_UNAVAILABLE in breakdown.warnings
        assert breakdown.shipping == 800

    def test_rejected_promotion_check_warns(self, engine, fakes):
        fakes["promotions"].fail_next(times=1, transient=False)
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))
        assert WARN_PROMOTION_SERVICE_UNAVAILABLE in breakdown.warnings
        assert breakdown.discount == 0

    def test_single_transient_failure_is_retried(self, engine, fakes):
        fakes["tax"].fail_next(times=1)
        breakdown = engine.estimate(EstimateRequest(cart=_snapshot()))
        assert breakdown.warnings == ()
        assert len(fakes["tax"].calls) == 2


class TestStrictEstimates:
    def test_tax_outage_raises(self, engine, fakes):
        fakes["tax"].fail_next(times=10)
        with pytest.raises(Unavailable):
            engine.estimate(EstimateRequest(cart=_snapshot()), strict=True)

    def test_shipping_outage_raises(self, engine, fakes):
        fakes["shipping"].fail_next(times=10)
        with pytest.raises(Unavailable):
            engine.estimate(EstimateRequest(cart=_snapshot()), strict=True)

    def test_rejected_tax_quote_raises(self, engine, fakes):
        fakes["tax"].fail_next(times=1, transient=False)
        with pytest.raises(Unavailable) as exc:
            engine.estimate(EstimateRequest(cart=_snapshot()), strict=True)
        assert exc.value.context["permanent"] is True

    def test_stale_stored_promotion_is_invalid(self, engine):
        with pytest.raises(ValidationError):
            engine.estimate(EstimateRequest(cart=_snapshot(promotion_code="EXPIRED")), strict=True)


class TestShippingQuoteCache:
    def test_second_estimate_uses_cached_rates(self, engine, fakes):
        engine.estimate(EstimateRequest(cart=_snapshot()))
        engine.estimate(EstimateRequest(cart=_snapshot()))
        assert len(fakes["shipping"].calls) == 1

    def test_bypass_refetches(self, engine, fakes):
        engine.estimate(EstimateRequest(cart=_snapshot()))
        engine.estimate(EstimateRequest(cart=_snapshot(), bypass_shipping_cache=True))
        assert len(fakes["shipping"].calls) == 2

    def test_entries_expire(self):
        now = [1000.0]
        cache = ShippingQuoteCache(ttl_seconds=300, clock=lambda: now[0])
        cache.put("key", [])
        assert cache.get("key") == ()
        now[0] += 301
        assert cache.get("key") is None
        assert len(cache) == 0

    def test_storing_drops_expired_entries(self):
        now = [1000.0]
        cache = ShippingQuoteCache(ttl_seconds=300, clock=lambda: now[0])
        for n in range(5):
            cache.put(f"postal-{n}", [])
        now[0] += 301
        cache.put("fresh", [])
        assert len(cache) == 1

    def test_oldest_entries_are_evicted_past_the_cap(self):
        cache = ShippingQuoteCache(ttl_seconds=300, max_entries=2)
        cache.put("first", [])
        cache.put("second", [])
        cache.put("third", [])
        assert len(cache) == 2
        assert cache.get("first") is None
        assert cache.get("third") == ()
