"""Tests for the Cart aggregate: items, promotion, details and the version token."""

from datetime import timedelta

import pytest
from commerce.cart.cart import Cart, normalize_design_ref, sanitize_customization
from commerce.cart.events import (
    CartCreated,
    CartDetailsUpdated,
    CartItemAdded,
    CartItemRemoved,
    CartPromotionApplied,
)
from commerce.errors import Conflict, NotFound
from commerce.patch import CLEAR, UNSET, Set
from protean.exceptions import ValidationError


def _cart():
    cart = Cart.create(user_id="user-001")
    cart._events.clear()
    return cart


def _details(**changes):
    names = ("currency", "shipping_address_ref", "billing_address_ref", "notes", "promotion_hint")
    return {name: changes.get(name, UNSET) for name in names}


class TestCartCreation:
    def test_cart_id_is_the_user_id(self):
        cart = Cart.create(user_id="user-001")
        assert cart.id == "user-001"
        assert cart.currency == "JPY"
        assert cart.updated_at == cart.created_at
        assert isinstance(cart._events[0], CartCreated)

    def test_currency_is_normalized(self):
        assert Cart.create(user_id="user-001", currency="usd").currency == "USD"


class TestCartItems:
    def test_add_item(self):
        cart = _cart()
        item = cart.add_item(product_id="prod-1", sku="RING-S", quantity=2, unit_price=1500, design_ref="d-9")
        assert item.design_ref == "/designs/d-9"
        assert item.currency == "JPY"
        assert cart.subtotal == 3000
        assert cart.estimate.total == 3000
        assert isinstance(cart._events[-1], CartItemAdded)

    def test_same_product_lines_are_not_merged(self):
        cart = _cart()
        cart.add_item(product_id="prod-1", sku="RING-S", quantity=1, unit_price=1500)
        cart.add_item(product_id="prod-1", sku="RING-S", quantity=1, unit_price=1500)
        assert len(cart.items) == 2

    @pytest.mark.parametrize(
        "field, kwargs",
        [
            ("quantity", {"quantity": 0, "unit_price": 100}),
            ("unit_price", {"quantity": 1, "unit_price": -1}),
        ],
    )
    def test_invalid_lines_are_rejected(self, field, kwargs):
        cart = _cart()
        with pytest.raises(ValidationError) as exc:
            cart.add_item(product_id="prod-1", sku="RING-S", **kwargs)
        assert field in exc.value.messages

    def test_item_currency_must_match_cart(self):
        cart = _cart()
        with pytest.raises(ValidationError) as exc:
            cart.add_item(product_id="prod-1", sku="RING-S", quantity=1, unit_price=100, currency="USD")
        assert "currency" in exc.value.messages

    def test_update_item_changes_only_given_fields(self):
        cart = _cart()
        item = cart.add_item(product_id="prod-1", sku="RING-S", quantity=1, unit_price=1500)
        cart.update_item(item.id, quantity=3)
        assert cart.find_item(item.id).quantity == 3
        assert cart.find_item(item.id).sku == "RING-S"

    def test_update_missing_item_is_not_found(self):
        with pytest.raises(NotFound):
            _cart().update_item("missing", quantity=2)

    def test_remove_item(self):
        cart = _cart()
        item = cart.add_item(product_id="prod-1", sku="RING-S", quantity=1, unit_price=1500)
        assert cart.remove_item(item.id) is True
        assert len(cart.items) == 0
        assert isinstance(cart._events[-1], CartItemRemoved)

    def test_remove_missing_item_changes_nothing(self):
        cart = _cart()
        before = cart.updated_at
        assert cart.remove_item("missing") is False
        assert cart.updated_at == before
        assert cart._events == []


class TestCartPromotion:
    def test_apply_replaces_previous_code(self):
        cart = _cart()
        cart.add_item(product_id="prod-1", sku="RING-S", quantity=1, unit_price=1500)
        cart.apply_promotion("SPRING300", 300)
        cart.apply_promotion("SUMMER500", 500)
        assert cart.promotion.code == "SUMMER500"
        assert cart._events[-1].replaced_code == "SPRING300"
        assert isinstance(cart._events[-1], CartPromotionApplied)

    def test_discount_is_capped_at_subtotal(self):
        cart = _cart()
        cart.add_item(product_id="prod-1", sku="TAG", quantity=1, unit_price=200)
        cart.apply_promotion("BIG", 1000)
        assert cart.effective_discount == 200
        assert cart.estimate.total == 0

    def test_remove_promotion(self):
        cart = _cart()
        assert cart.remove_promotion() is False
        cart.apply_promotion("SPRING300", 300)
        assert cart.remove_promotion() is True
        assert cart.promotion is None


class TestCartDetails:
    def test_set_and_clear(self):
        cart = _cart()
        cart.update_details(_details(notes=Set("  gift wrap please "), shipping_address_ref=Set("addr-home")))
        assert cart.notes == "gift wrap please"
        assert cart.shipping_address_ref == "addr-home"

        cart.update_details(_details(notes=CLEAR))
        assert cart.notes is None
        assert cart.shipping_address_ref == "addr-home"
        assert isinstance(cart._events[-1], CartDetailsUpdated)

    def test_currency_cannot_be_cleared(self):
        with pytest.raises(ValidationError):
            _cart().update_details(_details(currency=CLEAR))

    def test_currency_cannot_change_with_priced_items(self):
        cart = _cart()
        cart.add_item(product_id="prod-1", sku="RING-S", quantity=1, unit_price=1500)
        with pytest.raises(ValidationError):
            cart.update_details(_details(currency=Set("USD")))

    def test_notes_length_is_limited(self):
        with pytest.raises(ValidationError) as exc:
            _cart().update_details(_details(notes=Set("x" * 2001)))
        assert "notes" in exc.value.messages


class TestVersionToken:
    def test_updated_at_strictly_increases(self):
        cart = _cart()
        stamps = [cart.updated_at]
        for _ in range(5):
            cart.add_item(product_id="prod-1", sku="TAG", quantity=1, unit_price=100)
            stamps.append(cart.updated_at)
        assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))

    def test_matching_version_passes(self):
        cart = _cart()
        cart.assert_version(cart.updated_at)
        cart.assert_version(None)

    def test_stale_version_conflicts(self):
        cart = _cart()
        with pytest.raises(Conflict):
            cart.assert_version(cart.updated_at - timedelta(microseconds=1))

    def test_second_precision_comparison(self):
        cart = _cart()
        cart.assert_version(cart.updated_at.replace(microsecond=0), truncate_to_second=True)


class TestCartHelpers:
    def test_design_ref_forms(self):
        assert normalize_design_ref("/designs/abc") == "/designs/abc"
        assert normalize_design_ref("designs/abc/") == "/designs/abc"
        assert normalize_design_ref("  ") is None
        with pytest.raises(ValidationError):
            normalize_design_ref("a/b")

    def test_customization_drops_blank_keys(self):
        assert sanitize_customization({" font ": "serif", "  ": "x"}) == {"font": "serif"}
        assert sanitize_customization(None) == {}
