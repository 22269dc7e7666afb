"""Application tests for applying and removing cart promotions."""

import pytest
from commerce.cart.cart import Cart
from commerce.cart.items import AddOrUpdateCartItem
from commerce.cart.promotions import ApplyPromotion, RemovePromotion
from commerce.errors import Unavailable
from protean import current_domain
from protean.exceptions import ValidationError


def _process(command):
    return current_domain.process(command, asynchronous=False)


@pytest.fixture()
def cart_with_item(user_id):
    return _process(
        AddOrUpdateCartItem(user_id=user_id, product_id="prod-ring", sku="RING-S", quantity=1, unit_price=1500)
    )


class TestApplyPromotion:
    def test_valid_code_is_applied(self, user_id, cart_with_item, promotions):
        cart = _process(ApplyPromotion(user_id=user_id, code=" spring300 "))

        assert cart.promotion.code == "SPRING300"
        assert cart.promotion.applied is True
        assert cart.estimate.discount == 300
        assert current_domain.repository_for(Cart).get(user_id).promotion.code == "SPRING300"

    def test_ineligible_code_is_rejected(self, user_id, cart_with_item, promotions):
        with pytest.raises(ValidationError) as exc:
            _process(ApplyPromotion(user_id=user_id, code="NOPE"))
        assert "code" in exc.value.messages
        assert current_domain.repository_for(Cart).get(user_id).promotion is None

    def test_blank_code_is_rejected(self, user_id, cart_with_item, promotions):
        with pytest.raises(ValidationError):
            _process(ApplyPromotion(user_id=user_id, code="   "))

    def test_same_idempotency_key_validates_once(self, user_id, cart_with_item, promotions):
        first = _process(ApplyPromotion(user_id=user_id, code="SPRING300", idempotency_key="req-1"))
        second = _process(ApplyPromotion(user_id=user_id, code="SPRING300", idempotency_key="req-1"))

        assert len(promotions.calls) == 1
        assert second.updated_at == first.updated_at

    def test_service_outage_is_unavailable(self, user_id, cart_with_item, promotions):
        promotions.fail_next(times=10)
        with pytest.raises(Unavailable):
            _process(ApplyPromotion(user_id=user_id, code="SPRING300"))


class TestRemovePromotion:
    def test_remove(self, user_id, cart_with_item, promotions):
        _process(ApplyPromotion(user_id=user_id, code="SPRING300"))
        cart = _process(RemovePromotion(user_id=user_id))
        assert cart.promotion is None
        assert cart.estimate.discount == 0

    def test_remove_without_promotion_keeps_version(self, user_id, cart_with_item):
        cart = _process(RemovePromotion(user_id=user_id))
        assert cart.updated_at == cart_with_item.updated_at
