"""Cart estimate query: price the caller's cart without touching it."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from commerce import settings
from commerce.cart.cart import Cart
from commerce.collaborators.ports import Address
from commerce.domain import logger
from commerce.money import EstimateBreakdown
from commerce.pricing.engine import CartSnapshot, EstimateRequest, build_pricing_engine


def snapshot_for_user(user_id) -> CartSnapshot:
    """Snapshot of the user's cart; an empty snapshot if none was created yet."""
    try:
        cart = current_domain.repository_for(Cart).get(str(user_id))
    except ObjectNotFoundError:
        return CartSnapshot(cart_id=str(user_id), user_id=str(user_id), currency=settings.DEFAULT_CURRENCY)
    return CartSnapshot.from_cart(cart)


def estimate_cart(
    user_id,
    shipping_address: Address | None = None,
    billing_address: Address | None = None,
    promotion_code: str | None = None,
    bypass_shipping_cache: bool = False,
) -> EstimateBreakdown:
    request = EstimateRequest(
        cart=snapshot_for_user(user_id),
        shipping_address=shipping_address,
        billing_address=billing_address,
        promotion_code=promotion_code,
        bypass_shipping_cache=bypass_shipping_cache,
    )
    breakdown = build_pricing_engine().estimate(request)
    if breakdown.warnings:
        logger.info("Cart estimate degraded", cart_id=request.cart.cart_id, warnings=list(breakdown.warnings))
    return breakdown
