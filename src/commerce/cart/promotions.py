"""Cart promotions: apply (validated, idempotent) and remove."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.cart.access import load_or_create_cart
from commerce.cart.cart import Cart
from commerce.collaborators import get_promotion_service
from commerce.domain import commerce, logger
from commerce.idempotency.marker import find_marker, record_marker
from commerce.utils.retry import call_collaborator


def normalize_promotion_code(code) -> str:
    normalized = (code or "").strip().upper()
    if not normalized:
        raise ValidationError({"code": ["Promotion code is required"]})
    return normalized


@commerce.command(part_of="Cart")
class ApplyPromotion:
    user_id = Identifier(required=True)
    code = String(required=True, max_length=64)
    source = String(max_length=50)
    idempotency_key = String(max_length=255)


@commerce.command(part_of="Cart")
class RemovePromotion:
    user_id = Identifier(required=True)


@commerce.command_handler(part_of=Cart)
class CartPromotionHandler:
    @handle(ApplyPromotion)
    def apply_promotion(self, command):
        code = normalize_promotion_code(command.code)
        cart = load_or_create_cart(command.user_id)

        operation = f"promotion:{command.idempotency_key}" if command.idempotency_key else None
        if operation:
            marker = find_marker(cart.id, operation)
            if marker is not None:
                logger.info(
                    "Promotion already applied for idempotency key",
                    cart_id=str(cart.id),
                    code=marker.result_ref,
                )
                return cart

        decision = call_collaborator(
            "promotions",
            get_promotion_service().validate,
            code,
            str(cart.user_id),
            str(cart.id),
            cart.subtotal,
            cart.currency,
        )
        if not decision.eligible:
            raise ValidationError({"code": [decision.reason or "Promotion code is not valid for this cart"]})

        cart.apply_promotion(
            code=decision.code,
            discount_amount=decision.discount_amount,
            source=command.source or "promotion_service",
            description=decision.description,
        )
        current_domain.repository_for(Cart).add(cart)
        if operation:
            record_marker(cart.id, operation, result_ref=decision.code, requested_by=str(cart.user_id))

        logger.info(
            "Applied promotion",
            cart_id=str(cart.id),
            code=decision.code,
            discount_amount=decision.discount_amount,
        )
        return cart

    @handle(RemovePromotion)
    def remove_promotion(self, command):
        cart = load_or_create_cart(command.user_id)
        if cart.remove_promotion():
            current_domain.repository_for(Cart).add(cart)
            logger.info("Removed promotion", cart_id=str(cart.id))
        return cart
