"""Cart item management: commands and handler."""

from protean import handle
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from commerce.cart.access import check_expected_version, load_or_create_cart
from commerce.cart.cart import Cart
from commerce.domain import commerce, logger


@commerce.command(part_of="Cart")
class AddOrUpdateCartItem:
    """Create a line (no ``item_id``) or update one in place (``item_id`` given)."""

    user_id = Identifier(required=True)
    item_id = Identifier()
    product_id = Identifier()
    sku = String(max_length=64)
    quantity = Integer(min_value=1)
    unit_price = Integer(min_value=0)
    currency = String(max_length=3)
    design_ref = String(max_length=255)
    customization = Text(sanitize=False)  # JSON object
    requires_shipping = Boolean()
    weight_grams = Integer(min_value=0)
    tax_code = String(max_length=50)
    expected_updated_at = DateTime()
    if_unmodified_since = String(max_length=64)


@commerce.command(part_of="Cart")
class RemoveCartItem:
    user_id = Identifier(required=True)
    item_id = Identifier(required=True)
    expected_updated_at = DateTime()
    if_unmodified_since = String(max_length=64)


@commerce.command_handler(part_of=Cart)
class ManageCartItemsHandler:
    @handle(AddOrUpdateCartItem)
    def add_or_update_item(self, command):
        repo = current_domain.repository_for(Cart)
        cart = load_or_create_cart(command.user_id)
        check_expected_version(cart, command)

        if command.item_id:
            item = cart.update_item(
                command.item_id,
                product_id=command.product_id,
                sku=command.sku,
                quantity=command.quantity,
                unit_price=command.unit_price,
                currency=command.currency,
                design_ref=command.design_ref,
                customization=command.customization,
                requires_shipping=command.requires_shipping,
                weight_grams=command.weight_grams,
                tax_code=command.tax_code,
            )
            logger.info("Updated cart item", cart_id=str(cart.id), item_id=str(item.id), quantity=item.quantity)
        else:
            item = cart.add_item(
                product_id=command.product_id,
                sku=command.sku,
                quantity=command.quantity,
                unit_price=command.unit_price,
                currency=command.currency,
                design_ref=command.design_ref,
                customization=command.customization,
                requires_shipping=command.requires_shipping,
                weight_grams=command.weight_grams,
                tax_code=command.tax_code,
            )
            logger.info("Added cart item", cart_id=str(cart.id), item_id=str(item.id), sku=item.sku)

        repo.add(cart)
        return cart

    @handle(RemoveCartItem)
    def remove_item(self, command):
        repo = current_domain.repository_for(Cart)
        cart = load_or_create_cart(command.user_id)
        check_expected_version(cart, command)

        if cart.remove_item(command.item_id):
            repo.add(cart)
            logger.info("Removed cart item", cart_id=str(cart.id), item_id=str(command.item_id))
        else:
            logger.debug("Cart item already absent", cart_id=str(cart.id), item_id=str(command.item_id))
        return cart
