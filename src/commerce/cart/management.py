"""Cart details: tri-state partial update of cart-level fields."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.cart.access import check_expected_version, load_or_create_cart
from commerce.cart.cart import CART_DETAIL_FIELDS, Cart
from commerce.collaborators import get_address_book
from commerce.domain import commerce, logger
from commerce.patch import Set, parse_changes
from commerce.utils.retry import call_collaborator


@commerce.command(part_of="Cart")
class UpdateCart:
    """Partially update cart details.

    ``changes`` is a JSON object. Keys left out are untouched, ``null``
    clears a field and any other value sets it.
    """

    user_id = Identifier(required=True)
    changes = Text(required=True, sanitize=False)
    expected_updated_at = DateTime()
    if_unmodified_since = String(max_length=64)  # HTTP-date


def ensure_address_exists(user_id, address_ref, field_name):
    address = call_collaborator("address_book", get_address_book().get, str(user_id), str(address_ref))
    if address is None:
        raise ValidationError({field_name: ["Unknown address"]})
    return address


@commerce.command_handler(part_of=Cart)
class UpdateCartHandler:
    @handle(UpdateCart)
    def update_cart(self, command):
        changes = parse_changes(command.changes, CART_DETAIL_FIELDS)

        cart = load_or_create_cart(command.user_id)
        check_expected_version(cart, command)

        for name in ("shipping_address_ref", "billing_address_ref"):
            patch = changes[name]
            if isinstance(patch, Set) and str(patch.value).strip():
                ensure_address_exists(command.user_id, str(patch.value).strip(), name)

        cart.update_details(changes)
        current_domain.repository_for(Cart).add(cart)

        logger.info(
            "Updated cart details",
            cart_id=str(cart.id),
            fields=[name for name, patch in changes.items() if patch],
        )
        return cart
