"""Cart access: lazy creation and the shared load/version helpers."""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.cart.cart import Cart
from commerce.domain import commerce, logger
from commerce.utils.http import parse_http_date


def load_or_create_cart(user_id, currency=None) -> Cart:
    """Fetch the user's cart, creating (and persisting) an empty one if absent."""
    repo = current_domain.repository_for(Cart)
    try:
        return repo.get(str(user_id))
    except ObjectNotFoundError:
        cart = Cart.create(user_id=user_id, currency=currency)
        repo.add(cart)
        logger.info("Created cart", cart_id=str(cart.id), currency=cart.currency)
        return cart


def check_expected_version(cart: Cart, command) -> None:
    """Compare-and-swap precondition shared by every mutating cart command.

    ``expected_updated_at`` is compared exactly; an ``If-Unmodified-Since``
    HTTP date at one-second precision.
    """
    header = getattr(command, "if_unmodified_since", None)
    if header:
        cart.assert_version(parse_http_date(header), truncate_to_second=True)
    cart.assert_version(getattr(command, "expected_updated_at", None))


@commerce.command(part_of="Cart")
class GetOrCreateCart:
    user_id = Identifier(required=True)
    currency = String(max_length=3)


@commerce.command_handler(part_of=Cart)
class CartAccessHandler:
    @handle(GetOrCreateCart)
    def get_or_create(self, command):
        return load_or_create_cart(command.user_id, currency=command.currency)
