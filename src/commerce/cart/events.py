"""Domain events for the Cart aggregate."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from commerce.domain import commerce


@commerce.event(part_of="Cart")
class CartCreated:
    __version__ = 1

    cart_id = Identifier(required=True)
    user_id = Identifier(required=True)
    currency = String(required=True)
    created_at = DateTime(required=True)


@commerce.event(part_of="Cart")
class CartDetailsUpdated:
    """Cart-level fields changed. ``changed_fields`` is a JSON list of the touched names."""

    __version__ = 1

    cart_id = Identifier(required=True)
    changed_fields = Text(required=True, sanitize=False)
    updated_at = DateTime(required=True)


@commerce.event(part_of="Cart")
class CartItemAdded:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    sku = String(required=True)
    quantity = Integer(required=True)
    unit_price = Integer(required=True)
    updated_at = DateTime(required=True)


@commerce.event(part_of="Cart")
class CartItemUpdated:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    quantity = Integer(required=True)
    unit_price = Integer(required=True)
    updated_at = DateTime(required=True)


@commerce.event(part_of="Cart")
class CartItemRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    updated_at = DateTime(required=True)


@commerce.event(part_of="Cart")
class CartPromotionApplied:
    __version__ = 1

    cart_id = Identifier(required=True)
    code = String(required=True)
    discount_amount = Integer(required=True)
    source = String()
    replaced_code = String()
    updated_at = DateTime(required=True)


@commerce.event(part_of="Cart")
class CartPromotionRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    code = String(required=True)
    updated_at = DateTime(required=True)
