"""Domain events for the CheckoutSession aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from commerce.domain import commerce


@commerce.event(part_of="CheckoutSession")
class CheckoutSessionOpened:
    __version__ = 1

    session_id = Identifier(required=True)
    user_id = Identifier(required=True)
    cart_id = Identifier(required=True)
    provider = String(required=True)
    reservation_id = String()
    amount = Integer(required=True)
    currency = String(required=True)
    opened_at = DateTime(required=True)


@commerce.event(part_of="CheckoutSession")
class CheckoutSessionFailed:
    __version__ = 1

    session_id = Identifier(required=True)
    user_id = Identifier(required=True)
    reason = String()
    failed_at = DateTime(required=True)


@commerce.event(part_of="CheckoutSession")
class CheckoutCompleted:
    __version__ = 1

    session_id = Identifier(required=True)
    user_id = Identifier(required=True)
    order_id = Identifier(required=True)
    completed_at = DateTime(required=True)
