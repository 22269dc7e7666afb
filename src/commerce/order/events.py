"""Domain events for the Order aggregate.

Orders are event sourced: these events are the persisted history and the
aggregate is rebuilt from them through its ``@apply`` handlers. Nested
structures travel as JSON text.
"""

from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from commerce.domain import commerce


@commerce.event(part_of="Order")
class OrderPlaced:
    """A new order exists, either from checkout or cloned for a reorder."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    user_id = Identifier(required=True)
    cart_id = Identifier()
    status = String(required=True)
    currency = String(required=True)
    items = Text(required=True, sanitize=False)  # JSON: list of item snapshots (ids included)
    totals = Text(required=True, sanitize=False)  # JSON: breakdown without warnings
    promotion_code = String()
    shipping_address = Text(sanitize=False)  # JSON
    billing_address = Text(sanitize=False)  # JSON
    contact = Text(sanitize=False)  # JSON
    fulfillment = Text(sanitize=False)  # JSON
    flags = Text(sanitize=False)  # JSON
    order_metadata = Text(sanitize=False)  # JSON
    created_by = String()
    created_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    actor_id = String()
    changed_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderCanceled:
    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    reason = String()
    actor_id = String(required=True)
    reservation_id = String()
    details = Text(sanitize=False)  # JSON, caller supplied
    canceled_at = DateTime(required=True)


@commerce.event(part_of="Order")
class InvoiceRequested:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    requested_by = String(required=True)
    notes = Text()
    channels = Text(required=True, sanitize=False)  # JSON list
    requested_at = DateTime(required=True)


@commerce.event(part_of="Order")
class PaymentRecorded:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    provider = String(required=True)
    intent_id = String()
    status = String(required=True)
    amount = Integer(required=True)
    currency = String(required=True)
    captured = Boolean(default=False)
    captured_at = DateTime()
    refunded_at = DateTime()
    raw = Text(sanitize=False)  # JSON, provider specific
    recorded_at = DateTime(required=True)


@commerce.event(part_of="Order")
class ProductionEventRecorded:
    __version__ = 1

    order_id = Identifier(required=True)
    event_id = Identifier(required=True)
    event_type = String(required=True)
    operator_ref = String()
    note = Text()
    photo_url = String(sanitize=False)
    station_ref = String()
    queue_ref = String()
    on_hold = Boolean(default=False)
    created_at = DateTime(required=True)


@commerce.event(part_of="Order")
class ShipmentEventRecorded:
    __version__ = 1

    order_id = Identifier(required=True)
    shipment_id = Identifier(required=True)
    carrier = String()
    tracking_code = String()
    status = String(required=True)
    details = Text(sanitize=False)
    occurred_at = DateTime(required=True)
