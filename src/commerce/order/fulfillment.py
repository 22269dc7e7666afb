"""Fulfillment ingestion: status moves, production, shipment and payment events.

Input arrives already validated by the upstream integrations (workshop
terminal, carrier webhooks, PSP webhooks); these handlers only enforce the
order state machine.
"""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce, logger
from commerce.order.access import load_order
from commerce.order.order import Order, OrderStatus

PRODUCTION_STATUS_MAP = {
    "queued": OrderStatus.IN_PRODUCTION,
    "engraving": OrderStatus.IN_PRODUCTION,
    "polishing": OrderStatus.IN_PRODUCTION,
    "qc": OrderStatus.IN_PRODUCTION,
    "on_hold": OrderStatus.IN_PRODUCTION,
    "rework": OrderStatus.IN_PRODUCTION,
    "packed": OrderStatus.IN_PRODUCTION,
    "completed": OrderStatus.READY_TO_SHIP,
    "in_transit": OrderStatus.SHIPPED,
    "canceled": OrderStatus.CANCELED,
}

HOLD_EVENT_TYPES = {"on_hold", "rework"}


def _parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError({"status": [f"Unknown order status: {value}"]})


def _json_object(value) -> dict | None:
    if not value:
        return None
    return json.loads(value) if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@commerce.command(part_of="Order")
class AdvanceOrderStatus:
    order_id = Identifier(required=True)
    status = String(required=True, max_length=50)
    actor_id = String(max_length=255)


@commerce.command(part_of="Order")
class RecordProductionEvent:
    order_id = Identifier(required=True)
    event_type = String(required=True, max_length=50)
    operator_ref = String(max_length=255)
    note = Text()
    photo_url = String(max_length=1000, sanitize=False)
    station_ref = String(max_length=255)
    queue_ref = String(max_length=255)


@commerce.command(part_of="Order")
class RecordShipmentEvent:
    order_id = Identifier(required=True)
    shipment_id = Identifier()
    carrier = String(max_length=100)
    tracking_code = String(max_length=255)
    status = String(required=True, max_length=50)
    details = Text(sanitize=False)  # JSON object


@commerce.command(part_of="Order")
class RecordPayment:
    order_id = Identifier(required=True)
    provider = String(required=True, max_length=50)
    intent_id = String(max_length=255)
    status = String(required=True, max_length=50)
    amount = Integer(required=True, min_value=0)
    currency = String(max_length=3)
    captured = Boolean(default=False)
    raw = Text(sanitize=False)  # JSON, provider specific


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------
@commerce.command_handler(part_of=Order)
class OrderFulfillmentHandler:
    @handle(AdvanceOrderStatus)
    def advance_status(self, command):
        order = load_order(command.order_id)
        previous = order.status
        order.transition_to(_parse_status(command.status), actor_id=command.actor_id)
        current_domain.repository_for(Order).add(order)
        logger.info("Order status advanced", order_id=str(order.id), from_status=previous, to_status=order.status)
        return order

    @handle(RecordProductionEvent)
    def record_production_event(self, command):
        event_type = command.event_type.strip().lower()
        if event_type not in PRODUCTION_STATUS_MAP:
            raise ValidationError({"event_type": [f"Unknown production event type: {command.event_type}"]})

        order = load_order(command.order_id)
        order.record_production_event(
            event_type=event_type,
            target_status=PRODUCTION_STATUS_MAP[event_type],
            on_hold=event_type in HOLD_EVENT_TYPES,
            operator_ref=command.operator_ref,
            note=command.note,
            photo_url=command.photo_url,
            station_ref=command.station_ref,
            queue_ref=command.queue_ref,
        )
        current_domain.repository_for(Order).add(order)
        logger.info(
            "Production event recorded",
            order_id=str(order.id),
            event_type=event_type,
            status=order.status,
        )
        return order

    @handle(RecordShipmentEvent)
    def record_shipment_event(self, command):
        order = load_order(command.order_id)
        order.record_shipment_event(
            status=command.status.strip().lower(),
            carrier=command.carrier,
            tracking_code=command.tracking_code,
            shipment_id=command.shipment_id,
            details=_json_object(command.details),
        )
        current_domain.repository_for(Order).add(order)
        logger.info(
            "Shipment event recorded",
            order_id=str(order.id),
            tracking_code=command.tracking_code,
            shipment_status=command.status,
            status=order.status,
        )
        return order

    @handle(RecordPayment)
    def record_payment(self, command):
        order = load_order(command.order_id)
        order.record_payment(
            provider=command.provider,
            status=command.status,
            amount=command.amount,
            intent_id=command.intent_id,
            currency=command.currency,
            captured=command.captured,
            raw=_json_object(command.raw),
        )
        current_domain.repository_for(Order).add(order)
        logger.info(
            "Payment recorded",
            order_id=str(order.id),
            intent_id=command.intent_id,
            payment_status=command.status,
            status=order.status,
        )
        return order
