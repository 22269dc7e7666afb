"""Reorder: clone a delivered order into a new draft."""

import json

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce, logger
from commerce.order.access import load_order_for_actor
from commerce.order.numbering import next_order_number
from commerce.order.order import REORDERABLE_STATES, Order, OrderStatus


@commerce.command(part_of="Order")
class CloneOrderForReorder:
    order_id = Identifier(required=True)
    actor_id = Identifier(required=True)
    actor_role = String(max_length=20)
    reorder_metadata = Text(sanitize=False)  # JSON object


def _value_dict(value_object) -> dict | None:
    return value_object.to_dict() if value_object else None


def _reorder_totals(source: Order, items: list[dict]) -> dict:
    # Prices are carried over from the snapshot; tax, shipping and discounts
    # are recomputed when the draft is checked out.
    subtotal = sum(item["total"] for item in items)
    return {
        "currency": source.currency,
        "subtotal": subtotal,
        "discount": 0,
        "tax": 0,
        "shipping": 0,
        "total": subtotal,
    }


@commerce.command_handler(part_of=Order)
class ReorderHandler:
    @handle(CloneOrderForReorder)
    def clone_order(self, command):
        source = load_order_for_actor(command.order_id, command.actor_id, command.actor_role)
        source.assert_status_in(REORDERABLE_STATES, "reorder")

        items = source.item_snapshots()
        metadata = json.loads(command.reorder_metadata) if command.reorder_metadata else {}
        metadata.update(
            reorderOf=str(source.id),
            reorderSourceOrderNumber=source.order_number,
        )
        flags = _value_dict(source.flags) or {}

        clone = Order.place(
            order_number=next_order_number(),
            user_id=source.user_id,
            currency=source.currency,
            items=items,
            totals=_reorder_totals(source, items),
            status=OrderStatus.DRAFT,
            shipping_address=_value_dict(source.shipping_address),
            billing_address=_value_dict(source.billing_address),
            contact=_value_dict(source.contact),
            flags=flags,
            metadata=metadata,
            created_by=str(command.actor_id),
        )
        current_domain.repository_for(Order).add(clone)

        logger.info(
            "Order cloned for reorder",
            source_order_id=str(source.id),
            order_id=str(clone.id),
            order_number=clone.order_number,
        )
        return clone


def clone_order_for_reorder(order_id, actor_id, metadata=None, actor_role=None) -> Order:
    return current_domain.process(
        CloneOrderForReorder(
            order_id=str(order_id),
            actor_id=str(actor_id),
            actor_role=actor_role,
            reorder_metadata=json.dumps(metadata) if metadata else None,
        ),
        asynchronous=False,
    )
