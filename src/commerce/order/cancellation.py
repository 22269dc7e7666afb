"""Order cancellation: command, handler and facade.

Cancelling releases the stock reservation taken at checkout. A cancel
marker records that this command did the cancelling, so a retried request
is answered as a duplicate instead of failing on the now-terminal status.
"""

import json
from dataclasses import dataclass
from datetime import datetime

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.collaborators import get_stock_reservations
from commerce.domain import commerce, logger
from commerce.errors import InvalidState
from commerce.idempotency.marker import find_marker, record_marker
from commerce.order.access import load_order_for_actor
from commerce.order.order import Order, OrderStatus
from commerce.utils.http import sanitize_text
from commerce.utils.retry import call_collaborator, process_with_retry

CANCEL_OPERATION = "cancel"


@dataclass(frozen=True)
class CancelResult:
    order_id: str
    status: str
    canceled_at: datetime | None
    duplicate: bool = False


@commerce.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    actor_id = Identifier(required=True)
    actor_role = String(max_length=20)
    reason = String(max_length=500)
    expected_status = String(max_length=50)
    cancel_metadata = Text(sanitize=False)  # JSON object


def _release_reservation(order: Order, reason: str | None) -> None:
    reservation_id = order.reservation_id
    if not reservation_id:
        return
    call_collaborator(
        "stock",
        get_stock_reservations().release,
        reservation_id,
        reason or "order_canceled",
        f"cancel:{order.id}",
    )


@commerce.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        order = load_order_for_actor(command.order_id, command.actor_id, command.actor_role)

        if order.current_status == OrderStatus.CANCELED:
            marker = find_marker(order.id, CANCEL_OPERATION)
            if marker is None:
                raise InvalidState("Order is already canceled", order_id=str(order.id))
            _release_reservation(order, order.cancel_reason)
            logger.info("Duplicate cancel request", order_id=str(order.id))
            return CancelResult(
                order_id=str(order.id),
                status=order.status,
                canceled_at=marker.requested_at,
                duplicate=True,
            )

        order.assert_expected_status(command.expected_status)
        reason = sanitize_text(command.reason, limit=500) or None
        details = json.loads(command.cancel_metadata) if command.cancel_metadata else None
        order.cancel(actor_id=command.actor_id, reason=reason, details=details)

        _release_reservation(order, reason)
        current_domain.repository_for(Order).add(order)
        record_marker(
            order.id,
            CANCEL_OPERATION,
            result_ref=order.status,
            requested_by=str(command.actor_id),
            requested_at=order.canceled_at,
        )

        logger.info(
            "Order canceled",
            order_id=str(order.id),
            order_number=order.order_number,
            actor_id=str(command.actor_id),
        )
        return CancelResult(order_id=str(order.id), status=order.status, canceled_at=order.canceled_at)


def cancel_order(order_id, actor_id, reason=None, expected_status=None, metadata=None, actor_role=None) -> CancelResult:
    return process_with_retry(
        CancelOrder(
            order_id=str(order_id),
            actor_id=str(actor_id),
            actor_role=actor_role,
            reason=reason,
            expected_status=expected_status,
            cancel_metadata=json.dumps(metadata) if metadata else None,
        )
    )
