"""Invoice requests: at most one dispatch per order.

The invoice marker is consulted before anything is sent. A request that
loses a race to a concurrent one finds out from the write path
(``InvoiceAlreadyRequested`` or an event store version conflict) and is
answered with the winner's outcome.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from protean import handle
from protean.exceptions import ExpectedVersionError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce import settings
from commerce.collaborators import get_invoice_dispatcher
from commerce.domain import commerce, logger
from commerce.errors import InvoiceAlreadyRequested
from commerce.idempotency.marker import find_marker, record_marker
from commerce.order.access import load_order_for_actor
from commerce.order.order import INVOICE_CHANNELS, Order
from commerce.utils.http import sanitize_text
from commerce.utils.retry import call_collaborator, process_with_retry

INVOICE_OPERATION = "invoice"


@dataclass(frozen=True)
class InvoiceRequestResult:
    order_id: str
    requested_at: datetime
    dispatch_id: str | None = None
    duplicate: bool = False


@commerce.command(part_of="Order")
class RequestInvoice:
    order_id = Identifier(required=True)
    actor_id = Identifier(required=True)
    actor_role = String(max_length=20)
    notes = Text()
    expected_status = String(max_length=50)


def _duplicate_from_marker(order_id, marker) -> InvoiceRequestResult:
    return InvoiceRequestResult(
        order_id=str(order_id),
        requested_at=marker.requested_at,
        dispatch_id=marker.result_ref,
        duplicate=True,
    )


@commerce.command_handler(part_of=Order)
class RequestInvoiceHandler:
    @handle(RequestInvoice)
    def request_invoice(self, command):
        order = load_order_for_actor(command.order_id, command.actor_id, command.actor_role)

        marker = find_marker(order.id, INVOICE_OPERATION)
        if marker is not None:
            logger.info("Duplicate invoice request", order_id=str(order.id))
            return _duplicate_from_marker(order.id, marker)

        order.assert_expected_status(command.expected_status)
        notes = sanitize_text(command.notes, limit=settings.NOTES_MAX_LENGTH) or None
        requested_at = datetime.now(UTC)
        order.request_invoice(actor_id=command.actor_id, notes=notes, requested_at=requested_at)

        dispatch = call_collaborator(
            "invoices",
            get_invoice_dispatcher().dispatch,
            str(order.id),
            order.order_number,
            str(command.actor_id),
            notes,
            INVOICE_CHANNELS,
            f"invoice:{order.id}",
        )
        current_domain.repository_for(Order).add(order)
        record_marker(
            order.id,
            INVOICE_OPERATION,
            result_ref=dispatch.dispatch_id,
            requested_by=str(command.actor_id),
            requested_at=requested_at,
        )

        logger.info(
            "Invoice requested",
            order_id=str(order.id),
            order_number=order.order_number,
            dispatch_id=dispatch.dispatch_id,
        )
        return InvoiceRequestResult(
            order_id=str(order.id),
            requested_at=requested_at,
            dispatch_id=dispatch.dispatch_id,
        )


def request_invoice(order_id, actor_id, notes=None, expected_status=None, actor_role=None) -> InvoiceRequestResult:
    command = RequestInvoice(
        order_id=str(order_id),
        actor_id=str(actor_id),
        actor_role=actor_role,
        notes=notes,
        expected_status=expected_status,
    )
    try:
        return process_with_retry(command)
    except (InvoiceAlreadyRequested, ExpectedVersionError) as exc:
        marker = find_marker(order_id, INVOICE_OPERATION)
        if marker is None:
            raise
        logger.info("Invoice request lost the race", order_id=str(order_id), error=type(exc).__name__)
        return _duplicate_from_marker(order_id, marker)
