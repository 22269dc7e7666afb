"""Order aggregate (Event Sourced) and its status state machine.

Every change to an order is a domain event; the current state is rebuilt by
replaying events through the ``@apply`` handlers below. Command methods
validate, then raise exactly the events that describe the change; they
never assign state directly.

Status pipeline:
    draft → pending_payment → paid → in_production → ready_to_ship →
    shipped → delivered → completed
    canceled (from pending_payment or paid only)

Fulfillment-driven moves may skip stages but never go backward; canceled
and completed are terminal. Lifecycle timestamps (placed, paid, shipped,
delivered, completed, canceled) are written once, by the transition that
produces them.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from protean import apply
from protean.fields import (
    Boolean,
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from commerce.domain import commerce
from commerce.errors import Conflict, InvalidState, InvoiceAlreadyRequested
from commerce.gateway.payloads import refunded_amount
from commerce.order.events import (
    InvoiceRequested,
    OrderCanceled,
    OrderPlaced,
    OrderStatusChanged,
    PaymentRecorded,
    ProductionEventRecorded,
    ShipmentEventRecorded,
)
from commerce.utils.http import sanitize_text


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    IN_PRODUCTION = "in_production"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELED = "canceled"


STATUS_PIPELINE = [
    OrderStatus.DRAFT,
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.PAID,
    OrderStatus.IN_PRODUCTION,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
]

_TERMINAL_STATES = {OrderStatus.COMPLETED, OrderStatus.CANCELED}

CANCELLABLE_STATES = {OrderStatus.PENDING_PAYMENT, OrderStatus.PAID}

INVOICEABLE_STATES = {
    OrderStatus.PAID,
    OrderStatus.IN_PRODUCTION,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
}

REORDERABLE_STATES = {OrderStatus.DELIVERED, OrderStatus.COMPLETED}

# Timestamp attribute stamped by the transition into each status
_STATUS_TIMESTAMPS = {
    OrderStatus.PENDING_PAYMENT: "placed_at",
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELED: "canceled_at",
}

INVOICE_CHANNELS = ("email", "dashboard")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    if target == OrderStatus.CANCELED:
        return current in CANCELLABLE_STATES
    if current in _TERMINAL_STATES:
        return False
    return STATUS_PIPELINE.index(target) > STATUS_PIPELINE.index(current)


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@commerce.value_object(part_of="Order")
class OrderAddress:
    """Point-in-time copy of an address, taken at checkout."""

    address_id = String(max_length=255)
    recipient = String(max_length=255)
    line1 = String(max_length=255)
    line2 = String(max_length=255)
    city = String(max_length=100)
    state = String(max_length=100)
    postal_code = String(max_length=20)
    country = String(max_length=100)
    phone = String(max_length=50)


@commerce.value_object(part_of="Order")
class OrderTotals:
    """Locked-in pricing. Line breakdowns are kept as JSON."""

    currency = String(max_length=3)
    subtotal = Integer(default=0)
    discount = Integer(default=0)
    tax = Integer(default=0)
    shipping = Integer(default=0)
    total = Integer(default=0)
    items = Text(sanitize=False)
    discounts = Text(sanitize=False)
    taxes = Text(sanitize=False)
    shipping_details = Text(sanitize=False)


@commerce.value_object(part_of="Order")
class OrderContact:
    name = String(max_length=255)
    email = String(max_length=255)
    phone = String(max_length=50)


@commerce.value_object(part_of="Order")
class FulfillmentWindow:
    requested_ship_date = String(max_length=10)  # ISO date
    estimated_ship_date = String(max_length=10)
    requested_delivery_date = String(max_length=10)
    estimated_delivery_date = String(max_length=10)


@commerce.value_object(part_of="Order")
class ProductionState:
    queue_ref = String(max_length=255)
    station_ref = String(max_length=255)
    operator_ref = String(max_length=255)
    on_hold = Boolean(default=False)
    last_event_id = String(max_length=255)
    last_event_type = String(max_length=50)
    last_event_at = DateTime()


@commerce.value_object(part_of="Order")
class OrderFlags:
    manual_review = Boolean(default=False)
    gift = Boolean(default=False)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@commerce.entity(part_of="Order")
class OrderItem:
    """Immutable snapshot of a cart line, decoupled from the live cart and design."""

    product_id = Identifier(required=True)
    sku = String(required=True, max_length=64)
    name = String(max_length=255)
    design_ref = String(max_length=255)
    customization = Text(sanitize=False)  # JSON object
    quantity = Integer(required=True, min_value=1)
    unit_price = Integer(required=True, min_value=0)
    total = Integer(default=0)

    def snapshot(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "sku": self.sku,
            "name": self.name,
            "design_ref": self.design_ref,
            "customization": json.loads(self.customization) if self.customization else {},
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total": self.total,
        }


@commerce.entity(part_of="Order")
class OrderPayment:
    provider = String(required=True, max_length=50)
    intent_id = String(max_length=255)
    status = String(required=True, max_length=50)
    amount = Integer(default=0)
    currency = String(max_length=3)
    captured = Boolean(default=False)
    captured_at = DateTime()
    refunded_at = DateTime()
    raw = Text(sanitize=False)  # JSON, provider specific

    @property
    def refunded_amount(self) -> int:
        return refunded_amount(self.raw)


@commerce.entity(part_of="Order")
class Shipment:
    carrier = String(max_length=100)
    tracking_code = String(max_length=255)
    status = String(max_length=50)
    events = Text(sanitize=False)  # JSON: [{status, occurred_at, details}]

    def event_list(self) -> list[dict]:
        return json.loads(self.events) if self.events else []


@commerce.entity(part_of="Order")
class ProductionEvent:
    event_type = String(required=True, max_length=50)
    operator_ref = String(max_length=255)
    note = Text()
    photo_url = String(max_length=1000, sanitize=False)
    created_at = DateTime()


# ---------------------------------------------------------------------------
# Aggregate Root (Event Sourced)
# ---------------------------------------------------------------------------
@commerce.aggregate(is_event_sourced=True)
class Order:
    order_number = String(max_length=50)
    user_id = Identifier(required=True)
    cart_id = Identifier()
    status = String(choices=OrderStatus, default=OrderStatus.DRAFT.value)
    currency = String(max_length=3)
    totals = ValueObject(OrderTotals)
    items = HasMany(OrderItem)
    promotion_code = String(max_length=64)
    shipping_address = ValueObject(OrderAddress)
    billing_address = ValueObject(OrderAddress)
    contact = ValueObject(OrderContact)
    fulfillment = ValueObject(FulfillmentWindow)
    production = ValueObject(ProductionState)
    flags = ValueObject(OrderFlags)
    payments = HasMany(OrderPayment)
    shipments = HasMany(Shipment)
    production_events = HasMany(ProductionEvent)
    order_metadata = Text(sanitize=False)  # JSON: reservationId, invoiceRequestedAt, reorderOf, ...
    created_by = String(max_length=255)
    updated_by = String(max_length=255)
    created_at = DateTime()
    updated_at = DateTime()
    placed_at = DateTime()
    paid_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    completed_at = DateTime()
    canceled_at = DateTime()
    cancel_reason = String(max_length=500)

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        order_number,
        user_id,
        currency,
        items,
        totals,
        status=OrderStatus.PENDING_PAYMENT,
        cart_id=None,
        promotion_code=None,
        shipping_address=None,
        billing_address=None,
        contact=None,
        fulfillment=None,
        flags=None,
        metadata=None,
        created_by=None,
    ):
        """Create an order in an entry state (``draft`` or ``pending_payment``).

        Args:
            items: list of dicts with product_id, sku, name, design_ref,
                customization, quantity, unit_price (and optionally total).
            totals: dict shaped like ``EstimateBreakdown.totals()``.
            shipping_address / billing_address / contact / fulfillment / flags:
                plain dicts matching the value objects.
        """
        if status not in (OrderStatus.DRAFT, OrderStatus.PENDING_PAYMENT):
            raise InvalidState(f"Orders cannot be created in {status.value}")

        now = datetime.now(UTC)
        items_with_ids = []
        for item in items:
            snapshot = {**item, "id": str(uuid4())}
            snapshot.setdefault("total", item["quantity"] * item["unit_price"])
            items_with_ids.append(snapshot)

        order = cls._create_new()
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                user_id=str(user_id),
                cart_id=str(cart_id) if cart_id else None,
                status=status.value,
                currency=currency,
                items=json.dumps(items_with_ids),
                totals=json.dumps(totals),
                promotion_code=promotion_code,
                shipping_address=json.dumps(shipping_address) if shipping_address else None,
                billing_address=json.dumps(billing_address) if billing_address else None,
                contact=json.dumps(contact) if contact else None,
                fulfillment=json.dumps(fulfillment) if fulfillment else None,
                flags=json.dumps(flags or {}),
                order_metadata=json.dumps(metadata or {}),
                created_by=created_by,
                created_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def get_metadata(self) -> dict:
        return json.loads(self.order_metadata) if self.order_metadata else {}

    def is_owned_by(self, actor_id) -> bool:
        return actor_id is not None and str(self.user_id) == str(actor_id)

    @property
    def reservation_id(self) -> str | None:
        return self.get_metadata().get("reservationId")

    @property
    def invoice_requested_at(self) -> str | None:
        return self.get_metadata().get("invoiceRequestedAt")

    def item_snapshots(self) -> list[dict]:
        return [item.snapshot() for item in self.items or []]

    def total_refunded(self) -> int:
        return sum(payment.refunded_amount for payment in self.payments or [])

    def production_timeline(self) -> list[dict]:
        """Production history safe to show the customer."""
        return [
            {
                "id": str(event.id),
                "type": event.event_type,
                "note": sanitize_text(event.note),
                "photo_url": event.photo_url,
                "created_at": event.created_at,
            }
            for event in self.production_events or []
        ]

    # -------------------------------------------------------------------
    # Preconditions
    # -------------------------------------------------------------------
    def assert_expected_status(self, expected_status):
        """Optimistic precondition: the caller's view of the status must be current."""
        if expected_status and expected_status != self.status:
            raise Conflict(
                "Order status has changed",
                order_id=str(self.id),
                expected=expected_status,
                actual=self.status,
            )

    def assert_status_in(self, allowed, action):
        if self.current_status not in allowed:
            raise InvalidState(
                f"Cannot {action} an order in {self.status}",
                order_id=str(self.id),
                status=self.status,
            )

    # -------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------
    def transition_to(self, target: OrderStatus, actor_id=None):
        """Forward-only move, as driven by payment and fulfillment ingestion."""
        if target == OrderStatus.CANCELED:
            raise InvalidState("Use cancel() to cancel an order", order_id=str(self.id))
        if not can_transition(self.current_status, target):
            raise InvalidState(
                f"Cannot transition from {self.status} to {target.value}",
                order_id=str(self.id),
                status=self.status,
                target=target.value,
            )
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                from_status=self.status,
                to_status=target.value,
                actor_id=str(actor_id) if actor_id else None,
                changed_at=datetime.now(UTC),
            )
        )

    def advance_if_forward(self, target: OrderStatus, actor_id=None) -> bool:
        """Transition when ``target`` is strictly later; otherwise leave the status alone."""
        if target == OrderStatus.CANCELED or not can_transition(self.current_status, target):
            return False
        self.transition_to(target, actor_id=actor_id)
        return True

    def cancel(self, actor_id, reason=None, details=None):
        self.assert_status_in(CANCELLABLE_STATES, "cancel")
        self.raise_(
            OrderCanceled(
                order_id=str(self.id),
                from_status=self.status,
                reason=reason,
                actor_id=str(actor_id),
                reservation_id=self.reservation_id,
                details=json.dumps(details) if details else None,
                canceled_at=datetime.now(UTC),
            )
        )

    def request_invoice(self, actor_id, notes=None, requested_at=None):
        self.assert_status_in(INVOICEABLE_STATES, "request an invoice for")
        if self.invoice_requested_at:
            raise InvoiceAlreadyRequested(
                "Invoice already requested",
                order_id=str(self.id),
                requested_at=self.invoice_requested_at,
            )
        self.raise_(
            InvoiceRequested(
                order_id=str(self.id),
                order_number=self.order_number,
                requested_by=str(actor_id),
                notes=notes,
                channels=json.dumps(list(INVOICE_CHANNELS)),
                requested_at=requested_at or datetime.now(UTC),
            )
        )

    # -------------------------------------------------------------------
    # Ingestion: payments, production, shipments
    # -------------------------------------------------------------------
    def record_payment(
        self,
        provider,
        status,
        amount,
        intent_id=None,
        currency=None,
        captured=False,
        raw=None,
        refunded_at=None,
    ):
        """Add or update the payment for ``intent_id``.

        A captured, succeeded payment moves a ``pending_payment`` order to
        ``paid``.
        """
        if self.current_status == OrderStatus.CANCELED:
            raise InvalidState("Cannot record payments on a canceled order", order_id=str(self.id))

        existing = next(
            (p for p in self.payments or [] if intent_id and p.intent_id == intent_id),
            None,
        )
        now = datetime.now(UTC)
        captured_at = existing.captured_at if existing and existing.captured_at else (now if captured else None)
        self.raise_(
            PaymentRecorded(
                order_id=str(self.id),
                payment_id=str(existing.id) if existing else str(uuid4()),
                provider=provider,
                intent_id=intent_id,
                status=status,
                amount=amount,
                currency=currency or self.currency,
                captured=bool(captured),
                captured_at=captured_at,
                refunded_at=refunded_at,
                raw=json.dumps(raw) if isinstance(raw, dict) else raw,
                recorded_at=now,
            )
        )
        if captured and status == "succeeded":
            self.advance_if_forward(OrderStatus.PAID)

    def record_production_event(
        self,
        event_type,
        target_status: OrderStatus | None,
        on_hold: bool,
        operator_ref=None,
        note=None,
        photo_url=None,
        station_ref=None,
        queue_ref=None,
    ):
        if self.current_status in _TERMINAL_STATES:
            raise InvalidState(
                f"Cannot record production events on a {self.status} order",
                order_id=str(self.id),
            )

        self.raise_(
            ProductionEventRecorded(
                order_id=str(self.id),
                event_id=str(uuid4()),
                event_type=event_type,
                operator_ref=operator_ref,
                note=note,
                photo_url=photo_url,
                station_ref=station_ref,
                queue_ref=queue_ref,
                on_hold=on_hold,
                created_at=datetime.now(UTC),
            )
        )
        if target_status == OrderStatus.CANCELED:
            if self.current_status in CANCELLABLE_STATES:
                self.cancel(actor_id=operator_ref or "production", reason=note or "Canceled in production")
        elif target_status is not None:
            self.advance_if_forward(target_status, actor_id=operator_ref)

    def record_shipment_event(self, status, carrier=None, tracking_code=None, shipment_id=None, details=None):
        if self.current_status == OrderStatus.CANCELED:
            raise InvalidState("Cannot ship a canceled order", order_id=str(self.id))

        shipment = next((s for s in self.shipments or [] if shipment_id and str(s.id) == str(shipment_id)), None)
        if shipment is None and tracking_code:
            shipment = next((s for s in self.shipments or [] if s.tracking_code == tracking_code), None)

        self.raise_(
            ShipmentEventRecorded(
                order_id=str(self.id),
                shipment_id=str(shipment.id) if shipment else str(shipment_id or uuid4()),
                carrier=carrier or (shipment.carrier if shipment else None),
                tracking_code=tracking_code or (shipment.tracking_code if shipment else None),
                status=status,
                details=json.dumps(details) if isinstance(details, dict) else details,
                occurred_at=datetime.now(UTC),
            )
        )

        target = {
            "in_transit": OrderStatus.SHIPPED,
            "shipped": OrderStatus.SHIPPED,
            "delivered": OrderStatus.DELIVERED,
        }.get(status)
        if target is not None:
            self.advance_if_forward(target)

    # -------------------------------------------------------------------
    # @apply methods: rebuild state during event replay
    # -------------------------------------------------------------------
    def _stamp(self, status: OrderStatus, at):
        attr = _STATUS_TIMESTAMPS.get(status)
        if attr and getattr(self, attr) is None:
            setattr(self, attr, at)

    def _merge_metadata(self, **values):
        metadata = self.get_metadata()
        metadata.update(values)
        self.order_metadata = json.dumps(metadata)

    @apply
    def _on_order_placed(self, event: OrderPlaced):
        self.id = event.order_id
        self.order_number = event.order_number
        self.user_id = event.user_id
        self.cart_id = event.cart_id
        self.status = event.status
        self.currency = event.currency
        self.promotion_code = event.promotion_code
        self.order_metadata = event.order_metadata
        self.created_by = event.created_by
        self.updated_by = event.created_by
        self.created_at = event.created_at
        self.updated_at = event.created_at
        self._stamp(OrderStatus(event.status), event.created_at)

        items_data = json.loads(event.items) if isinstance(event.items, str) else []
        self.items = [
            OrderItem(
                id=item["id"],
                product_id=item["product_id"],
                sku=item["sku"],
                name=item.get("name"),
                design_ref=item.get("design_ref"),
                customization=json.dumps(item.get("customization") or {}),
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                total=item.get("total", item["quantity"] * item["unit_price"]),
            )
            for item in items_data
        ]

        totals = json.loads(event.totals) if event.totals else {}
        self.totals = OrderTotals(
            currency=totals.get("currency", event.currency),
            subtotal=totals.get("subtotal", 0),
            discount=totals.get("discount", 0),
            tax=totals.get("tax", 0),
            shipping=totals.get("shipping", 0),
            total=totals.get("total", 0),
            items=json.dumps(totals.get("items", [])),
            discounts=json.dumps(totals.get("discounts", [])),
            taxes=json.dumps(totals.get("taxes", [])),
            shipping_details=json.dumps(totals.get("shipping_details", [])),
        )

        if event.shipping_address:
            self.shipping_address = OrderAddress(**json.loads(event.shipping_address))
        if event.billing_address:
            self.billing_address = OrderAddress(**json.loads(event.billing_address))
        if event.contact:
            self.contact = OrderContact(**json.loads(event.contact))
        if event.fulfillment:
            self.fulfillment = FulfillmentWindow(**json.loads(event.fulfillment))
        self.flags = OrderFlags(**json.loads(event.flags)) if event.flags else OrderFlags()
        self.production = ProductionState()

    @apply
    def _on_status_changed(self, event: OrderStatusChanged):
        self.status = event.to_status
        self._stamp(OrderStatus(event.to_status), event.changed_at)
        self.updated_at = event.changed_at
        if event.actor_id:
            self.updated_by = event.actor_id

    @apply
    def _on_order_canceled(self, event: OrderCanceled):
        self.status = OrderStatus.CANCELED.value
        self.cancel_reason = event.reason
        self._stamp(OrderStatus.CANCELED, event.canceled_at)
        self.updated_at = event.canceled_at
        self.updated_by = event.actor_id
        extra = json.loads(event.details) if event.details else {}
        self._merge_metadata(**{**extra, "canceledBy": event.actor_id})

    @apply
    def _on_invoice_requested(self, event: InvoiceRequested):
        self._merge_metadata(
            invoiceRequestedAt=event.requested_at.isoformat(),
            invoiceRequestedBy=event.requested_by,
            invoiceNotes=event.notes,
        )
        self.updated_at = event.requested_at
        self.updated_by = event.requested_by

    @apply
    def _on_payment_recorded(self, event: PaymentRecorded):
        existing = next((p for p in self.payments or [] if str(p.id) == str(event.payment_id)), None)
        if existing:
            existing.status = event.status
            existing.amount = event.amount
            existing.captured = event.captured
            existing.captured_at = event.captured_at
            existing.refunded_at = event.refunded_at
            existing.raw = event.raw
        else:
            self.add_payments(
                OrderPayment(
                    id=event.payment_id,
                    provider=event.provider,
                    intent_id=event.intent_id,
                    status=event.status,
                    amount=event.amount,
                    currency=event.currency,
                    captured=event.captured,
                    captured_at=event.captured_at,
                    refunded_at=event.refunded_at,
                    raw=event.raw,
                )
            )
        self.updated_at = event.recorded_at

    @apply
    def _on_production_event_recorded(self, event: ProductionEventRecorded):
        self.add_production_events(
            ProductionEvent(
                id=event.event_id,
                event_type=event.event_type,
                operator_ref=event.operator_ref,
                note=event.note,
                photo_url=event.photo_url,
                created_at=event.created_at,
            )
        )
        previous = self.production or ProductionState()
        self.production = ProductionState(
            queue_ref=event.queue_ref or previous.queue_ref,
            station_ref=event.station_ref or previous.station_ref,
            operator_ref=event.operator_ref or previous.operator_ref,
            on_hold=event.on_hold,
            last_event_id=event.event_id,
            last_event_type=event.event_type,
            last_event_at=event.created_at,
        )
        self.updated_at = event.created_at

    @apply
    def _on_shipment_event_recorded(self, event: ShipmentEventRecorded):
        entry = {
            "status": event.status,
            "occurred_at": event.occurred_at.isoformat(),
            "details": event.details,
        }
        shipment = next((s for s in self.shipments or [] if str(s.id) == str(event.shipment_id)), None)
        if shipment is None:
            self.add_shipments(
                Shipment(
                    id=event.shipment_id,
                    carrier=event.carrier,
                    tracking_code=event.tracking_code,
                    status=event.status,
                    events=json.dumps([entry]),
                )
            )
        else:
            shipment.status = event.status
            if event.carrier:
                shipment.carrier = event.carrier
            if event.tracking_code:
                shipment.tracking_code = event.tracking_code
            shipment.events = json.dumps(shipment.event_list() + [entry])
        self.updated_at = event.occurred_at
