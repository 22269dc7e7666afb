"""Tests for Order placement, payments, production, shipments and invoices."""

import json

import pytest
from commerce.errors import InvalidState, InvoiceAlreadyRequested
from commerce.order.events import (
    InvoiceRequested,
    OrderPlaced,
    PaymentRecorded,
    ProductionEventRecorded,
    ShipmentEventRecorded,
)
from commerce.order.order import Order, OrderStatus


class TestPlaceOrder:
    def test_snapshot_is_captured(self, build_order):
        order = build_order(OrderStatus.PENDING_PAYMENT)

        assert order.order_number == "HF-1999-000042"
        assert order.status == OrderStatus.PENDING_PAYMENT.value
        assert order.totals.total == 3020
        assert order.totals.discount == 300
        assert order.shipping_address.postal_code == "150-0001"
        assert order.contact.name == "Hana Sato"
        assert order.flags.gift is True
        assert order.flags.manual_review is False
        assert order.reservation_id == "res-001"
        assert isinstance(order._events[0], OrderPlaced)

    def test_items_are_snapshots(self, build_order):
        order = build_order(OrderStatus.PENDING_PAYMENT)
        snapshots = order.item_snapshots()

        assert [item["sku"] for item in snapshots] == ["RING-S", "TAG-M"]
        assert snapshots[0]["customization"] == {"engraving": "H&S"}
        assert snapshots[1]["total"] == 1000

    def test_orders_cannot_start_mid_pipeline(self):
        with pytest.raises(InvalidState):
            Order.place(
                order_number="HF-2026-000002",
                user_id="user-001",
                currency="JPY",
                items=[],
                totals={},
                status=OrderStatus.PAID,
            )

    def test_ownership(self, build_order):
        order = build_order(OrderStatus.PAID)
        assert order.is_owned_by("user-001")
        assert not order.is_owned_by("user-002")
        assert not order.is_owned_by(None)


class TestPayments:
    def test_captured_success_marks_paid(self, build_order):
        order = build_order(OrderStatus.PENDING_PAYMENT)
        order._events.clear()

        order.record_payment(provider="fake", status="succeeded", amount=3020, intent_id="pi_1", captured=True)

        assert order.status == OrderStatus.PAID.value
        assert order.paid_at is not None
        assert order.payments[0].captured_at is not None
        assert isinstance(order._events[0], PaymentRecorded)

    def test_pending_payment_keeps_status(self, build_order):
        order = build_order(OrderStatus.PENDING_PAYMENT)
        order.record_payment(provider="fake", status="pending", amount=3020, intent_id="pi_1")
        assert order.status == OrderStatus.PENDING_PAYMENT.value

    def test_same_intent_updates_in_place(self, build_order):
        order = build_order(OrderStatus.PENDING_PAYMENT)
        order.record_payment(provider="fake", status="pending", amount=3020, intent_id="pi_1")
        order.record_payment(provider="fake", status="succeeded", amount=3020, intent_id="pi_1", captured=True)

        assert len(order.payments) == 1
        assert order.payments[0].status == "succeeded"

    def test_refunded_amount_is_read_from_raw_payload(self, build_order):
        order = build_order(OrderStatus.PAID)
        order.record_payment(
            provider="fake",
            status="refunded",
            amount=3020,
            intent_id="pi_1",
            raw={"charges": {"data": [{"amount_refunded": 0}, {"amount_refunded": 1200}]}},
        )
        assert order.payments[0].refunded_amount == 1200
        assert order.total_refunded() == 1200

    def test_canceled_orders_reject_payments(self, build_order):
        with pytest.raises(InvalidState):
            build_order(OrderStatus.CANCELED).record_payment(provider="fake", status="succeeded", amount=1)


class TestProductionEvents:
    def test_event_advances_and_tracks_state(self, build_order):
        order = build_order(OrderStatus.PAID)
        order._events.clear()

        order.record_production_event(
            event_type="engraving",
            target_status=OrderStatus.IN_PRODUCTION,
            on_hold=False,
            operator_ref="op-7",
            station_ref="laser-2",
        )

        assert order.status == OrderStatus.IN_PRODUCTION.value
        assert order.production.station_ref == "laser-2"
        assert order.production.last_event_type == "engraving"
        assert isinstance(order._events[0], ProductionEventRecorded)

    def test_hold_flag_follows_the_latest_event(self, build_order):
        order = build_order(OrderStatus.PAID)
        order.record_production_event("on_hold", OrderStatus.IN_PRODUCTION, on_hold=True)
        assert order.production.on_hold is True
        order.record_production_event("polishing", OrderStatus.IN_PRODUCTION, on_hold=False)
        assert order.production.on_hold is False
        assert len(order.production_events) == 2

    def test_stale_mapping_does_not_move_backward(self, build_order):
        order = build_order(OrderStatus.READY_TO_SHIP)
        order.record_production_event("qc", OrderStatus.IN_PRODUCTION, on_hold=False)
        assert order.status == OrderStatus.READY_TO_SHIP.value
        assert len(order.production_events) == 1

    def test_timeline_sanitizes_notes(self, build_order):
        order = build_order(OrderStatus.PAID)
        order.record_production_event("qc", OrderStatus.IN_PRODUCTION, on_hold=False, note="Scratch\x00 fixed\n" + "x" * 400)

        entry = order.production_timeline()[0]
        assert entry["type"] == "qc"
        assert "\x00" not in entry["note"]
        assert entry["note"].startswith("Scratch fixed\n")
        assert len(entry["note"]) == 256

    def test_terminal_orders_reject_production_events(self, build_order):
        with pytest.raises(InvalidState):
            build_order(OrderStatus.COMPLETED).record_production_event("qc", OrderStatus.IN_PRODUCTION, False)


class TestShipmentEvents:
    def test_in_transit_ships_the_order(self, build_order):
        order = build_order(OrderStatus.READY_TO_SHIP)
        order._events.clear()

        order.record_shipment_event(status="in_transit", carrier="yamato", tracking_code="YT-1")

        assert order.status == OrderStatus.SHIPPED.value
        assert order.shipments[0].tracking_code == "YT-1"
        assert isinstance(order._events[0], ShipmentEventRecorded)

    def test_events_append_to_the_same_shipment(self, build_order):
        order = build_order(OrderStatus.READY_TO_SHIP)
        order.record_shipment_event(status="in_transit", carrier="yamato", tracking_code="YT-1")
        order.record_shipment_event(status="delivered", tracking_code="YT-1", details={"signed_by": "H. Sato"})

        assert len(order.shipments) == 1
        history = order.shipments[0].event_list()
        assert [entry["status"] for entry in history] == ["in_transit", "delivered"]
        assert json.loads(history[1]["details"]) == {"signed_by": "H. Sato"}
        assert order.status == OrderStatus.DELIVERED.value
        assert order.delivered_at is not None


class TestInvoiceRequest:
    def test_request_records_metadata(self, build_order):
        order = build_order(OrderStatus.SHIPPED)
        order._events.clear()

        order.request_invoice(actor_id="user-001", notes="Company name: Sato K.K.")

        metadata = order.get_metadata()
        assert metadata["invoiceRequestedBy"] == "user-001"
        assert metadata["invoiceNotes"] == "Company name: Sato K.K."
        assert order.invoice_requested_at is not None
        assert json.loads(order._events[0].channels) == ["email", "dashboard"]
        assert isinstance(order._events[0], InvoiceRequested)

    def test_second_request_is_rejected(self, build_order):
        order = build_order(OrderStatus.PAID)
        order.request_invoice(actor_id="user-001")
        with pytest.raises(InvoiceAlreadyRequested):
            order.request_invoice(actor_id="user-001")

    @pytest.mark.parametrize("status", [OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELED, OrderStatus.DRAFT])
    def test_unpaid_orders_cannot_be_invoiced(self, build_order, status):
        with pytest.raises(InvalidState):
            build_order(status).request_invoice(actor_id="user-001")
