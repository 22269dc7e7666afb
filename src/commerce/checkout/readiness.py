"""Cart checks and derived values shared by both checkout steps."""

import hashlib

from commerce.cart.cart import Cart
from commerce.collaborators.ports import Address, ReservationLine
from commerce.errors import CartNotReady
from commerce.utils.http import as_utc


def assert_cart_ready(cart: Cart) -> None:
    """A cart can be checked out once it has items, a shipping address and a valid promotion."""
    if not cart.items:
        raise CartNotReady("Cart is empty", cart_id=str(cart.id))
    if not cart.shipping_address_ref:
        raise CartNotReady("Shipping address is required", cart_id=str(cart.id))
    if cart.promotion and not cart.promotion.applied:
        raise CartNotReady(
            "Promotion code is not applied",
            cart_id=str(cart.id),
            code=cart.promotion.code,
        )


def checkout_idempotency_key(provider: str, cart_id, updated_at, total: int) -> str:
    """Same cart version and total, same key: retried session requests collapse."""
    stamp = as_utc(updated_at).isoformat() if updated_at else ""
    material = f"{provider}|{cart_id}|{stamp}|{total}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def reservation_lines(cart: Cart) -> list[ReservationLine]:
    return [
        ReservationLine(product_id=str(item.product_id), sku=item.sku, quantity=item.quantity)
        for item in cart.items or []
    ]


def order_item_snapshots(cart: Cart) -> list[dict]:
    return [
        {
            "product_id": str(item.product_id),
            "sku": item.sku,
            "name": item.sku,
            "design_ref": item.design_ref,
            "customization": item.customization_data(),
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "total": item.line_subtotal,
        }
        for item in cart.items or []
    ]


def address_snapshot(address: Address | None) -> dict | None:
    if address is None:
        return None
    return {
        "address_id": address.id,
        "recipient": address.recipient,
        "line1": address.line1,
        "line2": address.line2,
        "city": address.city,
        "state": address.state,
        "postal_code": address.postal_code,
        "country": address.country,
        "phone": address.phone,
    }


def retry_idempotency_key(previous_key: str, failed_session_id) -> str:
    """Key for the next attempt after ``failed_session_id`` failed under ``previous_key``."""
    return hashlib.sha256(f"{previous_key}|{failed_session_id}".encode("utf-8")).hexdigest()
