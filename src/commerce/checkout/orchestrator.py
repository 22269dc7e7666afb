"""Checkout orchestration: cart → stock reservation → PSP session → order.

Two commands drive a checkout attempt:

1. ``CreateCheckoutSession`` re-validates and strictly re-prices the cart,
   reserves stock and opens a hosted PSP session.
2. ``ConfirmCheckout`` asks the PSP what happened. A failed payment marks
   the session failed and releases the stock; a pending or succeeded
   payment turns the priced cart into an Order.

Every side effect carries an idempotency key, and the session → order
mapping is recorded as a marker, so confirming twice yields the same order.

Handlers report a failed payment, or a cart that changed under the session,
in their result instead of raising, so the failed session and the stock
release are committed with the unit of work; the module-level facades turn
that result into ``PaymentFailed`` or ``Conflict``.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce import settings
from commerce.cart.cart import Cart
from commerce.checkout.readiness import (
    address_snapshot,
    assert_cart_ready,
    checkout_idempotency_key,
    order_item_snapshots,
    reservation_lines,
    retry_idempotency_key,
)
from commerce.checkout.session import CheckoutSession, CheckoutStatus
from commerce.collaborators import get_address_book, get_stock_reservations
from commerce.domain import commerce, logger
from commerce.errors import (
    CartNotReady,
    Conflict,
    InsufficientStock,
    NotFound,
    PaymentFailed,
    Unavailable,
)
from commerce.gateway import get_gateway
from commerce.gateway.port import PaymentStatus
from commerce.idempotency.marker import find_marker, record_marker
from commerce.order.access import load_order
from commerce.order.numbering import next_order_number
from commerce.order.order import Order, OrderStatus
from commerce.pricing.engine import CartSnapshot, EstimateRequest, build_pricing_engine
from commerce.utils.http import as_utc
from commerce.utils.retry import call_collaborator, process_with_retry

SESSION_ORDER_OPERATION = "checkout.order"

_FAILED_PAYMENT_STATUSES = {
    PaymentStatus.FAILED.value,
    PaymentStatus.REFUNDED.value,
    PaymentStatus.CANCELED.value,
}
_ORDERABLE_PAYMENT_STATUSES = {PaymentStatus.PENDING.value, PaymentStatus.SUCCEEDED.value}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    provider: str
    redirect_url: str | None
    client_secret: str | None
    expires_at: datetime | None
    duplicate: bool = False


@dataclass(frozen=True)
class CheckoutConfirmation:
    session_id: str
    order_id: str | None = None
    order_number: str | None = None
    order_status: str | None = None
    failure_reason: str | None = None
    conflict: bool = False
    duplicate: bool = False

    @property
    def failed(self) -> bool:
        return self.order_id is None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@commerce.command(part_of="CheckoutSession")
class CreateCheckoutSession:
    user_id = Identifier(required=True)
    cart_id = Identifier()
    success_url = String(max_length=2000, sanitize=False)
    cancel_url = String(max_length=2000, sanitize=False)
    psp_hint = String(max_length=50)
    checkout_metadata = Text(sanitize=False)  # JSON object, may carry idempotencyKey


@commerce.command(part_of="CheckoutSession")
class ConfirmCheckout:
    user_id = Identifier(required=True)
    session_id = String(required=True, max_length=255)
    payment_intent_id = String(max_length=255)
    order_id = Identifier()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _load_cart(user_id) -> Cart:
    try:
        return current_domain.repository_for(Cart).get(str(user_id))
    except ObjectNotFoundError as exc:
        raise CartNotReady("Cart is empty", user_id=str(user_id)) from exc


def _strict_breakdown(cart: Cart):
    return build_pricing_engine().estimate(EstimateRequest(cart=CartSnapshot.from_cart(cart)), strict=True)


def _release(reservation_id, reason, idempotency_key) -> None:
    if not reservation_id:
        return
    call_collaborator("stock", get_stock_reservations().release, reservation_id, reason, idempotency_key)


def _abandon(repo, session: CheckoutSession, reason: str) -> CheckoutConfirmation:
    """Fail a session whose cart moved on and hand its stock back.

    Returned rather than raised so the failed session and the release are
    committed; ``confirm_checkout`` turns the result into a ``Conflict``.
    """
    session.mark_failed(reason)
    _release(session.reservation_id, "cart_changed", f"release:{session.idempotency_key}")
    repo.add(session)
    logger.warning("Checkout abandoned", session_id=str(session.id), reason=reason)
    return CheckoutConfirmation(session_id=str(session.id), failure_reason=reason, conflict=True)


def _session_result(session: CheckoutSession, duplicate=False) -> CheckoutSessionResult:
    return CheckoutSessionResult(
        session_id=str(session.id),
        provider=session.provider,
        redirect_url=session.redirect_url,
        client_secret=session.client_secret,
        expires_at=session.expires_at,
        duplicate=duplicate,
    )


def _confirmation(session_id, order: Order, duplicate=False) -> CheckoutConfirmation:
    return CheckoutConfirmation(
        session_id=str(session_id),
        order_id=str(order.id),
        order_number=order.order_number,
        order_status=order.status,
        duplicate=duplicate,
    )


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------
@commerce.command_handler(part_of=CheckoutSession)
class CheckoutHandler:
    @handle(CreateCheckoutSession)
    def create_session(self, command):
        errors = {}
        if not (command.success_url or "").strip():
            errors["success_url"] = ["Success URL is required"]
        if not (command.cancel_url or "").strip():
            errors["cancel_url"] = ["Cancel URL is required"]
        metadata = json.loads(command.checkout_metadata) if command.checkout_metadata else {}
        if not isinstance(metadata, dict):
            errors["checkout_metadata"] = ["Metadata must be a JSON object"]
        if errors:
            raise ValidationError(errors)

        cart = _load_cart(command.user_id)
        if command.cart_id and str(command.cart_id) != str(cart.id):
            raise ValidationError({"cart_id": ["Cart does not belong to this user"]})
        assert_cart_ready(cart)

        breakdown = _strict_breakdown(cart)
        gateway = get_gateway()
        idempotency_key = metadata.get("idempotencyKey") or checkout_idempotency_key(
            command.psp_hint or gateway.name, cart.id, cart.updated_at, breakdown.total
        )

        # Follow the chain of earlier attempts under this key: a live session
        # is replayed, a failed one makes room for a fresh attempt.
        marker = find_marker(cart.id, f"checkout:{idempotency_key}")
        while marker is not None:
            previous = current_domain.repository_for(CheckoutSession).get(marker.result_ref)
            if previous.current_status != CheckoutStatus.FAILED:
                logger.info("Checkout session replayed", cart_id=str(cart.id), session_id=str(previous.id))
                return _session_result(previous, duplicate=True)
            idempotency_key = retry_idempotency_key(idempotency_key, previous.id)
            marker = find_marker(cart.id, f"checkout:{idempotency_key}")
        operation = f"checkout:{idempotency_key}"

        reservation = call_collaborator(
            "stock",
            get_stock_reservations().reserve,
            str(cart.user_id),
            reservation_lines(cart),
            timedelta(minutes=settings.RESERVATION_TTL_MINUTES),
            f"reserve:{idempotency_key}",
        )
        if not reservation.success:
            raise InsufficientStock(
                "Insufficient stock for checkout",
                cart_id=str(cart.id),
                shortages=list(reservation.shortages),
            )

        release_key = f"release:{idempotency_key}"
        try:
            result = call_collaborator(
                "payments",
                gateway.create_session,
                breakdown.total,
                breakdown.currency,
                str(cart.user_id),
                command.success_url,
                command.cancel_url,
                idempotency_key,
                {**metadata, "cartId": str(cart.id), "reservationId": reservation.reservation_id},
                permanent_error=PaymentFailed,
            )
        except (Unavailable, PaymentFailed):
            _release(reservation.reservation_id, "payment_session_failed", release_key)
            raise
        if not result.success:
            _release(reservation.reservation_id, "payment_session_failed", release_key)
            raise PaymentFailed(result.failure_reason or "Payment session was rejected", cart_id=str(cart.id))

        session = CheckoutSession.open(
            session_id=result.session_id,
            user_id=cart.user_id,
            cart_id=cart.id,
            provider=result.provider or gateway.name,
            amount=breakdown.total,
            currency=breakdown.currency,
            cart_updated_at=cart.updated_at,
            idempotency_key=idempotency_key,
            intent_id=result.intent_id,
            reservation_id=reservation.reservation_id,
            redirect_url=result.redirect_url,
            client_secret=result.client_secret,
            expires_at=result.expires_at,
        )
        current_domain.repository_for(CheckoutSession).add(session)
        record_marker(cart.id, operation, result_ref=str(session.id), requested_by=str(cart.user_id))

        logger.info(
            "Checkout session created",
            cart_id=str(cart.id),
            session_id=str(session.id),
            amount=breakdown.total,
            currency=breakdown.currency,
        )
        return _session_result(session)

    @handle(ConfirmCheckout)
    def confirm(self, command):
        repo = current_domain.repository_for(CheckoutSession)
        try:
            session = repo.get(command.session_id)
        except ObjectNotFoundError as exc:
            raise NotFound("Checkout session not found", session_id=command.session_id) from exc
        if not session.is_owned_by(command.user_id):
            raise NotFound("Checkout session not found", session_id=command.session_id)
        if command.payment_intent_id and session.intent_id and command.payment_intent_id != session.intent_id:
            raise ValidationError({"payment_intent_id": ["Payment intent does not match the session"]})

        marker = find_marker(session.id, SESSION_ORDER_OPERATION)
        if marker is not None:
            if command.order_id and str(command.order_id) != marker.result_ref:
                raise ValidationError({"order_id": ["Order does not match the session"]})
            logger.info("Checkout already confirmed", session_id=str(session.id), order_id=marker.result_ref)
            return _confirmation(session.id, load_order(marker.result_ref), duplicate=True)

        if session.current_status == CheckoutStatus.FAILED:
            raise PaymentFailed(session.failure_reason or "Payment failed", session_id=str(session.id))

        status = call_collaborator("payments", get_gateway().get_session_status, str(session.id), session.intent_id)

        if status.status in _FAILED_PAYMENT_STATUSES:
            reason = f"Payment {status.status}"
            session.mark_failed(reason)
            _release(session.reservation_id, "payment_failed", f"release:{session.idempotency_key}")
            repo.add(session)
            logger.warning("Checkout payment failed", session_id=str(session.id), payment_status=status.status)
            return CheckoutConfirmation(session_id=str(session.id), failure_reason=reason)

        if status.status not in _ORDERABLE_PAYMENT_STATUSES:
            raise Unavailable(
                f"Unrecognized payment status: {status.status}",
                session_id=str(session.id),
            )

        cart = _load_cart(session.user_id)
        if as_utc(cart.updated_at) != as_utc(session.cart_updated_at):
            return _abandon(repo, session, "Cart changed since checkout started")
        breakdown = _strict_breakdown(cart)
        if breakdown.total != session.amount or breakdown.currency != session.currency:
            return _abandon(repo, session, "Cart total changed since checkout started")

        address_book = get_address_book()
        shipping = call_collaborator("address_book", address_book.get, str(cart.user_id), str(cart.shipping_address_ref))
        billing = shipping
        if cart.billing_address_ref and cart.billing_address_ref != cart.shipping_address_ref:
            billing = call_collaborator(
                "address_book", address_book.get, str(cart.user_id), str(cart.billing_address_ref)
            )
        if shipping is None:
            raise CartNotReady("Shipping address no longer exists", cart_id=str(cart.id))

        order = Order.place(
            order_number=next_order_number(),
            user_id=cart.user_id,
            currency=breakdown.currency,
            items=order_item_snapshots(cart),
            totals=breakdown.totals(),
            status=OrderStatus.PENDING_PAYMENT,
            cart_id=cart.id,
            promotion_code=cart.promotion.code if cart.promotion and cart.promotion.applied else None,
            shipping_address=address_snapshot(shipping),
            billing_address=address_snapshot(billing),
            contact={"name": shipping.recipient, "phone": shipping.phone},
            metadata={
                "reservationId": session.reservation_id,
                "checkoutSessionId": str(session.id),
                "idempotencyKey": session.idempotency_key,
            },
            created_by=str(cart.user_id),
        )
        order.record_payment(
            provider=session.provider,
            status=status.status,
            amount=status.amount if status.amount is not None else session.amount,
            intent_id=status.intent_id or session.intent_id,
            currency=status.currency or session.currency,
            captured=status.status == PaymentStatus.SUCCEEDED.value,
            raw=status.raw,
        )
        session.mark_order_created(order.id)

        current_domain.repository_for(Order).add(order)
        repo.add(session)
        record_marker(session.id, SESSION_ORDER_OPERATION, result_ref=str(order.id), requested_by=str(cart.user_id))

        logger.info(
            "Checkout confirmed",
            session_id=str(session.id),
            order_id=str(order.id),
            order_number=order.order_number,
            status=order.status,
        )
        return _confirmation(session.id, order)


# ---------------------------------------------------------------------------
# Facades
# ---------------------------------------------------------------------------
def create_checkout_session(
    user_id,
    success_url,
    cancel_url,
    cart_id=None,
    psp_hint=None,
    metadata=None,
) -> CheckoutSessionResult:
    return current_domain.process(
        CreateCheckoutSession(
            user_id=str(user_id),
            cart_id=str(cart_id) if cart_id else None,
            success_url=success_url,
            cancel_url=cancel_url,
            psp_hint=psp_hint,
            checkout_metadata=json.dumps(metadata) if metadata else None,
        ),
        asynchronous=False,
    )


def confirm_checkout(user_id, session_id, payment_intent_id=None, order_id=None) -> CheckoutConfirmation:
    confirmation = process_with_retry(
        ConfirmCheckout(
            user_id=str(user_id),
            session_id=str(session_id),
            payment_intent_id=payment_intent_id,
            order_id=str(order_id) if order_id else None,
        )
    )
    if confirmation.conflict:
        raise Conflict(confirmation.failure_reason, session_id=str(session_id))
    if confirmation.failed:
        raise PaymentFailed(confirmation.failure_reason or "Payment failed", session_id=str(session_id))
    return confirmation
