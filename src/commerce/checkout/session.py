"""CheckoutSession aggregate: one hosted-payment attempt for a cart.

Status flow:
    initiated → session_created → confirmed → order_created
    failed (from any non-final state)

The session id is the PSP's session id. ``cart_updated_at`` pins the cart
version that was priced, so confirmation can tell whether the cart changed
while the customer was paying.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String

from commerce.checkout.events import CheckoutCompleted, CheckoutSessionFailed, CheckoutSessionOpened
from commerce.domain import commerce
from commerce.errors import InvalidState


class CheckoutStatus(Enum):
    INITIATED = "initiated"
    SESSION_CREATED = "session_created"
    CONFIRMED = "confirmed"
    ORDER_CREATED = "order_created"
    FAILED = "failed"


_TRANSITIONS = {
    CheckoutStatus.INITIATED: {CheckoutStatus.SESSION_CREATED, CheckoutStatus.FAILED},
    CheckoutStatus.SESSION_CREATED: {CheckoutStatus.CONFIRMED, CheckoutStatus.FAILED},
    CheckoutStatus.CONFIRMED: {CheckoutStatus.ORDER_CREATED, CheckoutStatus.FAILED},
    CheckoutStatus.ORDER_CREATED: set(),
    CheckoutStatus.FAILED: set(),
}


@commerce.aggregate
class CheckoutSession:
    user_id = Identifier(required=True)
    cart_id = Identifier(required=True)
    status = String(choices=CheckoutStatus, default=CheckoutStatus.INITIATED.value)
    provider = String(max_length=50)
    intent_id = String(max_length=255)
    reservation_id = String(max_length=255)
    idempotency_key = String(max_length=255)
    amount = Integer(min_value=0)
    currency = String(max_length=3)
    cart_updated_at = DateTime()
    order_id = Identifier()
    redirect_url = String(max_length=2000, sanitize=False)
    client_secret = String(max_length=500, sanitize=False)
    expires_at = DateTime()
    failure_reason = String(max_length=500)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def open(
        cls,
        session_id,
        user_id,
        cart_id,
        provider,
        amount,
        currency,
        cart_updated_at,
        idempotency_key,
        intent_id=None,
        reservation_id=None,
        redirect_url=None,
        client_secret=None,
        expires_at=None,
    ):
        now = datetime.now(UTC)
        session = cls(
            id=str(session_id),
            user_id=str(user_id),
            cart_id=str(cart_id),
            provider=provider,
            amount=amount,
            currency=currency,
            cart_updated_at=cart_updated_at,
            idempotency_key=idempotency_key,
            intent_id=intent_id,
            reservation_id=reservation_id,
            redirect_url=redirect_url,
            client_secret=client_secret,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        session._move_to(CheckoutStatus.SESSION_CREATED)
        session.raise_(
            CheckoutSessionOpened(
                session_id=str(session.id),
                user_id=str(user_id),
                cart_id=str(cart_id),
                provider=provider,
                reservation_id=reservation_id,
                amount=amount,
                currency=currency,
                opened_at=now,
            )
        )
        return session

    @property
    def current_status(self) -> CheckoutStatus:
        return CheckoutStatus(self.status)

    def is_owned_by(self, user_id) -> bool:
        return user_id is not None and str(self.user_id) == str(user_id)

    def _move_to(self, target: CheckoutStatus):
        if target not in _TRANSITIONS[self.current_status]:
            raise InvalidState(
                f"Checkout session cannot move from {self.status} to {target.value}",
                session_id=str(self.id),
            )
        self.status = target.value
        self.updated_at = datetime.now(UTC)

    def mark_confirmed(self):
        self._move_to(CheckoutStatus.CONFIRMED)

    def mark_order_created(self, order_id):
        if self.current_status == CheckoutStatus.SESSION_CREATED:
            self.mark_confirmed()
        self._move_to(CheckoutStatus.ORDER_CREATED)
        self.order_id = str(order_id)
        self.raise_(
            CheckoutCompleted(
                session_id=str(self.id),
                user_id=str(self.user_id),
                order_id=str(order_id),
                completed_at=self.updated_at,
            )
        )

    def mark_failed(self, reason):
        self._move_to(CheckoutStatus.FAILED)
        self.failure_reason = reason
        self.raise_(
            CheckoutSessionFailed(
                session_id=str(self.id),
                user_id=str(self.user_id),
                reason=reason,
                failed_at=self.updated_at,
            )
        )
