"""Configurable fake payment gateway for development and testing.

Simulates a hosted-checkout PSP without any external calls. Tests configure
whether session creation succeeds and which status later lookups report.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from commerce.errors import CollaboratorError
from commerce.gateway.port import PaymentGateway, PaymentStatus, SessionResult, SessionStatus


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Session rejected"
        self.payment_status: str = PaymentStatus.SUCCEEDED.value
        self.unavailable: bool = False
        self.raw_payload: dict = {}
        self.calls: list[dict] = []
        self.sessions: dict[str, dict] = {}

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Session rejected",
        payment_status: str = PaymentStatus.SUCCEEDED.value,
        unavailable: bool = False,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.payment_status = payment_status
        self.unavailable = unavailable

    def create_session(
        self,
        amount: int,
        currency: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
        idempotency_key: str,
        metadata: dict,
        *,
        timeout: float,
    ) -> SessionResult:
        self.calls.append(
            {
                "method": "create_session",
                "amount": amount,
                "currency": currency,
                "user_id": user_id,
                "idempotency_key": idempotency_key,
                "metadata": dict(metadata),
            }
        )
        if self.unavailable:
            raise CollaboratorError("Fake gateway is unavailable", transient=True)
        if not self.should_succeed:
            return SessionResult(success=False, provider=self.name, failure_reason=self.failure_reason)

        # Same key, same session: the PSP side of request idempotency.
        for session_id, session in self.sessions.items():
            if session["idempotency_key"] == idempotency_key:
                return session["result"]

        session_id = f"cs_fake_{uuid4().hex[:16]}"
        intent_id = f"pi_fake_{uuid4().hex[:16]}"
        result = SessionResult(
            success=True,
            session_id=session_id,
            provider=self.name,
            intent_id=intent_id,
            redirect_url=f"https://checkout.fake.test/pay/{session_id}",
            client_secret=f"{intent_id}_secret",
            expires_at=datetime.now(UTC) + timedelta(minutes=30),
        )
        self.sessions[session_id] = {
            "idempotency_key": idempotency_key,
            "amount": amount,
            "currency": currency,
            "result": result,
        }
        return result

    def get_session_status(self, session_id: str, intent_id: str | None, *, timeout: float) -> SessionStatus:
        self.calls.append({"method": "get_session_status", "session_id": session_id, "intent_id": intent_id})
        if self.unavailable:
            raise CollaboratorError("Fake gateway is unavailable", transient=True)
        session = self.sessions.get(session_id, {})
        result = session.get("result")
        return SessionStatus(
            status=self.payment_status,
            intent_id=result.intent_id if result else intent_id,
            amount=session.get("amount"),
            currency=session.get("currency"),
            raw=dict(self.raw_payload),
        )
