"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations. The adapter
is picked from PAYMENT_GATEWAY_ADAPTER; only the fake ships with the engine,
real PSP adapters are registered with set_gateway() at startup.
"""

from commerce import settings
from commerce.gateway.fake_adapter import FakeGateway
from commerce.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway."""
    global _current_gateway
    if _current_gateway is None:
        if settings.PAYMENT_GATEWAY_ADAPTER != "fake":
            raise ValueError(f"Unknown payment gateway adapter: {settings.PAYMENT_GATEWAY_ADAPTER}")
        _current_gateway = FakeGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
