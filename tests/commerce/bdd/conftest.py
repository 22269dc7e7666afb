"""Shared BDD fixtures and step definitions for the commerce domain."""

import pytest
from commerce.errors import CommerceError
from commerce.order.order import Order, OrderStatus
from protean import current_domain
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then

_ERROR_KINDS = {
    "not found": "not_found",
    "conflict": "conflict",
    "invalid state": "invalid_state",
    "unavailable": "unavailable",
    "cart not ready": "cart_not_ready",
    "insufficient stock": "insufficient_stock",
    "payment failed": "payment_failed",
}


@pytest.fixture()
def error():
    """Container for errors raised by When steps."""
    return {"exc": None}


@pytest.fixture()
def attempt(error):
    """Run a callable, keeping a domain or validation error for a Then step."""

    def _attempt(fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (CommerceError, ValidationError) as exc:
            error["exc"] = exc
            return None

    return _attempt


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a cart ready for checkout", target_fixture="cart")
def _(ready_cart):
    return ready_cart


@given(parsers.cfparse('an order in status "{status}"'), target_fixture="order")
def _(persisted_order, status):
    return persisted_order(OrderStatus(status))


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def _(order, status):
    stored = current_domain.repository_for(Order).get(order.id)
    assert stored.status == status


@then(parsers.cfparse("the request fails with {kind}"))
def _(error, kind):
    exc = error["exc"]
    assert exc is not None
    if kind == "a validation error":
        assert isinstance(exc, ValidationError)
    else:
        assert getattr(exc, "kind", None) == _ERROR_KINDS[kind]


@then("the request succeeds")
def _(error):
    assert error["exc"] is None
