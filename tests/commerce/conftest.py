import pytest
from commerce.collaborators import set_collaborator
from commerce.collaborators.fakes import (
    FakeAddressBook,
    FakeInvoiceDispatcher,
    FakePromotionService,
    FakeShippingRateService,
    FakeStockReservations,
    FakeTaxService,
)
from commerce.collaborators.ports import Address
from commerce.gateway import set_gateway
from commerce.gateway.fake_adapter import FakeGateway
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def commerce_bed():
    from commerce.domain import commerce

    bed = DomainFixture(commerce)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(commerce_bed):
    with commerce_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
@pytest.fixture()
def user_id():
    return "user-001"


@pytest.fixture()
def home_address():
    return Address(
        id="addr-home",
        country="JP",
        postal_code="150-0001",
        state="Tokyo",
        city="Shibuya",
        line1="1-2-3 Jingumae",
        recipient="Hana Sato",
        phone="+81-3-0000-0000",
    )


@pytest.fixture()
def address_book(user_id, home_address):
    book = FakeAddressBook()
    book.add(user_id, home_address)
    set_collaborator("address_book", book)
    return book


@pytest.fixture()
def stock():
    fake = FakeStockReservations()
    set_collaborator("stock", fake)
    return fake


@pytest.fixture()
def promotions():
    fake = FakePromotionService()
    fake.add_code("SPRING300", 300)
    set_collaborator("promotions", fake)
    return fake


@pytest.fixture()
def tax():
    fake = FakeTaxService()
    set_collaborator("tax", fake)
    return fake


@pytest.fixture()
def shipping():
    fake = FakeShippingRateService()
    set_collaborator("shipping", fake)
    return fake


@pytest.fixture()
def invoices():
    fake = FakeInvoiceDispatcher()
    set_collaborator("invoices", fake)
    return fake


@pytest.fixture()
def gateway():
    fake = FakeGateway()
    set_gateway(fake)
    return fake


@pytest.fixture()
def collaborators(address_book, stock, promotions, tax, shipping, invoices, gateway):
    """Every fake installed, for flows that touch all of them."""
    return {
        "address_book": address_book,
        "stock": stock,
        "promotions": promotions,
        "tax": tax,
        "shipping": shipping,
        "invoices": invoices,
        "gateway": gateway,
    }


# ---------------------------------------------------------------------------
# Carts and orders
# ---------------------------------------------------------------------------
RING = {"product_id": "prod-ring", "sku": "RING-S", "quantity": 1, "unit_price": 1500, "weight_grams": 40}
TAGS = {"product_id": "prod-tag", "sku": "TAG-M", "quantity": 2, "unit_price": 500, "weight_grams": 20}


@pytest.fixture()
def ready_cart(user_id, collaborators):
    """Two lines (subtotal 2500) shipping to the home address."""
    import json

    from commerce.cart.cart import Cart
    from commerce.cart.items import AddOrUpdateCartItem
    from commerce.cart.management import UpdateCart
    from protean import current_domain

    for line in (RING, TAGS):
        current_domain.process(AddOrUpdateCartItem(user_id=user_id, **line), asynchronous=False)
    current_domain.process(
        UpdateCart(user_id=user_id, changes=json.dumps({"shipping_address_ref": "addr-home"})),
        asynchronous=False,
    )
    return current_domain.repository_for(Cart).get(user_id)


def _order_items():
    return [
        {
            "product_id": "prod-ring",
            "sku": "RING-S",
            "name": "Signet ring",
            "design_ref": "/designs/d-1",
            "customization": {"engraving": "H&S"},
            "quantity": 1,
            "unit_price": 1500,
        },
        {
            "product_id": "prod-tag",
            "sku": "TAG-M",
            "name": "Pet tag",
            "design_ref": None,
            "customization": {},
            "quantity": 2,
            "unit_price": 500,
        },
    ]


def _order_totals():
    return {
        "currency": "JPY",
        "subtotal": 2500,
        "discount": 300,
        "tax": 220,
        "shipping": 600,
        "total": 3020,
    }


@pytest.fixture()
def build_order(user_id):
    """Build an in-memory order already moved to ``status``."""
    from commerce.order.order import STATUS_PIPELINE, Order, OrderStatus

    def _build(status=OrderStatus.PAID, owner=None, reservation_id="res-001"):
        entry = OrderStatus.DRAFT if status == OrderStatus.DRAFT else OrderStatus.PENDING_PAYMENT
        order = Order.place(
            order_number="HF-1999-000042",
            user_id=owner or user_id,
            currency="JPY",
            items=_order_items(),
            totals=_order_totals(),
            status=entry,
            promotion_code="SPRING300",
            shipping_address={"address_id": "addr-home", "country": "JP", "postal_code": "150-0001"},
            contact={"name": "Hana Sato"},
            flags={"gift": True},
            metadata={"reservationId": reservation_id} if reservation_id else {},
            created_by=owner or user_id,
        )
        if status == OrderStatus.CANCELED:
            order.cancel(actor_id=owner or user_id, reason="Changed my mind")
            return order
        for step in STATUS_PIPELINE[STATUS_PIPELINE.index(entry) + 1 : STATUS_PIPELINE.index(status) + 1]:
            order.transition_to(step)
        return order

    return _build


@pytest.fixture()
def persisted_order(build_order):
    """Persist an order at ``status`` and return it reloaded from the event store."""
    from commerce.order.order import Order, OrderStatus
    from protean import current_domain

    def _persist(status=OrderStatus.PAID, **kwargs):
        order = build_order(status, **kwargs)
        repo = current_domain.repository_for(Order)
        repo.add(order)
        return repo.get(order.id)

    return _persist
