"""Order lookup with ownership checks.

Orders that do not exist and orders owned by someone else are
indistinguishable to the caller: both are ``NotFound``.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import NotFound
from commerce.order.order import Order

# Roles allowed to act on orders they do not own
PRIVILEGED_ROLES = {"staff", "system"}


def load_order(order_id) -> Order:
    try:
        return current_domain.repository_for(Order).get(str(order_id))
    except ObjectNotFoundError as exc:
        raise NotFound("Order not found", order_id=str(order_id)) from exc


def load_order_for_actor(order_id, actor_id, actor_role=None) -> Order:
    order = load_order(order_id)
    if actor_role in PRIVILEGED_ROLES or order.is_owned_by(actor_id):
        return order
    raise NotFound("Order not found", order_id=str(order_id))


@commerce.command(part_of="Order")
class GetOrder:
    order_id = Identifier(required=True)
    actor_id = Identifier(required=True)
    actor_role = String(max_length=20)


@commerce.command_handler(part_of=Order)
class OrderAccessHandler:
    @handle(GetOrder)
    def get_order(self, command):
        return load_order_for_actor(command.order_id, command.actor_id, command.actor_role)
