"""Commerce bounded context: Cart, Pricing, Checkout and Order.

Hosts the transaction engine behind customizable-product ordering: the
optimistic-concurrency cart (CQRS), the estimate engine, the checkout
orchestrator and the event-sourced order state machine.
"""

import structlog
from protean.domain import Domain

commerce = Domain(name="commerce")

logger = structlog.get_logger(__name__)
