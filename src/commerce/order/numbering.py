"""Human-readable order numbers: ``<PREFIX>-<YYYY>-<NNNNNN>``."""

from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError
from protean.fields import Integer
from protean.utils.globals import current_domain

from commerce import settings
from commerce.domain import commerce


@commerce.aggregate
class OrderSequence:
    """Last issued sequence value for one calendar year (``id`` is the year)."""

    last_value = Integer(default=0, min_value=0)

    def issue(self) -> int:
        self.last_value = (self.last_value or 0) + 1
        return self.last_value


def format_order_number(year: int, sequence: int, prefix: str | None = None) -> str:
    return f"{prefix or settings.ORDER_NUMBER_PREFIX}-{year}-{sequence:06d}"


def next_order_number(at: datetime | None = None) -> str:
    year = (at or datetime.now(UTC)).year
    repo = current_domain.repository_for(OrderSequence)
    try:
        sequence = repo.get(str(year))
    except ObjectNotFoundError:
        sequence = OrderSequence(id=str(year))
    value = sequence.issue()
    repo.add(sequence)
    return format_order_number(year, value)
