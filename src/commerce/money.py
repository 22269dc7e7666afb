"""Money and breakdown value types.

Amounts are integers in minor currency units throughout. These are plain
frozen dataclasses rather than Protean value objects: they never persist on
their own, and the estimate engine builds and compares them in tight loops.
The order keeps a persisted copy of the totals in ``OrderTotals``.
"""

import re
from dataclasses import asdict, dataclass, field

from protean.exceptions import ValidationError

from commerce.errors import PricingInvariantError

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def normalize_currency(value: str | None, field_name: str = "currency") -> str:
    """Uppercase and validate an ISO 4217 code."""
    code = (value or "").strip().upper()
    if not _CURRENCY_RE.match(code):
        raise ValidationError({field_name: ["Currency must be a three letter ISO 4217 code"]})
    return code


def allocate_by_weight(amount: int, weights: list[int]) -> list[int]:
    """Split ``amount`` across ``weights`` with the largest-remainder method.

    The shares always sum to ``amount``. Negative weights count as zero;
    when every weight is zero the amount is spread evenly, earlier slots
    taking the remainder. Ties on remainder go to the lower index.
    """
    if not weights:
        return []
    allocations = [0] * len(weights)
    if amount == 0:
        return allocations

    clean = [max(w, 0) for w in weights]
    total_weight = sum(clean)
    if total_weight == 0:
        base, remainder = divmod(amount, len(weights))
        return [base + (1 if i < remainder else 0) for i in range(len(weights))]

    remainders = []
    for idx, weight in enumerate(clean):
        share, rest = divmod(amount * weight, total_weight)
        allocations[idx] = share
        remainders.append((rest, idx))

    leftover = amount - sum(allocations)
    for _, idx in sorted(remainders, key=lambda pair: (-pair[0], pair[1]))[:leftover]:
        allocations[idx] += 1
    return allocations


@dataclass(frozen=True)
class ItemLine:
    item_id: str
    subtotal: int
    discount: int = 0
    tax: int = 0
    shipping: int = 0
    total: int = 0


@dataclass(frozen=True)
class DiscountLine:
    type: str
    amount: int
    code: str | None = None
    source: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class TaxLine:
    name: str
    jurisdiction: str
    rate: float
    amount: int


@dataclass(frozen=True)
class ShippingLine:
    service_level: str
    carrier: str
    amount: int
    currency: str
    estimate_days: int | None = None
    selected: bool = False


@dataclass(frozen=True)
class EstimateBreakdown:
    """A priced cart.

    ``total == subtotal - discount + tax + shipping`` and ``total >= 0``
    hold for every instance; construction fails otherwise.
    """

    currency: str
    subtotal: int
    discount: int
    tax: int
    shipping: int
    total: int
    items: tuple[ItemLine, ...] = ()
    discounts: tuple[DiscountLine, ...] = ()
    taxes: tuple[TaxLine, ...] = ()
    shipping_details: tuple[ShippingLine, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        for name in ("subtotal", "discount", "tax", "shipping", "total"):
            if getattr(self, name) < 0:
                raise PricingInvariantError(f"{name} is negative", **{name: getattr(self, name)})
        if self.discount > self.subtotal:
            raise PricingInvariantError(
                "discount exceeds subtotal", subtotal=self.subtotal, discount=self.discount
            )
        expected = self.subtotal - self.discount + self.tax + self.shipping
        if self.total != expected:
            raise PricingInvariantError("total does not balance", total=self.total, expected=expected)

    @property
    def net_subtotal(self) -> int:
        return self.subtotal - self.discount

    def to_dict(self) -> dict:
        return asdict(self)

    def totals(self) -> dict:
        """The persisted shape: everything except warnings."""
        data = self.to_dict()
        data.pop("warnings")
        return data
