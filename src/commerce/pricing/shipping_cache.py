"""Short-lived cache of shipping-rate quotes.

Rate lookups are slow network calls and carts are re-estimated on almost
every page view. Quotes are cached per destination + parcel for a few
minutes; an estimate may ask to bypass the cached value. Expired quotes are
dropped whenever a new one is stored, and past ``max_entries`` the oldest
quotes are evicted first.
"""

import threading
import time

from commerce import settings
from commerce.collaborators.ports import Address, ShippableItem, ShippingRate


def shipping_cache_key(
    destination: Address,
    currency: str,
    total_weight: int,
    subtotal: int,
    discount: int,
    promotion_code: str | None,
    items: list[ShippableItem],
) -> str:
    parts = [
        (destination.country or "").strip().upper(),
        (destination.postal_code or "").strip().upper(),
        (destination.state or "").strip().upper(),
        currency,
        str(total_weight),
        str(subtotal),
        str(discount),
        (promotion_code or "").strip().upper(),
    ]
    item_parts = sorted(f"{item.sku.strip().upper()},{item.quantity},{item.weight_grams}" for item in items)
    if item_parts:
        parts.append(";".join(item_parts))
    return "|".join(parts)


class ShippingQuoteCache:
    def __init__(
        self,
        ttl_seconds: float = settings.SHIPPING_QUOTE_CACHE_TTL_SECONDS,
        clock=time.monotonic,
        max_entries: int = settings.SHIPPING_QUOTE_CACHE_MAX_ENTRIES,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, tuple[ShippingRate, ...]]] = {}

    def get(self, key: str) -> tuple[ShippingRate, ...] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, rates = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return rates

    def put(self, key: str, rates) -> None:
        with self._lock:
            now = self._clock()
            for stale in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
                del self._entries[stale]
            # Re-inserting moves the key to the end, so insertion order is age order.
            self._entries.pop(key, None)
            self._entries[key] = (now + self.ttl_seconds, tuple(rates))
            while len(self._entries) > self.max_entries:
                del self._entries[next(iter(self._entries))]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


shipping_quote_cache = ShippingQuoteCache()
