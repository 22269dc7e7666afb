"""Engine settings read from the environment.

Protean's own configuration (providers, event store, brokers) lives in
``[tool.protean]`` of pyproject.toml; these are the knobs of the commerce
engine itself.
"""

import os

DEFAULT_CURRENCY = os.getenv("COMMERCE_DEFAULT_CURRENCY", "JPY")

SHIPPING_QUOTE_CACHE_TTL_SECONDS = int(os.getenv("SHIPPING_QUOTE_CACHE_TTL_SECONDS", 5 * 60))
SHIPPING_QUOTE_CACHE_MAX_ENTRIES = int(os.getenv("SHIPPING_QUOTE_CACHE_MAX_ENTRIES", 1024))
FALLBACK_SHIPPING_AMOUNT = int(os.getenv("FALLBACK_SHIPPING_AMOUNT", 800))
FALLBACK_TAX_RATE_BPS = int(os.getenv("FALLBACK_TAX_RATE_BPS", 1000))  # 10.00%

RESERVATION_TTL_MINUTES = int(os.getenv("RESERVATION_TTL_MINUTES", 15))

COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", 5))
COLLABORATOR_MAX_ATTEMPTS = int(os.getenv("COLLABORATOR_MAX_ATTEMPTS", 3))

ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "HF")

PAYMENT_GATEWAY_ADAPTER = os.getenv("PAYMENT_GATEWAY_ADAPTER", "fake")

NOTES_MAX_LENGTH = 2000
PROMOTION_HINT_MAX_LENGTH = 120
SANITIZED_TEXT_MAX_LENGTH = 256
