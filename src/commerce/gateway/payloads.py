"""Best-effort readers for provider-raw payment payloads.

PSP payloads are opaque to the order state machine. The few facts derived
from them are read here, and only here, so a provider changing its shape
breaks one function rather than the aggregate.
"""

import json


def _as_int(value) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            try:
                return int(float(text))
            except ValueError:
                return 0
    return 0


def load_raw(raw: str | dict | None) -> dict:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def refunded_amount(raw: str | dict | None) -> int:
    """Refunded amount in minor units, or 0 when the payload does not say.

    Looks at, in order: ``refundedAmount``, ``refunded_amount``,
    ``latest_charge.amount_refunded``, ``charges.amount_refunded`` and the
    first positive ``charges.data[].amount_refunded``.
    """
    payload = load_raw(raw)
    if not payload:
        return 0

    for key in ("refundedAmount", "refunded_amount"):
        amount = _as_int(payload.get(key))
        if amount > 0:
            return amount

    latest = payload.get("latest_charge")
    if isinstance(latest, dict):
        amount = _as_int(latest.get("amount_refunded"))
        if amount > 0:
            return amount

    charges = payload.get("charges")
    if isinstance(charges, dict):
        amount = _as_int(charges.get("amount_refunded"))
        if amount > 0:
            return amount
        for charge in charges.get("data") or []:
            if isinstance(charge, dict):
                amount = _as_int(charge.get("amount_refunded"))
                if amount > 0:
                    return amount

    return 0
