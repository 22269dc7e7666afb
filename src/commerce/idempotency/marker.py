"""Idempotency markers: a typed side table keyed by (entity, operation).

A marker is written in the same unit of work as the side effect it guards.
A retried or concurrent request that finds the marker replays the recorded
outcome (``requested_at``, ``result_ref``) instead of acting again.
"""

from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce


@commerce.aggregate
class IdempotencyMarker:
    entity_id = Identifier(required=True)
    operation = String(required=True, max_length=255)
    requested_at = DateTime(required=True)
    requested_by = String(max_length=255)
    result_ref = String(max_length=255)

    @staticmethod
    def key_for(entity_id, operation) -> str:
        return f"{entity_id}:{operation}"


def find_marker(entity_id, operation) -> IdempotencyMarker | None:
    repo = current_domain.repository_for(IdempotencyMarker)
    try:
        return repo.get(IdempotencyMarker.key_for(entity_id, operation))
    except ObjectNotFoundError:
        return None


def record_marker(entity_id, operation, result_ref=None, requested_by=None, requested_at=None) -> IdempotencyMarker:
    marker = IdempotencyMarker(
        id=IdempotencyMarker.key_for(entity_id, operation),
        entity_id=str(entity_id),
        operation=operation,
        requested_at=requested_at or datetime.now(UTC),
        requested_by=requested_by,
        result_ref=result_ref,
    )
    current_domain.repository_for(IdempotencyMarker).add(marker)
    return marker
