from __future__ import annotations

from enum import Enum

from archiv.core.errors import InvalidTransitionError


class EmbeddingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Operator-visible lifecycle: enqueue, finish, fail, bulk retry, manual re-embed.
_TRANSITIONS: dict[EmbeddingStatus, frozenset[EmbeddingStatus]] = {
    EmbeddingStatus.PENDING: frozenset({EmbeddingStatus.PROCESSING}),
    EmbeddingStatus.PROCESSING: frozenset({EmbeddingStatus.COMPLETED, EmbeddingStatus.FAILED}),
    EmbeddingStatus.FAILED: frozenset({EmbeddingStatus.PENDING}),
    EmbeddingStatus.COMPLETED: frozenset({EmbeddingStatus.PROCESSING}),
}


def can_transition(current: EmbeddingStatus | str, target: EmbeddingStatus | str) -> bool:
    return EmbeddingStatus(target) in _TRANSITIONS[EmbeddingStatus(current)]


def ensure_transition(current: EmbeddingStatus | str, target: EmbeddingStatus | str) -> EmbeddingStatus:
    # Reject transitions outside the lifecycle so callers get a validation error, not a silent write.
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move embedding status from {EmbeddingStatus(current).value} "
            f"to {EmbeddingStatus(target).value}"
        )
    return EmbeddingStatus(target)


def allowed_sources(target: EmbeddingStatus | str) -> frozenset[EmbeddingStatus]:
    # Statuses that may move to target; used to guard conditional updates.
    target = EmbeddingStatus(target)
    return frozenset(source for source, targets in _TRANSITIONS.items() if target in targets)
