"""Takedown request status machine."""

import logging

from copyguard.db.models import TakedownRequest, TakedownStatus
from copyguard.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[TakedownStatus, frozenset[TakedownStatus]] = {
    # PENDING -> PENDING records a manual-processing outcome
    TakedownStatus.PENDING: frozenset({
        TakedownStatus.PENDING, TakedownStatus.SENT, TakedownStatus.FAILED,
    }),
    TakedownStatus.SENT: frozenset({
        TakedownStatus.ACKNOWLEDGED, TakedownStatus.REMOVED,
        TakedownStatus.REJECTED, TakedownStatus.FAILED,
    }),
    TakedownStatus.ACKNOWLEDGED: frozenset({
        TakedownStatus.REMOVED, TakedownStatus.REJECTED, TakedownStatus.FAILED,
    }),
    TakedownStatus.FAILED: frozenset({TakedownStatus.PENDING}),
    TakedownStatus.REJECTED: frozenset({TakedownStatus.PENDING}),
    TakedownStatus.REMOVED: frozenset(),
}

# Manually retriable; re-enter at PENDING
RETRIABLE_STATUSES = frozenset({TakedownStatus.FAILED, TakedownStatus.REJECTED})

# Outcomes reported by the receiving party
EXTERNAL_STATUSES = frozenset({
    TakedownStatus.ACKNOWLEDGED, TakedownStatus.REMOVED, TakedownStatus.REJECTED,
})

# A redelivered message for one of these must not dispatch again
DISPATCHED_STATUSES = frozenset({
    TakedownStatus.SENT, TakedownStatus.ACKNOWLEDGED,
    TakedownStatus.REMOVED, TakedownStatus.REJECTED,
})


def can_transition(current: TakedownStatus, new: TakedownStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def transition(request: TakedownRequest, new_status: TakedownStatus) -> None:
    """Move ``request`` to ``new_status``.

    Raises:
        InvalidTransitionError: If the state machine forbids the change
    """
    current = TakedownStatus(request.status)
    if not can_transition(current, new_status):
        raise InvalidTransitionError(
            f"Takedown {request.id}: cannot move from {current.value} to {new_status.value}"
        )
    if current != new_status:
        logger.debug(f"Takedown {request.id}: {current.value} -> {new_status.value}")
    request.status = new_status.value
