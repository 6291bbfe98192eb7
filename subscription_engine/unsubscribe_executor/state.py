"""
Unsubscribe status state machine.
"""

from typing import Dict, FrozenSet

from ..detection.types import UnsubscribeStatus
from ..exceptions import InvalidTransitionError

ALLOWED_TRANSITIONS: Dict[UnsubscribeStatus, FrozenSet[UnsubscribeStatus]] = {
    UnsubscribeStatus.NOT_REQUESTED: frozenset({UnsubscribeStatus.PENDING}),
    UnsubscribeStatus.PENDING: frozenset({UnsubscribeStatus.SUCCEEDED, UnsubscribeStatus.FAILED}),
    # Retry goes back through pending; resubscribe returns to not_requested
    UnsubscribeStatus.FAILED: frozenset({UnsubscribeStatus.PENDING, UnsubscribeStatus.NOT_REQUESTED}),
    UnsubscribeStatus.SUCCEEDED: frozenset({UnsubscribeStatus.NOT_REQUESTED}),
}


def can_transition(current: UnsubscribeStatus, target: UnsubscribeStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(current: UnsubscribeStatus, target: UnsubscribeStatus) -> UnsubscribeStatus:
    """Return `target` if the move is allowed, otherwise raise InvalidTransitionError."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target
