"""
Exception hierarchy for the subscription engine.

Exceptions carry context for logging; input problems inside a single message
never raise (extractors degrade to absent values instead).
"""

from typing import Any, Dict, Optional


class SubscriptionEngineError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context

    def __str__(self) -> str:
        base_message = super().__str__()
        if self.context:
            context_info = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base_message} (context: {context_info})"
        return base_message


class StorageError(SubscriptionEngineError):
    """The storage collaborator failed; retryable at the orchestrator level."""


class SubscriptionNotFoundError(SubscriptionEngineError):
    """No subscription with the given id exists for the user."""


class InvalidTransitionError(SubscriptionEngineError):
    """An unsubscribe status change not allowed by the state machine."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move unsubscribe status from {current} to {target}",
            {'current': current, 'target': target}
        )
        self.current = current
        self.target = target


class SignalTableError(SubscriptionEngineError):
    """A signal table file could not be loaded or compiled."""
