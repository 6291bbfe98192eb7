"""
Base Method Executor

Provides common functionality for all unsubscribe method executors:
- Method type validation
- Rate limiting enforcement
- Dry-run mode support
- Conversion of unexpected errors into failed results

Executors only dispatch the outbound action. Status changes and attempt
records are handled by UnsubscribeExecutor, outside of any network call.
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from ..logging import EngineLogger
from ..unsubscribe.methods import MethodKind, UnsubscribeMethod

DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class ActionRequest:
    """Who the action is for."""
    user_id: str
    sender_address: str
    subscription_id: Optional[int] = None


@dataclass(frozen=True)
class ActionResult:
    """Result of dispatching one unsubscribe action."""
    success: bool
    message: str = ''
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def failed(cls, error_message: str, status_code: Optional[int] = None) -> 'ActionResult':
        return cls(success=False, message=error_message, status_code=status_code,
                   error_message=error_message)


class BaseMethodExecutor(ABC):
    """
    Abstract base class for all unsubscribe method executors.

    Implements method validation, rate limiting and dry-run handling.
    Subclasses implement the actual dispatch in `_perform_execution`.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        rate_limit_delay: float = 0.0,
        dry_run: bool = False
    ):
        """
        Initialize base executor.

        Args:
            timeout: Bound on the outbound call in seconds
            rate_limit_delay: Minimum delay in seconds between two dispatches
            dry_run: If True, report the action without dispatching it
        """
        self.timeout = timeout
        self.rate_limit_delay = rate_limit_delay
        self.dry_run = dry_run
        self.logger = EngineLogger("executor")
        self._last_request_time: Optional[float] = None
        self._rate_lock = threading.Lock()

    @property
    @abstractmethod
    def method_kind(self) -> MethodKind:
        """The method kind this executor dispatches."""

    def describe(self, method: UnsubscribeMethod, request: ActionRequest) -> str:
        """Human-readable description of the action, used for dry runs."""
        return f"{self.method_kind.value} {method.target}"

    def execute(self, method: UnsubscribeMethod, request: ActionRequest,
                dry_run: Optional[bool] = None) -> ActionResult:
        """
        Dispatch one unsubscribe action (template method).

        Workflow:
        1. Validate the method kind
        2. Short-circuit dry runs
        3. Apply rate limiting
        4. Perform the method-specific dispatch

        Args:
            method: Method to dispatch; must match this executor's kind
            request: User and sender the action is for
            dry_run: Overrides the executor's dry-run setting when given

        Returns:
            ActionResult; never raises for dispatch failures
        """
        if method.kind is not self.method_kind:
            return ActionResult.failed(
                f'Method mismatch: {method.kind.value} (expected {self.method_kind.value})'
            )

        if self.dry_run if dry_run is None else dry_run:
            return ActionResult(
                success=True,
                dry_run=True,
                message=f'DRY RUN: Would {self.describe(method, request)}'
            )

        self._apply_rate_limit()

        try:
            result = self._perform_execution(method, request)
        except Exception as e:
            self.logger.log_exception(e, {'method': self.method_kind.value,
                                          'sender': request.sender_address})
            result = ActionResult.failed(f'Unexpected error: {e}')

        self.logger.log_operation_count(self.method_kind.value, result.success)
        return result

    @abstractmethod
    def _perform_execution(self, method: UnsubscribeMethod, request: ActionRequest) -> ActionResult:
        """
        Perform the method-specific dispatch.

        Args:
            method: Method to dispatch
            request: User and sender the action is for

        Returns:
            ActionResult with success, status code and error details
        """

    def _apply_rate_limit(self):
        """Apply rate limiting delay between requests."""
        if self.rate_limit_delay <= 0:
            return
        with self._rate_lock:
            if self._last_request_time is not None:
                elapsed = time.monotonic() - self._last_request_time
                if elapsed < self.rate_limit_delay:
                    time.sleep(self.rate_limit_delay - elapsed)
            self._last_request_time = time.monotonic()
