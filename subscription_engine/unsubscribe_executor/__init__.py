"""
Unsubscribe Executor Module

Runs unsubscribe requests through the status state machine and dispatches
them with the method-specific executors.
"""

from .base_executor import ActionRequest, ActionResult, BaseMethodExecutor
from .email_reply_executor import EmailReplyExecutor, SmtpMailSender
from .executor import UnsubscribeExecutor, UnsubscribeOutcome
from .filter_executor import FilterExecutor, StoredFilterClient
from .http_executor import HttpGetExecutor
from .http_post_executor import HttpPostExecutor
from .retry import RetryPolicy, backoff_delay
from .state import can_transition, transition

__all__ = [
    'ActionRequest', 'ActionResult', 'BaseMethodExecutor',
    'EmailReplyExecutor', 'SmtpMailSender',
    'UnsubscribeExecutor', 'UnsubscribeOutcome',
    'FilterExecutor', 'StoredFilterClient',
    'HttpGetExecutor', 'HttpPostExecutor',
    'RetryPolicy', 'backoff_delay',
    'can_transition', 'transition',
]
