"""
Filter Unsubscribe Executor

Fallback for senders without any usable unsubscribe target: asks the filter
collaborator to archive their future mail. StoredFilterClient queues the rule
in the engine's own database for a provider sync to pick up.
"""

from ..unsubscribe.methods import FilterMethod, MethodKind
from .base_executor import DEFAULT_TIMEOUT, ActionRequest, ActionResult, BaseMethodExecutor


class StoredFilterClient:
    """FilterClient that records rules in the mail_filter_rules table."""

    def __init__(self, store):
        self.store = store

    def create_filter(self, user_id: str, sender_address: str, criteria: str, action: str) -> str:
        with self.store.unit_of_work() as uow:
            rule_id = uow.create_filter_rule(user_id, sender_address, criteria, action)
        return f"rule-{rule_id}"


class FilterExecutor(BaseMethodExecutor):
    """Execute unsubscribe by creating a provider filter."""

    def __init__(
        self,
        filter_client=None,
        timeout: float = DEFAULT_TIMEOUT,
        dry_run: bool = False
    ):
        super().__init__(timeout, 0.0, dry_run)
        self.filter_client = filter_client

    @property
    def method_kind(self) -> MethodKind:
        return MethodKind.FILTER

    def describe(self, method: FilterMethod, request: ActionRequest) -> str:
        return f'create filter "{method.criteria}" -> {method.action}'

    def _perform_execution(self, method: FilterMethod, request: ActionRequest) -> ActionResult:
        if self.filter_client is None:
            return ActionResult.failed('No filter client configured')
        reference = self.filter_client.create_filter(
            request.user_id, method.sender_address, method.criteria, method.action
        )
        return ActionResult(success=True, message=f'Filter created ({reference})')
