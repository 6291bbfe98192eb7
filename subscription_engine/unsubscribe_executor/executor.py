"""
Unsubscribe execution with status tracking.

A request runs in three phases so that no network call ever happens inside a
storage transaction:

1. Resolve the method and persist the record as pending.
2. Dispatch exactly one outbound action with a bounded timeout.
3. Persist succeeded or failed together with an attempt record.

Phase 3 is retried on storage errors. When the store stays unavailable the
dispatched result is held in memory and written before the next request for
the same user, so a record is never left pending after its action ran.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from tenacity import Retrying, before_sleep_log

from ..collaborators import FilterClient, HttpClient, MailSender
from ..database.store import ListFilters
from ..detection.types import SubscriptionRecord, UnsubscribeStatus, utcnow
from ..exceptions import StorageError, SubscriptionEngineError
from ..logging import EngineLogger
from ..unsubscribe.methods import FilterMethod, MethodKind, UnknownMethod, UnsubscribeMethod
from ..unsubscribe.resolver import UnsubscribeResolver
from .base_executor import DEFAULT_TIMEOUT, ActionRequest, ActionResult, BaseMethodExecutor
from .email_reply_executor import EmailReplyExecutor
from .filter_executor import FilterExecutor, StoredFilterClient
from .http_executor import DEFAULT_USER_AGENT, HttpGetExecutor
from .http_post_executor import HttpPostExecutor
from .retry import RetryPolicy
from .state import transition

DEFAULT_BULK_CONCURRENCY = 5

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnsubscribeOutcome:
    """Result of one unsubscribe request."""
    subscription_id: int
    success: bool
    status: Optional[UnsubscribeStatus] = None
    method: Optional[UnsubscribeMethod] = None
    sender_address: Optional[str] = None
    message: str = ''
    error_message: Optional[str] = None
    dry_run: bool = False
    deferred: bool = False
    retry_at: Optional[datetime] = None

    @property
    def method_kind(self) -> Optional[str]:
        return self.method.kind.value if self.method is not None else None


@dataclass(frozen=True)
class _Prepared:
    record: SubscriptionRecord
    method: UnsubscribeMethod


@dataclass(frozen=True)
class _Unfinished:
    """A dispatched result whose status could not be written yet."""
    user_id: str
    subscription_id: int
    method: UnsubscribeMethod
    result: ActionResult
    finished_at: datetime


def consecutive_failures(attempts) -> int:
    """Failed attempts since the last successful one."""
    count = 0
    for attempt in reversed(attempts):
        if attempt.succeeded:
            break
        count += 1
    return count


class UnsubscribeExecutor:
    """Runs unsubscribe requests against the store and the method executors."""

    def __init__(
        self,
        store,
        executors: Dict[MethodKind, BaseMethodExecutor],
        resolver: Optional[UnsubscribeResolver] = None,
        retry_policy: Optional[RetryPolicy] = None,
        cache=None,
        max_workers: int = DEFAULT_BULK_CONCURRENCY,
        clock: Callable[[], datetime] = utcnow,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self.store = store
        self.executors = executors
        self.resolver = resolver or UnsubscribeResolver()
        self.retry_policy = retry_policy or RetryPolicy()
        self.cache = cache
        self.max_workers = max(1, max_workers)
        self.clock = clock
        self._sleep = sleep
        self._unfinished: Dict[Tuple[str, int], _Unfinished] = {}
        self._unfinished_lock = threading.Lock()
        self.logger = EngineLogger("unsubscribe")

    @classmethod
    def build(
        cls,
        store,
        http_client: Optional[HttpClient] = None,
        mail_sender: Optional[MailSender] = None,
        filter_client: Optional[FilterClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        rate_limit_delay: float = 0.0,
        user_agent: str = DEFAULT_USER_AGENT,
        **kwargs
    ) -> 'UnsubscribeExecutor':
        """Executor with the standard method executors wired to the given collaborators."""
        executors = {
            MethodKind.HEADER: HttpPostExecutor(http_client, timeout, user_agent, rate_limit_delay),
            MethodKind.LINK: HttpGetExecutor(http_client, timeout, user_agent, rate_limit_delay),
            MethodKind.MAILTO: EmailReplyExecutor(mail_sender, timeout, rate_limit_delay),
            MethodKind.FILTER: FilterExecutor(filter_client or StoredFilterClient(store), timeout),
        }
        return cls(store, executors, **kwargs)

    def unsubscribe(self, user_id: str, subscription_id: int, dry_run: bool = False) -> UnsubscribeOutcome:
        """
        Unsubscribe from one subscription.

        A failed subscription goes back through the resolver with every method
        that already failed excluded.

        Args:
            user_id: Owner of the subscription
            subscription_id: Subscription to unsubscribe from
            dry_run: Report the action without dispatching or changing state

        Returns:
            UnsubscribeOutcome

        Raises:
            SubscriptionNotFoundError: Unknown id for this user
            InvalidTransitionError: The subscription is pending or already unsubscribed
        """
        with self.logger.scoped_context({'user_id': user_id, 'subscription_id': subscription_id}):
            self.flush_unfinished(user_id)
            prepared = self._prepare(user_id, subscription_id, dry_run)
            record, method = prepared.record, prepared.method
            request = ActionRequest(user_id, record.sender_address, subscription_id)

            if isinstance(method, UnknownMethod):
                return UnsubscribeOutcome(
                    subscription_id, success=False, status=record.unsubscribe_status, method=method,
                    sender_address=record.sender_address,
                    message='No unsubscribe method left to try',
                    error_message='No unsubscribe method left to try', dry_run=dry_run
                )

            if dry_run:
                result = self.executors[method.kind].execute(method, request, dry_run=True)
                return UnsubscribeOutcome(
                    subscription_id, success=True, status=record.unsubscribe_status, method=method,
                    sender_address=record.sender_address, message=result.message, dry_run=True
                )

            result = self._dispatch(method, request)
            unfinished = _Unfinished(user_id, subscription_id, method, result, self.clock())
            try:
                final = self._finish_with_retry(unfinished)
            except StorageError as e:
                with self._unfinished_lock:
                    self._unfinished[(user_id, subscription_id)] = unfinished
                self.logger.warning("Holding unsubscribe result after storage failures", {
                    'sender': record.sender_address,
                    'method': method.kind.value,
                    'success': result.success,
                    'error': str(e)
                })
                return UnsubscribeOutcome(
                    subscription_id, success=result.success, status=UnsubscribeStatus.PENDING,
                    method=method, sender_address=record.sender_address,
                    message=f'{result.message} (status not yet recorded: {e})',
                    error_message=result.error_message or str(e)
                )

            self.logger.info("Unsubscribe finished", {
                'sender': record.sender_address,
                'method': method.kind.value,
                'status': final.unsubscribe_status.value,
                'error': result.error_message
            })
            return UnsubscribeOutcome(
                subscription_id, success=result.success, status=final.unsubscribe_status,
                method=method, sender_address=record.sender_address,
                message=result.message, error_message=result.error_message
            )

    def _prepare(self, user_id: str, subscription_id: int, dry_run: bool) -> _Prepared:
        with self.store.unit_of_work() as uow:
            record = uow.get_record_by_id(user_id, subscription_id)
            next_status = transition(record.unsubscribe_status, UnsubscribeStatus.PENDING)

            exclude: List[UnsubscribeMethod] = []
            if record.unsubscribe_status is UnsubscribeStatus.FAILED:
                exclude = uow.failed_methods(record.id)

            method = self._resolve(uow, record, exclude)
            if dry_run or isinstance(method, UnknownMethod):
                return _Prepared(record, method)

            record.unsubscribe_method = method
            record.unsubscribe_status = next_status
            record.unsubscribe_reason = None
            uow.put_record(record)
            return _Prepared(record, method)

    def _resolve(self, uow, record: SubscriptionRecord,
                 exclude: List[UnsubscribeMethod]) -> UnsubscribeMethod:
        if not exclude and self.cache is not None:
            cached = self.cache.get(record.user_id, record.sender_address)
            if cached is not None:
                return cached

        aggregate = uow.get_aggregate(record.user_id, record.sender_address)
        if aggregate is not None:
            method = self.resolver.resolve(aggregate, exclude)
        else:
            fallback = FilterMethod(sender_address=record.sender_address)
            method = UnknownMethod() if fallback in exclude else fallback

        if not exclude and self.cache is not None and not isinstance(method, UnknownMethod):
            self.cache.put(record.user_id, record.sender_address, method)
        return method

    def _dispatch(self, method: UnsubscribeMethod, request: ActionRequest) -> ActionResult:
        executor = self.executors.get(method.kind)
        if executor is None:
            return ActionResult.failed(f'No executor for method {method.kind.value}')
        return executor.execute(method, request)

    def _finish_with_retry(self, unfinished: _Unfinished) -> SubscriptionRecord:
        retrying = Retrying(
            before_sleep=before_sleep_log(logger, logging.WARNING),
            **self.retry_policy.storage_retry_kwargs(self._sleep)
        )
        return retrying(self._finish, unfinished)

    def _finish(self, unfinished: _Unfinished) -> SubscriptionRecord:
        result, now = unfinished.result, unfinished.finished_at
        target = UnsubscribeStatus.SUCCEEDED if result.success else UnsubscribeStatus.FAILED
        with self.store.unit_of_work() as uow:
            record = uow.get_record_by_id(unfinished.user_id, unfinished.subscription_id)
            record.unsubscribe_status = transition(record.unsubscribe_status, target)
            if result.success:
                record.is_unsubscribed = True
                record.unsubscribed_at = now
                record.unsubscribe_reason = None
            else:
                record.unsubscribe_reason = result.error_message or result.message
            uow.put_record(record)
            uow.add_attempt(record.id, unfinished.method, target, result.status_code,
                            result.error_message, now)
            if not result.success and self.cache is not None:
                self.cache.invalidate(unfinished.user_id, record.sender_address)
            return record

    def pending_results(self, user_id: Optional[str] = None) -> int:
        """Number of dispatched results still waiting to be written."""
        with self._unfinished_lock:
            return sum(1 for key in self._unfinished if user_id is None or key[0] == user_id)

    def flush_unfinished(self, user_id: str) -> int:
        """
        Write held results for `user_id` to the store.

        Results that still hit a storage error stay held for the next call.

        Returns:
            Number of results written
        """
        with self._unfinished_lock:
            held = [self._unfinished.pop(key) for key in list(self._unfinished) if key[0] == user_id]
        if not held:
            return 0

        written = 0
        for unfinished in held:
            try:
                self._finish_with_retry(unfinished)
                written += 1
            except StorageError as e:
                with self._unfinished_lock:
                    self._unfinished.setdefault((user_id, unfinished.subscription_id), unfinished)
                self.logger.warning("Held unsubscribe result still not written", {
                    'subscription_id': unfinished.subscription_id, 'error': str(e)
                })
            except SubscriptionEngineError as e:
                self.logger.warning("Dropping held unsubscribe result", {
                    'subscription_id': unfinished.subscription_id, 'error': str(e)
                })
        if written:
            self.logger.info("Wrote held unsubscribe results", {'user_id': user_id, 'count': written})
        return written

    def bulk_unsubscribe(self, user_id: str, subscription_ids: Iterable[int],
                         dry_run: bool = False) -> List[UnsubscribeOutcome]:
        """
        Unsubscribe from many subscriptions concurrently.

        Items are independent: a failure or error on one never affects another.

        Returns:
            One outcome per requested id, in request order
        """
        requested = list(subscription_ids)
        unique = list(dict.fromkeys(requested))
        if not unique:
            return []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(unique)),
                                thread_name_prefix='unsubscribe') as pool:
            futures = {sid: pool.submit(self._unsubscribe_item, user_id, sid, dry_run) for sid in unique}
            outcomes = {sid: future.result() for sid, future in futures.items()}

        succeeded = sum(1 for o in outcomes.values() if o.success)
        self.logger.info("Bulk unsubscribe finished", {
            'user_id': user_id,
            'requested': len(requested),
            'succeeded': succeeded,
            'failed': len(outcomes) - succeeded,
            'dry_run': dry_run
        })
        return [outcomes[sid] for sid in requested]

    def _unsubscribe_item(self, user_id: str, subscription_id: int, dry_run: bool) -> UnsubscribeOutcome:
        try:
            return self.unsubscribe(user_id, subscription_id, dry_run=dry_run)
        except SubscriptionEngineError as e:
            return UnsubscribeOutcome(subscription_id, success=False, message=str(e),
                                      error_message=str(e), dry_run=dry_run)
        except Exception as e:
            self.logger.log_exception(e, {'user_id': user_id, 'subscription_id': subscription_id})
            return UnsubscribeOutcome(subscription_id, success=False, message=f'Unexpected error: {e}',
                                      error_message=f'Unexpected error: {e}', dry_run=dry_run)

    def retry_failed(self, user_id: str, dry_run: bool = False) -> List[UnsubscribeOutcome]:
        """
        Retry every failed subscription whose backoff window has passed.

        Subscriptions still inside their window are reported as deferred with
        the time they become due.
        """
        self.flush_unfinished(user_id)
        now = self.clock()
        due: List[int] = []
        deferred: Dict[int, UnsubscribeOutcome] = {}

        with self.store.unit_of_work() as uow:
            for record in uow.list_records(user_id, ListFilters(status=UnsubscribeStatus.FAILED)):
                attempts = uow.attempts(record.id)
                if attempts:
                    retry_at = self.retry_policy.next_retry_at(attempts[-1].attempted_at,
                                                               consecutive_failures(attempts))
                    if now < retry_at:
                        deferred[record.id] = UnsubscribeOutcome(
                            record.id, success=False, status=record.unsubscribe_status,
                            sender_address=record.sender_address, deferred=True, retry_at=retry_at,
                            message=f'Retry deferred until {retry_at.isoformat()}'
                        )
                        continue
                due.append(record.id)

        outcomes = {o.subscription_id: o for o in self.bulk_unsubscribe(user_id, due, dry_run)}
        outcomes.update(deferred)
        return [outcomes[sid] for sid in sorted(outcomes)]

    def resubscribe(self, user_id: str, subscription_id: int) -> SubscriptionRecord:
        """
        Reset a subscription to not_requested.

        Informational only: nothing is sent to the sender. Classification
        (confidence, category, activity) is left unchanged.
        """
        self.flush_unfinished(user_id)
        with self.store.unit_of_work() as uow:
            record = uow.get_record_by_id(user_id, subscription_id)
            record.unsubscribe_status = transition(record.unsubscribe_status,
                                                   UnsubscribeStatus.NOT_REQUESTED)
            record.is_unsubscribed = False
            record.unsubscribed_at = None
            record.unsubscribe_reason = None
            uow.put_record(record)

        if self.cache is not None:
            self.cache.invalidate(user_id, record.sender_address)
        self.logger.info("Resubscribed", {'user_id': user_id, 'sender': record.sender_address})
        return record
