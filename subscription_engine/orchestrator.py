"""
Detection and unsubscribe orchestration.

The Orchestrator is the engine's facade. It streams a user's messages through
per-sender lanes, folds each message into its sender aggregate, scores and
guards the result, keeps subscription records current, and hands unsubscribe
requests to the UnsubscribeExecutor.

Same-sender work is serialized by routing every sender to one of N
single-worker lanes with a stable hash; different senders run in parallel.
Every message is applied in its own storage unit of work.
"""

import logging
import threading
import zlib
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from tenacity import Retrying, before_sleep_log

from .cache import SenderPatternCache
from .collaborators import FilterClient, HttpClient, MailSender, MessageSource, ThreadLookup
from .config import Config
from .database import DatabaseManager, ListFilters, SubscriptionStore
from .detection.aggregator import fold, is_replay
from .detection.guard import TWO_WAY_CAP, FalsePositiveGuard, UserProfile, domain_is_whitelisted
from .detection.scorer import POSSIBLE_THRESHOLD, Scorer, tier_for
from .detection.signal_table import DEFAULT_SIGNAL_TABLE, SignalTable, load_signal_table
from .detection.types import NormalizedMessage, SubscriptionRecord, UnsubscribeStatus
from .exceptions import StorageError
from .logging import EngineLogger
from .unsubscribe.methods import UnknownMethod
from .unsubscribe.resolver import UnsubscribeResolver
from .unsubscribe_executor import (
    RetryPolicy, SmtpMailSender, UnsubscribeExecutor, UnsubscribeOutcome,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200

CREATED = 'created'
UPDATED = 'updated'
SKIPPED = 'skipped'
DUPLICATE = 'duplicate'
VETOED = 'vetoed'
CANCELLED = 'cancelled'
DEFERRED = 'deferred'
VIOLATION = 'violation'


@dataclass
class DetectionSummary:
    """Counts for one detect or ingest run."""
    user_id: str
    messages_seen: int = 0
    new_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    duplicate_count: int = 0
    vetoed_count: int = 0
    deferred_count: int = 0
    cancelled_count: int = 0
    violation_count: int = 0
    replayed_deferred: int = 0
    cancelled: bool = False

    def record(self, outcome: str) -> None:
        if outcome == CREATED:
            self.new_count += 1
        elif outcome in (UPDATED, VIOLATION):
            self.updated_count += 1
            if outcome == VIOLATION:
                self.violation_count += 1
        elif outcome == DUPLICATE:
            self.duplicate_count += 1
        elif outcome == VETOED:
            self.vetoed_count += 1
        elif outcome == DEFERRED:
            self.deferred_count += 1
        elif outcome == CANCELLED:
            self.cancelled_count += 1
        else:
            self.skipped_count += 1

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class _Task:
    user_id: str
    message: NormalizedMessage
    sender_key: str


def lane_index(sender_address: str, lane_count: int) -> int:
    """Stable lane for a sender: CRC32 of the address modulo the lane count."""
    return zlib.crc32(sender_address.lower().encode('utf-8')) % lane_count


def _batches(messages: Iterable[NormalizedMessage], size: int) -> Iterator[List[NormalizedMessage]]:
    batch: List[NormalizedMessage] = []
    for message in messages:
        batch.append(message)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


class Orchestrator:
    """Facade over detection, persistence and unsubscribe execution."""

    def __init__(
        self,
        store: SubscriptionStore,
        executor: Optional[UnsubscribeExecutor] = None,
        source: Optional[MessageSource] = None,
        thread_lookup: Optional[ThreadLookup] = None,
        table: SignalTable = DEFAULT_SIGNAL_TABLE,
        resolver: Optional[UnsubscribeResolver] = None,
        cache: Optional[SenderPatternCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        lane_count: Optional[int] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """
        Args:
            store: Storage collaborator
            executor: Unsubscribe executor; a default one on `store` is built if omitted
            source: MessageSource used by detect() when none is passed
            thread_lookup: Optional ThreadLookup for two-way detection
            table: Signal table for scoring
            resolver: Unsubscribe method resolver
            cache: Sender pattern cache shared with the executor
            retry_policy: Backoff schedule for storage retries
            lane_count: Number of sender lanes (default: CPU count)
            batch_size: Messages read from the source per batch
            sleep: Sleep function for storage retries (tests pass a no-op)
        """
        self.store = store
        self.source = source
        self.thread_lookup = thread_lookup
        self.table = table
        self.scorer = Scorer(table)
        self.guard = FalsePositiveGuard()
        self.resolver = resolver or UnsubscribeResolver()
        self.cache = cache if cache is not None else SenderPatternCache()
        self.retry_policy = retry_policy or RetryPolicy()
        self.executor = executor or UnsubscribeExecutor.build(
            store, resolver=self.resolver, retry_policy=self.retry_policy, cache=self.cache,
            sleep=sleep
        )
        if self.executor.cache is None:
            self.executor.cache = self.cache
        self.batch_size = max(1, batch_size)
        self._sleep = sleep
        self.logger = EngineLogger("orchestrator")

        self.lane_count = max(1, lane_count or Config.WORKER_POOL_SIZE)
        self._lanes = [ThreadPoolExecutor(max_workers=1, thread_name_prefix=f'sender-lane-{i}')
                       for i in range(self.lane_count)]
        self._deferred: List[_Task] = []
        self._deferred_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config=Config,
        database_url: Optional[str] = None,
        http_client: Optional[HttpClient] = None,
        mail_sender: Optional[MailSender] = None,
        filter_client: Optional[FilterClient] = None,
        **kwargs
    ) -> 'Orchestrator':
        """Build an orchestrator, its store and its executor from configuration."""
        db_manager = DatabaseManager(database_url or config.get_database_path())
        db_manager.initialize_database()
        store = SubscriptionStore(db_manager)

        table = load_signal_table(config.SIGNAL_TABLE_PATH) if config.SIGNAL_TABLE_PATH else DEFAULT_SIGNAL_TABLE
        retry_policy = RetryPolicy(config.BACKOFF_BASE_DELAY, config.BACKOFF_MAX_DELAY,
                                   config.STORAGE_MAX_RETRIES)
        cache = SenderPatternCache(config.PATTERN_CACHE_TTL)
        resolver = UnsubscribeResolver()
        if mail_sender is None:
            mail_sender = SmtpMailSender(config.SMTP_ADDRESS, config.SMTP_PASSWORD,
                                         config.SMTP_HOST, config.SMTP_PORT)
        executor = UnsubscribeExecutor.build(
            store,
            http_client=http_client,
            mail_sender=mail_sender,
            filter_client=filter_client,
            timeout=config.REQUEST_TIMEOUT,
            rate_limit_delay=config.RATE_LIMIT_DELAY,
            user_agent=config.USER_AGENT,
            resolver=resolver,
            retry_policy=retry_policy,
            cache=cache,
            max_workers=config.UNSUBSCRIBE_CONCURRENCY,
        )
        kwargs.setdefault('lane_count', config.WORKER_POOL_SIZE)
        kwargs.setdefault('batch_size', config.SCAN_BATCH_SIZE)
        return cls(store, executor=executor, table=table, resolver=resolver, cache=cache,
                   retry_policy=retry_policy, **kwargs)

    def close(self) -> None:
        for lane in self._lanes:
            lane.shutdown(wait=True)

    def __enter__(self) -> 'Orchestrator':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Detection

    def detect(self, user_id: str, source: Optional[MessageSource] = None,
               cancel_event: Optional[threading.Event] = None) -> DetectionSummary:
        """
        Full scan of a user's mailbox.

        Streams the source in batches and waits for each batch to finish
        before reading the next. Setting `cancel_event` stops the scan between
        messages; every message already applied stays fully applied.

        Returns:
            DetectionSummary with new/updated/skipped counts
        """
        source = source or self.source
        if source is None:
            raise ValueError("detect() needs a message source")

        summary = DetectionSummary(user_id=user_id)
        with self.logger.scoped_context({'user_id': user_id}), self.logger.time_operation("detect"):
            self._replay_deferred(user_id, summary, cancel_event)
            for batch in _batches(source.iter_messages(user_id), self.batch_size):
                if cancel_event is not None and cancel_event.is_set():
                    summary.cancelled = True
                    break
                summary.messages_seen += len(batch)
                self._run_batch(user_id, batch, summary, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True

            self.logger.info("Detection finished", summary.to_dict())
        return summary

    def ingest(self, user_id: str, messages: Iterable[NormalizedMessage],
               cancel_event: Optional[threading.Event] = None) -> DetectionSummary:
        """Apply newly arrived messages incrementally, one task per message."""
        summary = DetectionSummary(user_id=user_id)
        with self.logger.scoped_context({'user_id': user_id}):
            self._replay_deferred(user_id, summary, cancel_event)
            messages = list(messages)
            summary.messages_seen = len(messages)
            self._run_batch(user_id, messages, summary, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
        self.logger.debug("Ingest finished", summary.to_dict())
        return summary

    def pending_deferred(self, user_id: Optional[str] = None) -> int:
        with self._deferred_lock:
            return sum(1 for task in self._deferred if user_id is None or task.user_id == user_id)

    def _replay_deferred(self, user_id: str, summary: DetectionSummary,
                         cancel_event: Optional[threading.Event]) -> None:
        with self._deferred_lock:
            tasks = [t for t in self._deferred if t.user_id == user_id]
            self._deferred = [t for t in self._deferred if t.user_id != user_id]
        if not tasks:
            return
        self.logger.info("Re-applying deferred messages", {'count': len(tasks)})
        futures = [self._submit(task, cancel_event) for task in tasks]
        for future in futures:
            summary.record(future.result())
        summary.replayed_deferred += len(tasks)

    def _run_batch(self, user_id: str, messages: List[NormalizedMessage], summary: DetectionSummary,
                   cancel_event: Optional[threading.Event]) -> None:
        futures: List[List[Future]] = []
        for message in messages:
            tasks = self._route(user_id, message)
            if not tasks:
                summary.record(SKIPPED)
                continue
            # A user-sent message to several recipients counts once
            group = [self._submit(task, cancel_event) for task in tasks]
            futures.append(group)
        for group in futures:
            outcomes = [future.result() for future in group]
            summary.record(self._merge_outcomes(outcomes))

    @staticmethod
    def _merge_outcomes(outcomes: List[str]) -> str:
        for outcome in (DEFERRED, CREATED, VIOLATION, UPDATED, VETOED, CANCELLED, DUPLICATE):
            if outcome in outcomes:
                return outcome
        return SKIPPED

    def _route(self, user_id: str, message: NormalizedMessage) -> List[_Task]:
        """Aggregate keys a message belongs to: its sender, or the counterparts of a user-sent message."""
        if not message.is_sent_by_user:
            if not message.sender_address:
                logger.debug("Skipping message %s without sender", message.id)
                return []
            return [_Task(user_id, message, message.sender_address)]

        counterparts = [address for address in message.recipient_addresses if address]
        if not counterparts and message.thread_id and self.thread_lookup is not None:
            for other in self._thread_messages(user_id, message.thread_id):
                if not other.is_sent_by_user and other.sender_address not in counterparts:
                    counterparts.append(other.sender_address)
        return [_Task(user_id, message, address) for address in counterparts]

    def _submit(self, task: _Task, cancel_event: Optional[threading.Event]) -> Future:
        lane = self._lanes[lane_index(task.sender_key, self.lane_count)]
        return lane.submit(self._process, task, cancel_event)

    def _thread_messages(self, user_id: str, thread_id: str) -> List[NormalizedMessage]:
        try:
            return list(self.thread_lookup.thread_messages(user_id, thread_id))
        except Exception as e:
            # Missing thread context only weakens two-way detection
            logger.warning("Thread lookup failed for %s: %s", thread_id, e)
            return []

    def _counterpart_replied(self, task: _Task) -> bool:
        message = task.message
        if self.thread_lookup is None or not message.thread_id:
            return False
        for other in self._thread_messages(task.user_id, message.thread_id):
            if other.id == message.id:
                continue
            if message.is_sent_by_user and not other.is_sent_by_user and other.sender_address == task.sender_key:
                return True
            if not message.is_sent_by_user and other.is_sent_by_user:
                return True
        return False

    def _process(self, task: _Task, cancel_event: Optional[threading.Event]) -> str:
        if cancel_event is not None and cancel_event.is_set():
            return CANCELLED

        counterpart_replied = self._counterpart_replied(task)
        retrying = Retrying(
            before_sleep=before_sleep_log(logger, logging.WARNING),
            **self.retry_policy.storage_retry_kwargs(self._sleep)
        )
        try:
            return retrying(self._apply, task, counterpart_replied)
        except StorageError as e:
            with self._deferred_lock:
                self._deferred.append(task)
            self.logger.warning("Deferring message after storage failures", {
                'message_id': task.message.id,
                'sender': task.sender_key,
                'error': str(e)
            })
            return DEFERRED
        except Exception as e:
            self.logger.log_exception(e, {'message_id': task.message.id, 'sender': task.sender_key})
            return SKIPPED

    def _apply(self, task: _Task, counterpart_replied: bool) -> str:
        """Fold, score, guard and persist one message in one unit of work."""
        message = task.message
        with self.store.unit_of_work() as uow:
            aggregate = uow.get_or_create_aggregate(task.user_id, task.sender_key)
            if is_replay(aggregate, message):
                return DUPLICATE

            updated = fold(aggregate, message, counterpart_replied, self.table)
            uow.put_aggregate(updated)
            if not message.is_sent_by_user:
                self.cache.invalidate(task.user_id, task.sender_key)

            record = uow.get_record(task.user_id, task.sender_key)
            profile = uow.get_profile(task.user_id)
            score = self.scorer.score(message, updated)
            decision = self.guard.evaluate(message, updated, score, profile)

            if decision.vetoed:
                # The user's own mail never creates a record; an existing one goes inactive
                if record is None:
                    return VETOED
                record.is_active = False
                if updated.has_two_way_conversation:
                    record.confidence_score = min(record.confidence_score, TWO_WAY_CAP)
                    record.tier = tier_for(record.confidence_score)
                uow.put_record(record)
                return UPDATED

            if record is None and decision.confidence < POSSIBLE_THRESHOLD:
                return SKIPPED

            created = record is None
            if created:
                record = SubscriptionRecord(user_id=task.user_id, sender_address=task.sender_key)

            record.sender_name = updated.sender_name or record.sender_name
            record.category = score.category
            record.frequency_class = score.frequency.frequency_class
            record.confidence_score = decision.confidence
            record.tier = decision.tier
            record.is_active = decision.is_active
            record.sample_subjects = list(updated.sample_subjects)
            record.email_count = updated.email_count
            record.last_seen_at = updated.last_seen_at

            violation = False
            if record.unsubscribe_status is UnsubscribeStatus.SUCCEEDED:
                if record.unsubscribed_at is not None and message.received_at > record.unsubscribed_at:
                    record.emails_after_unsubscribe += 1
                    violation = True
            elif record.unsubscribe_status is not UnsubscribeStatus.PENDING:
                exclude = uow.failed_methods(record.id) if record.id is not None and \
                    record.unsubscribe_status is UnsubscribeStatus.FAILED else []
                record.unsubscribe_method = self.resolver.resolve(updated, exclude)
                if not exclude and not isinstance(record.unsubscribe_method, UnknownMethod):
                    self.cache.put(task.user_id, task.sender_key, record.unsubscribe_method)

            uow.put_record(record)

        if violation:
            self.logger.warning("Mail received after successful unsubscribe", {
                'sender': task.sender_key,
                'emails_after_unsubscribe': record.emails_after_unsubscribe
            })
            return VIOLATION
        return CREATED if created else UPDATED

    # Queries and actions

    def list_subscriptions(self, user_id: str, filters: Optional[ListFilters] = None) -> List[SubscriptionRecord]:
        with self.store.unit_of_work() as uow:
            return uow.list_records(user_id, filters)

    def get_subscription(self, user_id: str, subscription_id: int) -> SubscriptionRecord:
        with self.store.unit_of_work() as uow:
            return uow.get_record_by_id(user_id, subscription_id)

    def attempts(self, user_id: str, subscription_id: int):
        with self.store.unit_of_work() as uow:
            record = uow.get_record_by_id(user_id, subscription_id)
            return uow.attempts(record.id)

    def unsubscribe(self, user_id: str, subscription_id: int, dry_run: bool = False) -> UnsubscribeOutcome:
        return self.executor.unsubscribe(user_id, subscription_id, dry_run=dry_run)

    def bulk_unsubscribe(self, user_id: str, subscription_ids: Iterable[int],
                         dry_run: bool = False) -> List[UnsubscribeOutcome]:
        return self.executor.bulk_unsubscribe(user_id, subscription_ids, dry_run=dry_run)

    def retry_failed(self, user_id: str, dry_run: bool = False) -> List[UnsubscribeOutcome]:
        return self.executor.retry_failed(user_id, dry_run=dry_run)

    def resubscribe(self, user_id: str, subscription_id: int) -> SubscriptionRecord:
        return self.executor.resubscribe(user_id, subscription_id)

    def list_filter_rules(self, user_id: str) -> List[Dict[str, object]]:
        """Provider filter rules queued by the filter fallback, oldest first."""
        with self.store.unit_of_work() as uow:
            return [
                {'id': rule.id, 'sender': rule.sender_email, 'criteria': rule.criteria,
                 'action': rule.action, 'created_at': rule.created_at}
                for rule in uow.list_filter_rules(user_id)
            ]

    # User profile

    def get_profile(self, user_id: str) -> UserProfile:
        with self.store.unit_of_work() as uow:
            return uow.get_profile(user_id)

    def update_profile(self, user_id: str, first_name: Optional[str] = None,
                       conversation_tokens: Optional[Iterable[str]] = None) -> UserProfile:
        with self.store.unit_of_work() as uow:
            current = uow.get_profile(user_id)
            profile = UserProfile(
                user_id=user_id,
                first_name=first_name if first_name is not None else current.first_name,
                whitelisted_domains=current.whitelisted_domains,
                conversation_tokens=frozenset(conversation_tokens) if conversation_tokens is not None
                else current.conversation_tokens,
            )
            uow.save_profile(profile)
        return profile

    def whitelist_domain(self, user_id: str, domain: str) -> Tuple[UserProfile, int]:
        """Whitelist a domain and deactivate its existing records. Returns (profile, records changed)."""
        with self.store.unit_of_work() as uow:
            current = uow.get_profile(user_id)
            profile = current.with_domains(current.whitelisted_domains | {domain})
            uow.save_profile(profile)
            changed = 0
            for record in uow.list_records(user_id):
                if record.is_active and domain_is_whitelisted(record.sender_address, profile.whitelisted_domains):
                    record.is_active = False
                    uow.put_record(record)
                    changed += 1
        return profile, changed

    def remove_whitelisted_domain(self, user_id: str, domain: str) -> Tuple[UserProfile, int]:
        """Remove a whitelisted domain and reactivate records that qualify again."""
        domain = domain.strip().lower().lstrip('@')
        with self.store.unit_of_work() as uow:
            current = uow.get_profile(user_id)
            profile = current.with_domains(current.whitelisted_domains - {domain})
            uow.save_profile(profile)
            changed = 0
            for record in uow.list_records(user_id):
                if record.is_active or record.confidence_score < POSSIBLE_THRESHOLD:
                    continue
                if domain_is_whitelisted(record.sender_address, profile.whitelisted_domains):
                    continue
                if not domain_is_whitelisted(record.sender_address, frozenset({domain})):
                    continue
                aggregate = uow.get_aggregate(user_id, record.sender_address)
                if aggregate is not None and aggregate.has_two_way_conversation:
                    continue
                record.is_active = True
                uow.put_record(record)
                changed += 1
        return profile, changed
