"""
SQLAlchemy implementation of the storage collaborator.

`SubscriptionStore.unit_of_work()` yields a `StoreSession` that reads and
writes domain objects (aggregates, records, profiles) rather than rows. Each
unit of work commits on success and rolls back on any error; database errors
surface as StorageError so that callers can retry them.
"""

import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from datetime import datetime
from typing import Generator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..detection.guard import UserProfile
from ..detection.types import (
    FrequencyClass, SenderAggregate, SubscriptionCategory, SubscriptionRecord, Tier,
    UnsubscribeStatus, utcnow,
)
from ..exceptions import StorageError, SubscriptionNotFoundError
from ..unsubscribe.methods import UnsubscribeMethod, method_from_dict, method_to_dict
from .models import (
    MailFilterRule, SenderAggregateRow, Subscription, UnsubscribeAttempt, UserProfileRow,
)


@dataclass(frozen=True)
class AttemptRecord:
    """One dispatched unsubscribe action."""
    id: int
    subscription_id: int
    method: UnsubscribeMethod
    status: str
    attempted_at: datetime
    response_code: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == UnsubscribeStatus.SUCCEEDED.value


@dataclass
class ListFilters:
    """Optional filters for listing subscriptions."""
    status: Optional[UnsubscribeStatus] = None
    category: Optional[SubscriptionCategory] = None
    is_active: Optional[bool] = None
    min_confidence: Optional[float] = None
    tier: Optional[Tier] = None
    sender_contains: Optional[str] = None


def _aggregate_from_row(row: SenderAggregateRow) -> SenderAggregate:
    return SenderAggregate(
        user_id=row.user_id,
        sender_address=row.sender_address,
        sender_name=row.sender_name or '',
        email_count=row.email_count or 0,
        distinct_subject_count=row.distinct_subject_count or 0,
        subject_fingerprints=row.subject_fingerprints or [],
        first_seen_at=row.first_seen_at,
        last_seen_at=row.last_seen_at,
        interval_samples=row.interval_samples or [],
        saw_list_unsubscribe_header=bool(row.saw_list_unsubscribe_header),
        saw_one_click_header=bool(row.saw_one_click_header),
        provider_category_tally=row.provider_category_tally or {},
        has_two_way_conversation=bool(row.has_two_way_conversation),
        sample_subjects=row.sample_subjects or [],
        inbound_thread_ids=row.inbound_thread_ids or [],
        outbound_thread_ids=row.outbound_thread_ids or [],
        recent_message_ids=row.recent_message_ids or [],
        one_click_url=row.one_click_url,
        list_unsubscribe_url=row.list_unsubscribe_url,
        list_unsubscribe_mailto=row.list_unsubscribe_mailto,
        body_unsubscribe_url=row.body_unsubscribe_url,
    )


def _apply_aggregate(row: SenderAggregateRow, aggregate: SenderAggregate) -> None:
    snapshot = aggregate.snapshot()
    for key in ('sender_name', 'email_count', 'distinct_subject_count', 'first_seen_at', 'last_seen_at',
                'saw_list_unsubscribe_header', 'saw_one_click_header', 'has_two_way_conversation',
                'interval_samples', 'subject_fingerprints', 'sample_subjects',
                'provider_category_tally', 'inbound_thread_ids', 'outbound_thread_ids',
                'recent_message_ids', 'one_click_url', 'list_unsubscribe_url',
                'list_unsubscribe_mailto', 'body_unsubscribe_url'):
        setattr(row, key, snapshot[key])


def _record_from_row(row: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row.id,
        user_id=row.user_id,
        sender_address=row.sender_email,
        sender_name=row.sender_name or '',
        category=SubscriptionCategory(row.category or SubscriptionCategory.OTHER.value),
        frequency_class=FrequencyClass(row.frequency or FrequencyClass.IRREGULAR.value),
        confidence_score=row.confidence_score or 0.0,
        tier=Tier(row.tier or Tier.UNLIKELY.value),
        unsubscribe_method=method_from_dict(row.unsubscribe_method_data),
        is_active=bool(row.is_active),
        is_unsubscribed=bool(row.is_unsubscribed),
        unsubscribe_status=UnsubscribeStatus(row.unsubscribe_status or UnsubscribeStatus.NOT_REQUESTED.value),
        sample_subjects=row.sample_subjects or [],
        email_count=row.email_count or 0,
        last_seen_at=row.last_seen,
        unsubscribe_reason=row.unsubscribe_reason,
        unsubscribed_at=row.unsubscribed_at,
        emails_after_unsubscribe=row.emails_after_unsubscribe or 0,
    )


def _apply_record(row: Subscription, record: SubscriptionRecord) -> None:
    row.user_id = record.user_id
    row.sender_email = record.sender_address
    row.sender_name = record.sender_name
    row.sender_domain = record.sender_domain
    row.category = record.category.value
    row.frequency = record.frequency_class.value
    row.confidence_score = record.confidence_score
    row.tier = record.tier.value
    row.unsubscribe_method = record.unsubscribe_method.kind.value
    row.unsubscribe_target = record.unsubscribe_method.target
    row.unsubscribe_method_data = method_to_dict(record.unsubscribe_method)
    row.sample_subjects = list(record.sample_subjects)
    row.email_count = record.email_count
    row.last_seen = record.last_seen_at
    row.is_active = record.is_active
    row.is_unsubscribed = record.is_unsubscribed
    row.unsubscribe_status = record.unsubscribe_status.value
    row.unsubscribe_reason = record.unsubscribe_reason
    row.unsubscribed_at = record.unsubscribed_at
    if (record.emails_after_unsubscribe or 0) > (row.emails_after_unsubscribe or 0):
        row.last_violation_at = record.last_seen_at
    row.emails_after_unsubscribe = record.emails_after_unsubscribe


def _attempt_from_row(row: UnsubscribeAttempt) -> AttemptRecord:
    return AttemptRecord(
        id=row.id,
        subscription_id=row.subscription_id,
        method=method_from_dict(row.method_data),
        status=row.status,
        attempted_at=row.attempted_at,
        response_code=row.response_code,
        error_message=row.error_message,
    )


class StoreSession:
    """Domain-level view of one database session. Every call is keyed by user id."""

    def __init__(self, session: Session):
        self.session = session

    # Aggregates

    def _aggregate_row(self, user_id: str, sender_address: str) -> Optional[SenderAggregateRow]:
        return self.session.query(SenderAggregateRow).filter_by(
            user_id=user_id, sender_address=sender_address.lower()
        ).first()

    def get_aggregate(self, user_id: str, sender_address: str) -> Optional[SenderAggregate]:
        row = self._aggregate_row(user_id, sender_address)
        return _aggregate_from_row(row) if row is not None else None

    def get_or_create_aggregate(self, user_id: str, sender_address: str) -> SenderAggregate:
        aggregate = self.get_aggregate(user_id, sender_address)
        if aggregate is None:
            aggregate = SenderAggregate(user_id=user_id, sender_address=sender_address.lower())
        return aggregate

    def put_aggregate(self, aggregate: SenderAggregate) -> None:
        row = self._aggregate_row(aggregate.user_id, aggregate.sender_address)
        if row is None:
            row = SenderAggregateRow(user_id=aggregate.user_id, sender_address=aggregate.sender_address)
            self.session.add(row)
        _apply_aggregate(row, aggregate)
        self.session.flush()

    # Subscription records

    def _record_row(self, user_id: str, record_id: int) -> Subscription:
        row = self.session.query(Subscription).filter_by(user_id=user_id, id=record_id).first()
        if row is None:
            raise SubscriptionNotFoundError(
                f"Subscription {record_id} not found",
                {'user_id': user_id, 'subscription_id': record_id}
            )
        return row

    def get_record(self, user_id: str, sender_address: str) -> Optional[SubscriptionRecord]:
        row = self.session.query(Subscription).filter_by(
            user_id=user_id, sender_email=sender_address.lower()
        ).first()
        return _record_from_row(row) if row is not None else None

    def get_record_by_id(self, user_id: str, record_id: int) -> SubscriptionRecord:
        return _record_from_row(self._record_row(user_id, record_id))

    def put_record(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """Insert or update a record, returning it with its id set."""
        if record.id is not None:
            row = self._record_row(record.user_id, record.id)
        else:
            row = self.session.query(Subscription).filter_by(
                user_id=record.user_id, sender_email=record.sender_address
            ).first()
            if row is None:
                row = Subscription(user_id=record.user_id, sender_email=record.sender_address)
                self.session.add(row)
        _apply_record(row, record)
        self.session.flush()
        record.id = row.id
        return record

    def list_records(self, user_id: str, filters: Optional[ListFilters] = None) -> List[SubscriptionRecord]:
        filters = filters or ListFilters()
        query = self.session.query(Subscription).filter(Subscription.user_id == user_id)
        if filters.status is not None:
            query = query.filter(Subscription.unsubscribe_status == UnsubscribeStatus(filters.status).value)
        if filters.category is not None:
            query = query.filter(Subscription.category == SubscriptionCategory(filters.category).value)
        if filters.is_active is not None:
            query = query.filter(Subscription.is_active == filters.is_active)
        if filters.min_confidence is not None:
            query = query.filter(Subscription.confidence_score >= filters.min_confidence)
        if filters.tier is not None:
            query = query.filter(Subscription.tier == Tier(filters.tier).value)
        if filters.sender_contains:
            query = query.filter(Subscription.sender_email.contains(filters.sender_contains.lower()))
        rows = query.order_by(Subscription.confidence_score.desc(), Subscription.sender_email).all()
        return [_record_from_row(row) for row in rows]

    # Unsubscribe attempts

    def add_attempt(self, record_id: int, method: UnsubscribeMethod, status: UnsubscribeStatus,
                    response_code: Optional[int] = None, error_message: Optional[str] = None,
                    attempted_at: Optional[datetime] = None) -> AttemptRecord:
        attempt = UnsubscribeAttempt(
            subscription_id=record_id,
            attempted_at=attempted_at or utcnow(),
            method_used=method.kind.value,
            method_data=method_to_dict(method),
            target=method.target,
            status=status.value,
            response_code=response_code,
            error_message=error_message
        )
        self.session.add(attempt)
        self.session.flush()
        return _attempt_from_row(attempt)

    def attempts(self, record_id: int) -> List[AttemptRecord]:
        rows = self.session.query(UnsubscribeAttempt).filter_by(
            subscription_id=record_id
        ).order_by(UnsubscribeAttempt.attempted_at, UnsubscribeAttempt.id).all()
        return [_attempt_from_row(row) for row in rows]

    def failed_methods(self, record_id: int) -> List[UnsubscribeMethod]:
        """Methods that failed since the last successful attempt."""
        failed: List[UnsubscribeMethod] = []
        for attempt in self.attempts(record_id):
            if attempt.succeeded:
                failed = []
            elif attempt.method not in failed:
                failed.append(attempt.method)
        return failed

    # User profiles

    def get_profile(self, user_id: str) -> UserProfile:
        row = self.session.query(UserProfileRow).filter_by(user_id=user_id).first()
        if row is None:
            return UserProfile(user_id=user_id)
        return UserProfile(
            user_id=user_id,
            first_name=row.first_name,
            whitelisted_domains=frozenset(row.whitelisted_domains or []),
            conversation_tokens=frozenset(row.conversation_tokens or []),
        )

    def save_profile(self, profile: UserProfile) -> None:
        row = self.session.query(UserProfileRow).filter_by(user_id=profile.user_id).first()
        if row is None:
            row = UserProfileRow(user_id=profile.user_id)
            self.session.add(row)
        row.first_name = profile.first_name
        row.whitelisted_domains = sorted(profile.whitelisted_domains)
        row.conversation_tokens = sorted(profile.conversation_tokens)
        self.session.flush()

    # Filter rules

    def create_filter_rule(self, user_id: str, sender_address: str, criteria: str,
                           action: str = 'archive') -> int:
        """Queue a filter rule; an identical existing rule is reused."""
        existing = self.session.query(MailFilterRule).filter_by(
            user_id=user_id, criteria=criteria, action=action
        ).first()
        if existing is not None:
            return existing.id
        rule = MailFilterRule(user_id=user_id, sender_email=sender_address, criteria=criteria, action=action)
        self.session.add(rule)
        self.session.flush()
        return rule.id

    def list_filter_rules(self, user_id: str) -> List[MailFilterRule]:
        return self.session.query(MailFilterRule).filter_by(user_id=user_id).order_by(MailFilterRule.id).all()


class SubscriptionStore:
    """Unit-of-work factory over a DatabaseManager."""

    def __init__(self, db_manager):
        self.db_manager = db_manager
        # SQLite connections are not safe to share between writers
        self._lock = threading.RLock() if db_manager.database_url.startswith('sqlite') else None

    @contextmanager
    def unit_of_work(self) -> Generator[StoreSession, None, None]:
        """
        Open a storage transaction.

        Commits when the block exits normally. Rolls back on any exception;
        SQLAlchemy errors are re-raised as StorageError.
        """
        with self._lock if self._lock is not None else nullcontext():
            session = self.db_manager.get_session()
            try:
                yield StoreSession(session)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Storage operation failed: {e}", {'error_type': type(e).__name__}) from e
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
