"""
Core records shared across the detection pipeline.

NormalizedMessage is produced by the ingestion collaborator and is read-only
here. SenderAggregate is the running per-sender summary. SubscriptionRecord is
the persisted classification result.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Iterator, List, Mapping, Optional, Tuple

INTERVAL_SAMPLE_CAP = 50
SAMPLE_SUBJECT_CAP = 5
THREAD_WINDOW_CAP = 50
MESSAGE_ID_WINDOW_CAP = 50
SUBJECT_WINDOW_CAP = 50


class ProviderCategory(str, Enum):
    """Category assigned to a message by the mail provider."""
    PRIMARY = 'primary'
    PROMOTIONS = 'promotions'
    SOCIAL = 'social'
    UPDATES = 'updates'
    FORUMS = 'forums'
    BULK = 'bulk'

    @classmethod
    def parse(cls, value: Any) -> Optional['ProviderCategory']:
        """Parse a provider label ('promotions', 'CATEGORY_PROMOTIONS', ...); None if unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        name = value.strip().lower()
        if name.startswith('category_'):
            name = name[len('category_'):]
        if name == 'personal':
            name = 'primary'
        try:
            return cls(name)
        except ValueError:
            return None


class Tier(str, Enum):
    CERTAIN = 'certain'
    LIKELY = 'likely'
    POSSIBLE = 'possible'
    UNLIKELY = 'unlikely'


class FrequencyClass(str, Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    IRREGULAR = 'irregular'


class SubscriptionCategory(str, Enum):
    NEWSLETTER = 'newsletter'
    MARKETING = 'marketing'
    NOTIFICATION = 'notification'
    SOCIAL = 'social'
    OTHER = 'other'


class UnsubscribeStatus(str, Enum):
    NOT_REQUESTED = 'not_requested'
    PENDING = 'pending'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class KnownHeader(str, Enum):
    """Headers the engine reads. Anything else in a header map is ignored."""
    LIST_UNSUBSCRIBE = 'List-Unsubscribe'
    LIST_UNSUBSCRIBE_POST = 'List-Unsubscribe-Post'
    LIST_ID = 'List-Id'
    PRECEDENCE = 'Precedence'
    IN_REPLY_TO = 'In-Reply-To'
    REFERENCES = 'References'
    AUTO_SUBMITTED = 'Auto-Submitted'


class HeaderMap(Mapping[str, str]):
    """Immutable, case-insensitive header map.

    Keys keep their original spelling for iteration; lookups ignore case.
    Values that are not strings are coerced, None values are dropped.
    """

    def __init__(self, headers: Optional[Mapping[str, Any]] = None):
        self._items: Dict[str, Tuple[str, str]] = {}
        for key, value in (headers or {}).items():
            if key is None or value is None:
                continue
            if isinstance(value, (list, tuple)):
                value = ', '.join(str(v) for v in value)
            self._items[str(key).strip().lower()] = (str(key).strip(), str(value))

    def __getitem__(self, key: str) -> str:
        return self._items[key.lower()][1]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"HeaderMap({dict(self.items())!r})"

    def value(self, header: KnownHeader) -> Optional[str]:
        """Typed accessor for a known header; None when absent or blank."""
        item = self._items.get(header.value.lower())
        if item is None or not item[1].strip():
            return None
        return item[1]

    def has(self, header: KnownHeader) -> bool:
        return header.value.lower() in self._items

    def list_unsubscribe(self) -> Optional[str]:
        return self.value(KnownHeader.LIST_UNSUBSCRIBE)

    def list_unsubscribe_post(self) -> Optional[str]:
        return self.value(KnownHeader.LIST_UNSUBSCRIBE_POST)

    def in_reply_to(self) -> Optional[str]:
        return self.value(KnownHeader.IN_REPLY_TO)

    def references(self) -> Optional[str]:
        return self.value(KnownHeader.REFERENCES)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Timestamps are compared and stored as naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    return to_naive_utc(datetime.fromisoformat(str(value).replace('Z', '+00:00')))


def _as_address_tuple(value: Any) -> Tuple[str, ...]:
    """A single address string or an iterable of addresses as a tuple."""
    if isinstance(value, str):
        return tuple(part for part in value.split(',') if part.strip())
    return tuple(value or ())


@dataclass(frozen=True)
class NormalizedMessage:
    """A message as delivered by the ingestion collaborator."""

    id: str
    sender_address: str
    received_at: datetime
    sender_display_name: str = ''
    subject: str = ''
    body_snippet: str = ''
    headers: HeaderMap = field(default_factory=HeaderMap)
    is_sent_by_user: bool = False
    thread_id: Optional[str] = None
    provider_category: Optional[ProviderCategory] = None
    recipient_addresses: Tuple[str, ...] = ()
    body_html: Optional[str] = None

    def __post_init__(self):
        # Frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, 'sender_address', (self.sender_address or '').strip().lower())
        object.__setattr__(self, 'received_at', _parse_datetime(self.received_at))
        if not isinstance(self.headers, HeaderMap):
            object.__setattr__(self, 'headers', HeaderMap(self.headers))
        object.__setattr__(self, 'provider_category', ProviderCategory.parse(self.provider_category))
        object.__setattr__(self, 'recipient_addresses', tuple(
            address.strip().lower() for address in _as_address_tuple(self.recipient_addresses) if address
        ))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'NormalizedMessage':
        """Build a message from a JSON-like mapping (camelCase or snake_case keys)."""
        def pick(*names, default=None):
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return default

        return cls(
            id=str(pick('id', 'message_id')),
            sender_address=pick('sender_address', 'senderAddress', default=''),
            sender_display_name=pick('sender_display_name', 'senderDisplayName', default=''),
            subject=pick('subject', default=''),
            body_snippet=pick('body_snippet', 'bodySnippet', default=''),
            headers=HeaderMap(pick('headers', 'headerMap', default={})),
            received_at=_parse_datetime(pick('received_at', 'receivedAt')),
            is_sent_by_user=bool(pick('is_sent_by_user', 'isSentByUser', default=False)),
            thread_id=pick('thread_id', 'threadId'),
            provider_category=pick('provider_category', 'providerCategory'),
            recipient_addresses=_as_address_tuple(pick('recipient_addresses', 'recipientAddresses', default=())),
            body_html=pick('body_html', 'bodyHtml'),
        )


@dataclass
class SenderAggregate:
    """Running statistics for one (user, sender address) pair."""

    user_id: str
    sender_address: str
    sender_name: str = ''
    email_count: int = 0
    distinct_subject_count: int = 0
    subject_fingerprints: Deque[str] = field(default_factory=lambda: deque(maxlen=SUBJECT_WINDOW_CAP))
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    interval_samples: Deque[float] = field(default_factory=lambda: deque(maxlen=INTERVAL_SAMPLE_CAP))
    saw_list_unsubscribe_header: bool = False
    saw_one_click_header: bool = False
    provider_category_tally: Dict[str, int] = field(default_factory=dict)
    has_two_way_conversation: bool = False
    sample_subjects: Deque[str] = field(default_factory=lambda: deque(maxlen=SAMPLE_SUBJECT_CAP))
    inbound_thread_ids: Deque[str] = field(default_factory=lambda: deque(maxlen=THREAD_WINDOW_CAP))
    outbound_thread_ids: Deque[str] = field(default_factory=lambda: deque(maxlen=THREAD_WINDOW_CAP))
    recent_message_ids: Deque[str] = field(default_factory=lambda: deque(maxlen=MESSAGE_ID_WINDOW_CAP))
    one_click_url: Optional[str] = None
    list_unsubscribe_url: Optional[str] = None
    list_unsubscribe_mailto: Optional[str] = None
    body_unsubscribe_url: Optional[str] = None

    def __post_init__(self):
        # Re-bound collections handed in as plain lists (e.g. loaded from storage)
        self.interval_samples = deque(self.interval_samples, maxlen=INTERVAL_SAMPLE_CAP)
        self.sample_subjects = deque(self.sample_subjects, maxlen=SAMPLE_SUBJECT_CAP)
        self.inbound_thread_ids = deque(self.inbound_thread_ids, maxlen=THREAD_WINDOW_CAP)
        self.outbound_thread_ids = deque(self.outbound_thread_ids, maxlen=THREAD_WINDOW_CAP)
        self.recent_message_ids = deque(self.recent_message_ids, maxlen=MESSAGE_ID_WINDOW_CAP)
        self.subject_fingerprints = deque(self.subject_fingerprints, maxlen=SUBJECT_WINDOW_CAP)
        self.provider_category_tally = dict(self.provider_category_tally)

    @property
    def sender_domain(self) -> str:
        return self.sender_address.rpartition('@')[2]

    def copy(self) -> 'SenderAggregate':
        return SenderAggregate(
            user_id=self.user_id,
            sender_address=self.sender_address,
            sender_name=self.sender_name,
            email_count=self.email_count,
            distinct_subject_count=self.distinct_subject_count,
            subject_fingerprints=list(self.subject_fingerprints),
            first_seen_at=self.first_seen_at,
            last_seen_at=self.last_seen_at,
            interval_samples=list(self.interval_samples),
            saw_list_unsubscribe_header=self.saw_list_unsubscribe_header,
            saw_one_click_header=self.saw_one_click_header,
            provider_category_tally=dict(self.provider_category_tally),
            has_two_way_conversation=self.has_two_way_conversation,
            sample_subjects=list(self.sample_subjects),
            inbound_thread_ids=list(self.inbound_thread_ids),
            outbound_thread_ids=list(self.outbound_thread_ids),
            recent_message_ids=list(self.recent_message_ids),
            one_click_url=self.one_click_url,
            list_unsubscribe_url=self.list_unsubscribe_url,
            list_unsubscribe_mailto=self.list_unsubscribe_mailto,
            body_unsubscribe_url=self.body_unsubscribe_url,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SenderAggregate):
            return NotImplemented
        return self.snapshot() == other.snapshot()

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data view used for equality and persistence."""
        return {
            'user_id': self.user_id,
            'sender_address': self.sender_address,
            'sender_name': self.sender_name,
            'email_count': self.email_count,
            'distinct_subject_count': self.distinct_subject_count,
            'subject_fingerprints': list(self.subject_fingerprints),
            'first_seen_at': self.first_seen_at,
            'last_seen_at': self.last_seen_at,
            'interval_samples': list(self.interval_samples),
            'saw_list_unsubscribe_header': self.saw_list_unsubscribe_header,
            'saw_one_click_header': self.saw_one_click_header,
            'provider_category_tally': dict(self.provider_category_tally),
            'has_two_way_conversation': self.has_two_way_conversation,
            'sample_subjects': list(self.sample_subjects),
            'inbound_thread_ids': list(self.inbound_thread_ids),
            'outbound_thread_ids': list(self.outbound_thread_ids),
            'recent_message_ids': list(self.recent_message_ids),
            'one_click_url': self.one_click_url,
            'list_unsubscribe_url': self.list_unsubscribe_url,
            'list_unsubscribe_mailto': self.list_unsubscribe_mailto,
            'body_unsubscribe_url': self.body_unsubscribe_url,
        }


@dataclass
class SubscriptionRecord:
    """Persisted classification of a sender as a subscription."""

    user_id: str
    sender_address: str
    sender_name: str = ''
    category: SubscriptionCategory = SubscriptionCategory.OTHER
    frequency_class: FrequencyClass = FrequencyClass.IRREGULAR
    confidence_score: float = 0.0
    tier: Tier = Tier.UNLIKELY
    unsubscribe_method: Any = None
    is_active: bool = True
    is_unsubscribed: bool = False
    unsubscribe_status: UnsubscribeStatus = UnsubscribeStatus.NOT_REQUESTED
    sample_subjects: List[str] = field(default_factory=list)
    id: Optional[int] = None
    email_count: int = 0
    last_seen_at: Optional[datetime] = None
    unsubscribe_reason: Optional[str] = None
    unsubscribed_at: Optional[datetime] = None
    emails_after_unsubscribe: int = 0

    def __post_init__(self):
        if self.unsubscribe_method is None:
            # Imported here: the method variants live with the resolver
            from ..unsubscribe.methods import UnknownMethod
            self.unsubscribe_method = UnknownMethod()
        self.confidence_score = min(max(float(self.confidence_score), 0.0), 1.0)
        self.sample_subjects = list(self.sample_subjects)[-SAMPLE_SUBJECT_CAP:]

    @property
    def sender_domain(self) -> str:
        return self.sender_address.rpartition('@')[2]
