"""
Versioned table of signal weights and detection patterns.

The scorer reads weights by signal name and the extractors read compiled
patterns from the same table, so either can be tested against a custom table.
A JSON file can override any part of the default table.
"""

import json
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Pattern, Tuple, Union

from ..exceptions import SignalTableError
from .types import SubscriptionCategory

# Signal names
ONE_CLICK_HEADER = 'one_click_header'
LIST_UNSUBSCRIBE_HEADER = 'list_unsubscribe_header'
PROVIDER_BULK_CATEGORY = 'provider_bulk_category'
NO_REPLY_SENDER = 'no_reply_sender'
BODY_UNSUBSCRIBE_LINK = 'body_unsubscribe_link'
BULK_SUBJECT = 'bulk_subject'
HIGH_FREQUENCY = 'high_frequency'
REGULAR_CADENCE = 'regular_cadence'

DEFAULT_WEIGHTS: Dict[str, float] = {
    ONE_CLICK_HEADER: 0.95,
    LIST_UNSUBSCRIBE_HEADER: 0.90,
    PROVIDER_BULK_CATEGORY: 0.70,
    NO_REPLY_SENDER: 0.60,
    BODY_UNSUBSCRIBE_LINK: 0.70,
    BULK_SUBJECT: 0.40,
    HIGH_FREQUENCY: 0.50,
    REGULAR_CADENCE: 0.45,
}

# high_frequency = base + min(monthly_rate / divisor, bonus cap), above the threshold
HIGH_FREQUENCY_THRESHOLD = 4.0
HIGH_FREQUENCY_DIVISOR = 20.0
HIGH_FREQUENCY_BONUS_CAP = 0.3

NO_REPLY_LOCAL_PART = r'(no-?reply|donotreply|newsletter|updates|notifications|marketing)'
BODY_UNSUBSCRIBE_KEYWORDS = r'unsubscribe|opt-out|preferences|remove'


@dataclass(frozen=True)
class SubjectPattern:
    """A named subject regex and the category it suggests."""
    name: str
    pattern: Pattern
    category: SubscriptionCategory

    def matches(self, subject: str) -> bool:
        return bool(self.pattern.search(subject))


def _subject(name: str, regex: str, category: SubscriptionCategory) -> SubjectPattern:
    return SubjectPattern(name, re.compile(regex, re.IGNORECASE), category)


DEFAULT_SUBJECT_PATTERNS: Tuple[SubjectPattern, ...] = (
    _subject('newsletter', r'\bnewsletter\b', SubscriptionCategory.NEWSLETTER),
    _subject('issue_number', r'\b(issue|edition|vol\.?|volume)\s*#?\s*\d+', SubscriptionCategory.NEWSLETTER),
    _subject('digest', r'\b(daily|weekly|monthly)\s+(digest|update|roundup|recap|summary)\b|\bdigest\b',
             SubscriptionCategory.NEWSLETTER),
    _subject('percent_off', r'\b\d{1,3}\s?%\s?off\b', SubscriptionCategory.MARKETING),
    _subject('sale', r'\b(flash sale|sale ends|limited time|exclusive offer|promo code|coupon|free shipping)\b',
             SubscriptionCategory.MARKETING),
    _subject('product_update', r"\b(product|what's new|release|feature)\s+updates?\b",
             SubscriptionCategory.NOTIFICATION),
    _subject('social_activity', r'\b(new (follower|connection|comment)s?|mentioned you|tagged you|'
                                r'invitation to connect|people you may know)\b', SubscriptionCategory.SOCIAL),
)


@dataclass(frozen=True)
class SignalTable:
    """Weights and compiled patterns for one scoring configuration."""

    version: str = '2024.2'
    weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    no_reply_pattern: Pattern = re.compile(NO_REPLY_LOCAL_PART, re.IGNORECASE)
    body_keyword_pattern: Pattern = re.compile(BODY_UNSUBSCRIBE_KEYWORDS, re.IGNORECASE)
    subject_patterns: Tuple[SubjectPattern, ...] = DEFAULT_SUBJECT_PATTERNS
    # Max characters between a keyword and a URL for the body signal
    keyword_url_window: int = 100

    def weight(self, signal: str) -> float:
        return float(self.weights.get(signal, 0.0))

    def match_subject(self, subject: str) -> Optional[SubjectPattern]:
        """First subject pattern matching the subject, in table order."""
        if not subject:
            return None
        for subject_pattern in self.subject_patterns:
            if subject_pattern.matches(subject):
                return subject_pattern
        return None


DEFAULT_SIGNAL_TABLE = SignalTable()


def _compile(regex: str, what: str) -> Pattern:
    try:
        return re.compile(regex, re.IGNORECASE)
    except re.error as e:
        raise SignalTableError(f"Invalid {what} pattern", {'pattern': regex, 'error': str(e)})


def signal_table_from_dict(data: Mapping[str, Any], base: SignalTable = DEFAULT_SIGNAL_TABLE) -> SignalTable:
    """Build a table from a mapping, overriding only the keys present."""
    changes: Dict[str, Any] = {}

    if 'version' in data:
        changes['version'] = str(data['version'])

    if 'weights' in data:
        weights = dict(base.weights)
        for name, value in data['weights'].items():
            try:
                weight = float(value)
            except (TypeError, ValueError):
                raise SignalTableError("Weight is not a number", {'signal': name, 'value': value})
            if not 0.0 <= weight <= 1.0:
                raise SignalTableError("Weight must be within [0, 1]", {'signal': name, 'value': weight})
            weights[name] = weight
        changes['weights'] = weights

    if 'no_reply_pattern' in data:
        changes['no_reply_pattern'] = _compile(data['no_reply_pattern'], 'no-reply')

    if 'body_keywords' in data:
        changes['body_keyword_pattern'] = _compile(data['body_keywords'], 'body keyword')

    if 'keyword_url_window' in data:
        changes['keyword_url_window'] = int(data['keyword_url_window'])

    if 'subject_patterns' in data:
        patterns = []
        for entry in data['subject_patterns']:
            try:
                category = SubscriptionCategory(entry.get('category', 'other'))
            except ValueError:
                raise SignalTableError("Unknown subject pattern category", {'entry': entry})
            patterns.append(SubjectPattern(
                name=entry['name'],
                pattern=_compile(entry['pattern'], 'subject'),
                category=category
            ))
        changes['subject_patterns'] = tuple(patterns)

    return replace(base, **changes)


def load_signal_table(path: Union[str, Path, None]) -> SignalTable:
    """Load a signal table JSON file; None returns the default table."""
    if not path:
        return DEFAULT_SIGNAL_TABLE
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SignalTableError("Could not read signal table", {'path': str(path), 'error': str(e)})
    return signal_table_from_dict(data)
