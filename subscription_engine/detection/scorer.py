"""
Confidence scoring and categorization of senders.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from .frequency import FrequencyResult, analyze_intervals, monthly_rate
from .signal_table import (
    BODY_UNSUBSCRIBE_LINK, BULK_SUBJECT, DEFAULT_SIGNAL_TABLE, HIGH_FREQUENCY,
    HIGH_FREQUENCY_BONUS_CAP, HIGH_FREQUENCY_DIVISOR, HIGH_FREQUENCY_THRESHOLD,
    LIST_UNSUBSCRIBE_HEADER, NO_REPLY_SENDER, ONE_CLICK_HEADER, PROVIDER_BULK_CATEGORY,
    REGULAR_CADENCE, SignalTable, SubjectPattern,
)
from .signals import MessageSignals, extract_signals
from .types import (
    NormalizedMessage, ProviderCategory, SenderAggregate, SubscriptionCategory, Tier,
)

CERTAIN_THRESHOLD = 0.8
LIKELY_THRESHOLD = 0.6
POSSIBLE_THRESHOLD = 0.4


@dataclass(frozen=True)
class ScoreResult:
    confidence: float
    tier: Tier
    contributions: Dict[str, float] = field(default_factory=dict)
    frequency: Optional[FrequencyResult] = None
    category: SubscriptionCategory = SubscriptionCategory.OTHER


def tier_for(confidence: float) -> Tier:
    if confidence >= CERTAIN_THRESHOLD:
        return Tier.CERTAIN
    if confidence >= LIKELY_THRESHOLD:
        return Tier.LIKELY
    if confidence >= POSSIBLE_THRESHOLD:
        return Tier.POSSIBLE
    return Tier.UNLIKELY


def combine(weights: Iterable[float]) -> float:
    """Combine signal weights as independent evidence: 1 - prod(1 - w).

    No weights gives 0.0.
    """
    remaining = 1.0
    for weight in weights:
        remaining *= 1.0 - min(max(weight, 0.0), 1.0)
    return round(min(max(1.0 - remaining, 0.0), 1.0), 6)


def _bulk_tally(aggregate: SenderAggregate) -> bool:
    bulk = sum(aggregate.provider_category_tally.get(c.value, 0)
               for c in (ProviderCategory.PROMOTIONS, ProviderCategory.BULK))
    return bulk > 0 and bulk * 2 >= sum(aggregate.provider_category_tally.values())


def _dominant_provider_category(aggregate: SenderAggregate) -> Optional[str]:
    tally = aggregate.provider_category_tally
    if not tally:
        return None
    # Ties resolve alphabetically so the result never depends on dict order
    return max(sorted(tally), key=lambda name: tally[name])


def categorize(message: NormalizedMessage, aggregate: SenderAggregate,
               subject_match: Optional[SubjectPattern]) -> SubscriptionCategory:
    """Pick a subscription category from provider tally, subject and sender shape."""
    dominant = _dominant_provider_category(aggregate)
    if dominant == ProviderCategory.SOCIAL.value:
        return SubscriptionCategory.SOCIAL
    if dominant in (ProviderCategory.PROMOTIONS.value, ProviderCategory.BULK.value):
        return SubscriptionCategory.MARKETING
    if subject_match is not None:
        return subject_match.category

    local_part = aggregate.sender_address.partition('@')[0].lower()
    if 'newsletter' in local_part or 'digest' in local_part:
        return SubscriptionCategory.NEWSLETTER
    if any(word in local_part for word in ('notification', 'updates', 'alerts', 'notify')):
        return SubscriptionCategory.NOTIFICATION
    if any(word in local_part for word in ('marketing', 'offers', 'deals', 'promo')):
        return SubscriptionCategory.MARKETING
    if dominant == ProviderCategory.UPDATES.value:
        return SubscriptionCategory.NOTIFICATION
    return SubscriptionCategory.OTHER


class Scorer:
    """Score a message in the context of its sender's aggregate."""

    def __init__(self, table: SignalTable = DEFAULT_SIGNAL_TABLE):
        self.table = table

    def contributions(self, message: NormalizedMessage, aggregate: SenderAggregate,
                      signals: Optional[MessageSignals] = None,
                      frequency: Optional[FrequencyResult] = None) -> Dict[str, float]:
        """Weights of every applicable signal, keyed by signal name."""
        table = self.table
        signals = signals or extract_signals(message, table)
        frequency = frequency or analyze_intervals(aggregate.interval_samples)
        applied: Dict[str, float] = {}

        if signals.one_click_header or aggregate.saw_one_click_header:
            applied[ONE_CLICK_HEADER] = table.weight(ONE_CLICK_HEADER)
        if signals.has_list_unsubscribe or aggregate.saw_list_unsubscribe_header:
            applied[LIST_UNSUBSCRIBE_HEADER] = table.weight(LIST_UNSUBSCRIBE_HEADER)
        if signals.bulk_provider_category or _bulk_tally(aggregate):
            applied[PROVIDER_BULK_CATEGORY] = table.weight(PROVIDER_BULK_CATEGORY)
        if signals.no_reply_sender:
            applied[NO_REPLY_SENDER] = table.weight(NO_REPLY_SENDER)
        if signals.body_unsubscribe_url:
            applied[BODY_UNSUBSCRIBE_LINK] = table.weight(BODY_UNSUBSCRIBE_LINK)
        if signals.subject_match is not None:
            applied[BULK_SUBJECT] = table.weight(BULK_SUBJECT)

        rate = monthly_rate(aggregate)
        if rate > HIGH_FREQUENCY_THRESHOLD:
            applied[HIGH_FREQUENCY] = table.weight(HIGH_FREQUENCY) + min(
                rate / HIGH_FREQUENCY_DIVISOR, HIGH_FREQUENCY_BONUS_CAP)

        if frequency.is_regular and frequency.confidence > 0:
            applied[REGULAR_CADENCE] = table.weight(REGULAR_CADENCE) * frequency.confidence

        return {name: weight for name, weight in applied.items() if weight > 0}

    def score(self, message: NormalizedMessage, aggregate: SenderAggregate) -> ScoreResult:
        signals = extract_signals(message, self.table)
        frequency = analyze_intervals(aggregate.interval_samples)
        applied = self.contributions(message, aggregate, signals, frequency)
        confidence = combine(applied.values())
        return ScoreResult(
            confidence=confidence,
            tier=tier_for(confidence),
            contributions=applied,
            frequency=frequency,
            category=categorize(message, aggregate, signals.subject_match)
        )
