"""
Subscription detection: signal extraction, per-sender aggregation,
cadence analysis, scoring and false-positive guarding.
"""

from .aggregator import fold, fold_all, new_aggregate
from .frequency import FrequencyResult, analyze_intervals, monthly_rate
from .guard import FalsePositiveGuard, GuardDecision, UserProfile
from .scorer import ScoreResult, Scorer, tier_for
from .signal_table import DEFAULT_SIGNAL_TABLE, SignalTable, load_signal_table
from .signals import extract_signals
from .types import (
    FrequencyClass, HeaderMap, KnownHeader, NormalizedMessage, ProviderCategory,
    SenderAggregate, SubscriptionCategory, SubscriptionRecord, Tier, UnsubscribeStatus,
)

__all__ = [
    'fold', 'fold_all', 'new_aggregate',
    'FrequencyResult', 'analyze_intervals', 'monthly_rate',
    'FalsePositiveGuard', 'GuardDecision', 'UserProfile',
    'ScoreResult', 'Scorer', 'tier_for',
    'DEFAULT_SIGNAL_TABLE', 'SignalTable', 'load_signal_table',
    'extract_signals',
    'FrequencyClass', 'HeaderMap', 'KnownHeader', 'NormalizedMessage', 'ProviderCategory',
    'SenderAggregate', 'SubscriptionCategory', 'SubscriptionRecord', 'Tier', 'UnsubscribeStatus',
]
