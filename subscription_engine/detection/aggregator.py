"""
Incremental per-sender aggregation.

`fold` applies one message to a SenderAggregate in constant time. History is
never re-read: everything the scorer, frequency analyzer and resolver need is
kept in bounded running state on the aggregate.
"""

import hashlib
import logging
import re
from typing import Iterable

from .signal_table import DEFAULT_SIGNAL_TABLE, SignalTable
from .signals import extract_signals
from .types import NormalizedMessage, SenderAggregate

logger = logging.getLogger(__name__)

_REPLY_PREFIX = re.compile(r'^\s*((re|fwd?|aw|wg)\s*:\s*)+', re.IGNORECASE)
_WHITESPACE = re.compile(r'\s+')


def subject_fingerprint(subject: str) -> str:
    """Stable fingerprint of a subject, ignoring case, spacing and reply prefixes."""
    normalized = _WHITESPACE.sub(' ', _REPLY_PREFIX.sub('', subject or '')).strip().lower()
    return hashlib.sha1(normalized.encode('utf-8')).hexdigest()[:16]


def new_aggregate(user_id: str, sender_address: str) -> SenderAggregate:
    return SenderAggregate(user_id=user_id, sender_address=sender_address.strip().lower())


def is_replay(aggregate: SenderAggregate, message: NormalizedMessage) -> bool:
    """True for a message id already folded into this aggregate."""
    return message.id in aggregate.recent_message_ids


def fold(aggregate: SenderAggregate,
         message: NormalizedMessage,
         counterpart_replied: bool = False,
         table: SignalTable = DEFAULT_SIGNAL_TABLE) -> SenderAggregate:
    """
    Apply one message to a sender aggregate.

    Inbound messages (from the sender) update counts, intervals, subjects,
    provider tally, header flags and unsubscribe targets. Outbound messages
    (sent by the user to this sender) only update thread bookkeeping.

    Args:
        aggregate: Current aggregate; not modified
        message: Next message for this sender; mail older than the aggregate's
            span is counted too and extends the span backwards
        counterpart_replied: Set by the caller when a thread lookup found a
            message in the opposite direction in this message's thread
        table: Signal table used to extract unsubscribe targets

    Returns:
        Updated copy of the aggregate
    """
    updated = aggregate.copy()
    if is_replay(aggregate, message):
        logger.debug("Ignoring replayed message %s for %s", message.id, aggregate.sender_address)
        return updated

    updated.recent_message_ids.append(message.id)

    if message.is_sent_by_user:
        _fold_thread(updated, message.thread_id, updated.outbound_thread_ids,
                     updated.inbound_thread_ids, counterpart_replied)
        return updated

    _fold_thread(updated, message.thread_id, updated.inbound_thread_ids,
                 updated.outbound_thread_ids, counterpart_replied)

    newest = updated.last_seen_at is None or message.received_at >= updated.last_seen_at
    _fold_arrival(updated, message.received_at)
    updated.email_count += 1

    if message.sender_display_name and (newest or not updated.sender_name):
        updated.sender_name = message.sender_display_name
    if message.subject:
        fingerprint = subject_fingerprint(message.subject)
        if fingerprint not in updated.subject_fingerprints:
            updated.distinct_subject_count += 1
            updated.subject_fingerprints.append(fingerprint)
        updated.sample_subjects.append(message.subject)
    if message.provider_category is not None:
        key = message.provider_category.value
        updated.provider_category_tally[key] = updated.provider_category_tally.get(key, 0) + 1

    signals = extract_signals(message, table)
    if signals.has_list_unsubscribe:
        updated.saw_list_unsubscribe_header = True
        if signals.list_unsubscribe.urls:
            _set_target(updated, 'list_unsubscribe_url', signals.list_unsubscribe.urls[0], newest)
        if signals.list_unsubscribe.mailtos:
            _set_target(updated, 'list_unsubscribe_mailto', signals.list_unsubscribe.mailtos[0], newest)
    if signals.one_click_header:
        updated.saw_one_click_header = True
        # One-click only applies to an https target of the same message
        https_url = signals.list_unsubscribe.https_url
        if https_url:
            _set_target(updated, 'one_click_url', https_url, newest)
    if signals.body_unsubscribe_url:
        _set_target(updated, 'body_unsubscribe_url', signals.body_unsubscribe_url, newest)

    return updated


def _set_target(aggregate: SenderAggregate, name: str, value: str, newest: bool) -> None:
    # Older mail only fills targets the newer mail did not provide
    if newest or getattr(aggregate, name) is None:
        setattr(aggregate, name, value)


def _fold_arrival(aggregate: SenderAggregate, received_at) -> None:
    # Samples are taken against the edge of the known span being extended;
    # mail landing inside the span adds no sample.
    if aggregate.last_seen_at is None:
        aggregate.first_seen_at = aggregate.last_seen_at = received_at
    elif received_at >= aggregate.last_seen_at:
        aggregate.interval_samples.append((received_at - aggregate.last_seen_at).total_seconds())
        aggregate.last_seen_at = received_at
    elif aggregate.first_seen_at is None or received_at <= aggregate.first_seen_at:
        aggregate.interval_samples.append((aggregate.first_seen_at - received_at).total_seconds())
        aggregate.first_seen_at = received_at


def _fold_thread(aggregate: SenderAggregate, thread_id, own_window, opposite_window,
                 counterpart_replied: bool) -> None:
    if counterpart_replied or (thread_id and thread_id in opposite_window):
        aggregate.has_two_way_conversation = True
    if thread_id and thread_id not in own_window:
        own_window.append(thread_id)


def fold_all(aggregate: SenderAggregate, messages: Iterable[NormalizedMessage],
             table: SignalTable = DEFAULT_SIGNAL_TABLE) -> SenderAggregate:
    """Fold a sequence of messages in order."""
    for message in messages:
        aggregate = fold(aggregate, message, table=table)
    return aggregate
