"""
Tests for detection orchestration: lanes, persistence rules, guard effects,
cancellation, storage retries and unsubscribe wiring.
"""

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from subscription_engine.database import ListFilters
from subscription_engine.detection.types import (
    FrequencyClass, SubscriptionCategory, Tier, UnsubscribeStatus,
)
from subscription_engine.exceptions import StorageError
from subscription_engine.orchestrator import Orchestrator, lane_index
from subscription_engine.sources import InMemoryMessageSource
from subscription_engine.unsubscribe.methods import LinkMethod
from subscription_engine.unsubscribe_executor import UnsubscribeExecutor

from conftest import BASE_TIME, USER

UNSUBSCRIBED_AT = datetime(2024, 3, 20, 12, 0, 0)
NEWSLETTER = 'newsletter@shop.example'


class FlakyStore:
    """Store wrapper whose next `failures` units of work raise StorageError."""

    def __init__(self, store, failures):
        self.store = store
        self.failures = failures

    @contextmanager
    def unit_of_work(self):
        if self.failures > 0:
            self.failures -= 1
            raise StorageError("database is locked")
        with self.store.unit_of_work() as uow:
            yield uow


@pytest.fixture
def http_client():
    client = Mock()
    client.get.return_value = Mock(status_code=200, text='Unsubscribed')
    client.post.return_value = Mock(status_code=200, text='')
    return client


def _executor(store, http_client):
    return UnsubscribeExecutor.build(store, http_client=http_client, mail_sender=Mock(),
                                     clock=lambda: UNSUBSCRIBED_AT)


@pytest.fixture
def orchestrator(store, http_client):
    orch = Orchestrator(store, executor=_executor(store, http_client), lane_count=2, sleep=lambda s: None)
    yield orch
    orch.close()


def _records(orchestrator, **filters):
    return orchestrator.list_subscriptions(USER, ListFilters(**filters))


class TestDetect:
    """Full scans."""

    def test_weekly_newsletter_is_detected(self, orchestrator, weekly_newsletter):
        summary = orchestrator.detect(USER, InMemoryMessageSource(weekly_newsletter(5)))

        assert summary.messages_seen == 5
        assert summary.new_count == 1
        assert summary.updated_count == 4
        assert summary.cancelled is False

        records = _records(orchestrator)
        assert len(records) == 1
        record = records[0]
        assert record.sender_address == NEWSLETTER
        assert record.confidence_score >= 0.85
        assert record.tier is Tier.CERTAIN
        assert record.frequency_class is FrequencyClass.WEEKLY
        assert record.category is SubscriptionCategory.NEWSLETTER
        assert record.unsubscribe_method == LinkMethod(url='https://shop.example/unsubscribe?u=42')
        assert record.is_active is True
        assert record.email_count == 5
        assert record.sender_name == 'Shop Example'

    def test_newest_first_scan_matches_oldest_first(self, orchestrator, weekly_newsletter):
        summary = orchestrator.detect(USER, InMemoryMessageSource(reversed(weekly_newsletter(5))))

        assert summary.duplicate_count == 0
        assert summary.new_count + summary.updated_count == 5
        record = _records(orchestrator)[0]
        assert record.email_count == 5
        assert record.frequency_class is FrequencyClass.WEEKLY
        assert record.confidence_score >= 0.85
        assert record.last_seen_at == BASE_TIME + timedelta(weeks=4)

    def test_senders_are_tracked_separately(self, orchestrator, weekly_newsletter):
        messages = weekly_newsletter(3) + weekly_newsletter(3, sender='digest@news.example',
                                                            url='https://news.example/u')
        orchestrator.detect(USER, InMemoryMessageSource(messages))

        assert sorted(r.sender_address for r in _records(orchestrator)) == ['digest@news.example', NEWSLETTER]

    def test_small_batches(self, store, http_client, weekly_newsletter):
        with Orchestrator(store, executor=_executor(store, http_client), lane_count=3, batch_size=2) as orch:
            summary = orch.detect(USER, InMemoryMessageSource(weekly_newsletter(5)))

        assert summary.messages_seen == 5
        assert summary.new_count + summary.updated_count == 5

    def test_needs_a_source(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.detect(USER)

    def test_personal_sender_creates_nothing(self, orchestrator, make_message):
        summary = orchestrator.detect(USER, InMemoryMessageSource([
            make_message('1', sender='bob@people.example', subject='Lunch tomorrow?')
        ]))

        assert summary.skipped_count == 1
        assert _records(orchestrator) == []


class TestFalsePositives:
    """Guard effects on persisted records."""

    @pytest.mark.parametrize("with_lookup", [False, True])
    def test_friend_thread_never_becomes_a_subscription(self, store, http_client, make_message, with_lookup):
        messages = []
        for i in range(10):
            if i % 2 == 0:
                messages.append(make_message(str(i), sender='bob@people.example', subject='Re: Trip',
                                             thread_id='t1', received_at=BASE_TIME + timedelta(hours=i)))
            else:
                messages.append(make_message(str(i), sender='alice@me.example', subject='Re: Trip',
                                             thread_id='t1', sent_by_user=True, recipients=['bob@people.example'],
                                             received_at=BASE_TIME + timedelta(hours=i)))
        source = InMemoryMessageSource(messages)
        with Orchestrator(store, executor=_executor(store, http_client),
                          thread_lookup=source if with_lookup else None, lane_count=2) as orch:
            summary = orch.detect(USER, source)

            assert orch.list_subscriptions(USER) == []
        assert summary.vetoed_count == 5
        assert summary.skipped_count == 5
        with store.unit_of_work() as uow:
            aggregate = uow.get_aggregate(USER, 'bob@people.example')
        assert aggregate.email_count == 5
        assert aggregate.has_two_way_conversation is True

    def test_user_sent_message_never_creates_a_record(self, orchestrator, make_message):
        summary = orchestrator.ingest(USER, [
            make_message('1', sender='alice@me.example', sent_by_user=True, recipients=['news@shop.example'],
                         headers={'List-Unsubscribe': '<https://shop.example/u>'})
        ])

        assert summary.vetoed_count == 1
        assert _records(orchestrator) == []

    def test_user_sent_without_counterpart_is_skipped(self, orchestrator, make_message):
        summary = orchestrator.ingest(USER, [make_message('1', sender='alice@me.example', sent_by_user=True)])

        assert summary.skipped_count == 1

    def test_reply_to_bulk_sender_deactivates_record(self, orchestrator, weekly_newsletter, make_message):
        messages = weekly_newsletter(3)
        orchestrator.detect(USER, InMemoryMessageSource(messages))
        last = messages[-1]
        assert _records(orchestrator)[0].is_active is True

        # The newsletter thread gets a reply from the user
        threaded = make_message('threaded', sender=NEWSLETTER, thread_id='n1',
                                received_at=last.received_at + timedelta(days=1),
                                headers={'List-Unsubscribe': '<https://shop.example/unsubscribe?u=42>'})
        reply = make_message('reply', sender='alice@me.example', thread_id='n1', sent_by_user=True,
                             recipients=[NEWSLETTER], received_at=last.received_at + timedelta(days=2))
        orchestrator.ingest(USER, [threaded])
        summary = orchestrator.ingest(USER, [reply])

        assert summary.updated_count == 1
        record = _records(orchestrator)[0]
        assert record.is_active is False
        assert record.confidence_score <= 0.2

    def test_personalized_mail_is_not_a_subscription(self, orchestrator, make_message):
        orchestrator.update_profile(USER, first_name='Alice')

        summary = orchestrator.ingest(USER, [make_message(
            '1', sender='carol@corp.example', subject='Following up',
            body_snippet='Hi Alice, following up on the contract.',
            headers={'List-Unsubscribe': '<https://corp.example/u>', 'In-Reply-To': '<x@corp.example>'}
        )])

        assert summary.skipped_count == 1
        assert _records(orchestrator) == []

    def test_whitelist_deactivates_and_restores(self, orchestrator, weekly_newsletter, make_message):
        orchestrator.detect(USER, InMemoryMessageSource(weekly_newsletter(3)))

        profile, changed = orchestrator.whitelist_domain(USER, 'Shop.Example')
        assert 'shop.example' in profile.whitelisted_domains
        assert changed == 1
        assert _records(orchestrator)[0].is_active is False

        orchestrator.ingest(USER, weekly_newsletter(1, start=BASE_TIME + timedelta(weeks=3)))
        record = _records(orchestrator)[0]
        assert record.is_active is False
        assert record.confidence_score >= 0.85

        _, restored = orchestrator.remove_whitelisted_domain(USER, 'shop.example')
        assert restored == 1
        assert _records(orchestrator, is_active=True)[0].sender_address == NEWSLETTER


class TestIncrementalIngest:

    def test_ingest_continues_a_scan(self, orchestrator, weekly_newsletter):
        messages = weekly_newsletter(5)
        orchestrator.detect(USER, InMemoryMessageSource(messages[:3]))

        summary = orchestrator.ingest(USER, messages[3:])

        assert summary.updated_count == 2
        assert _records(orchestrator)[0].email_count == 5

    def test_redelivered_messages_are_ignored(self, orchestrator, weekly_newsletter):
        messages = weekly_newsletter(4)
        orchestrator.detect(USER, InMemoryMessageSource(messages))

        summary = orchestrator.ingest(USER, messages)

        assert summary.duplicate_count == 4
        assert _records(orchestrator)[0].email_count == 4


class TestCancellation:

    def test_cancel_before_start(self, orchestrator, weekly_newsletter):
        cancel = threading.Event()
        cancel.set()

        summary = orchestrator.detect(USER, InMemoryMessageSource(weekly_newsletter(5)), cancel_event=cancel)

        assert summary.cancelled is True
        assert summary.messages_seen == 0
        assert _records(orchestrator) == []

    def test_cancelled_ingest_applies_nothing(self, orchestrator, weekly_newsletter):
        cancel = threading.Event()
        cancel.set()

        summary = orchestrator.ingest(USER, weekly_newsletter(3), cancel_event=cancel)

        assert summary.cancelled is True
        assert summary.cancelled_count == 3
        assert _records(orchestrator) == []


class TestStorageFailures:
    """Storage errors are retried with backoff, then deferred."""

    def test_transient_errors_are_retried(self, store, http_client, weekly_newsletter):
        flaky = FlakyStore(store, failures=2)
        with Orchestrator(flaky, executor=_executor(store, http_client), lane_count=1,
                          sleep=lambda s: None) as orch:
            summary = orch.ingest(USER, weekly_newsletter(1))

        assert summary.new_count == 1
        assert summary.deferred_count == 0

    def test_exhausted_retries_defer_and_replay(self, store, http_client, weekly_newsletter):
        flaky = FlakyStore(store, failures=4)
        with Orchestrator(flaky, executor=_executor(store, http_client), lane_count=1,
                          sleep=lambda s: None) as orch:
            first = orch.ingest(USER, weekly_newsletter(1))
            assert first.deferred_count == 1
            assert orch.pending_deferred(USER) == 1
            assert orch.list_subscriptions(USER) == []

            second = orch.ingest(USER, [])

            assert second.replayed_deferred == 1
            assert second.new_count == 1
            assert orch.pending_deferred(USER) == 0
            assert len(orch.list_subscriptions(USER)) == 1


class TestUnsubscribeFlow:

    def test_unsubscribe_detected_subscription(self, orchestrator, weekly_newsletter, http_client):
        orchestrator.detect(USER, InMemoryMessageSource(weekly_newsletter(3)))
        record = _records(orchestrator)[0]

        outcome = orchestrator.unsubscribe(USER, record.id)

        assert outcome.success is True
        http_client.get.assert_called_once()
        assert _records(orchestrator, status=UnsubscribeStatus.SUCCEEDED)[0].id == record.id
        assert [a.succeeded for a in orchestrator.attempts(USER, record.id)] == [True]

    def test_mail_after_unsubscribe_is_a_violation(self, orchestrator, weekly_newsletter):
        orchestrator.detect(USER, InMemoryMessageSource(weekly_newsletter(3)))
        record = _records(orchestrator)[0]
        orchestrator.unsubscribe(USER, record.id)

        summary = orchestrator.ingest(USER, weekly_newsletter(1, start=BASE_TIME + timedelta(weeks=3)))

        assert summary.violation_count == 1
        updated = orchestrator.get_subscription(USER, record.id)
        assert updated.emails_after_unsubscribe == 1
        assert updated.unsubscribe_status is UnsubscribeStatus.SUCCEEDED
        assert updated.unsubscribed_at == UNSUBSCRIBED_AT

    def test_resubscribe(self, orchestrator, weekly_newsletter):
        orchestrator.detect(USER, InMemoryMessageSource(weekly_newsletter(3)))
        record = _records(orchestrator)[0]
        orchestrator.unsubscribe(USER, record.id)

        restored = orchestrator.resubscribe(USER, record.id)

        assert restored.unsubscribe_status is UnsubscribeStatus.NOT_REQUESTED
        assert restored.confidence_score == pytest.approx(record.confidence_score)


class TestLanes:

    def test_lane_is_stable_and_in_range(self):
        for sender in ('a@x.example', 'newsletter@shop.example', 'b@y.example'):
            lane = lane_index(sender, 4)
            assert 0 <= lane < 4
            assert lane_index(sender.upper(), 4) == lane

    def test_from_config_builds_working_engine(self):
        with Orchestrator.from_config(database_url='sqlite:///:memory:', lane_count=1) as orch:
            assert orch.lane_count == 1
            assert orch.list_subscriptions(USER) == []
            assert orch.get_profile(USER).user_id == USER
