"""
Tests for incremental per-sender aggregation.
"""

from datetime import timedelta

from subscription_engine.detection.aggregator import fold, fold_all, is_replay, new_aggregate, subject_fingerprint
from subscription_engine.detection.types import INTERVAL_SAMPLE_CAP, SAMPLE_SUBJECT_CAP, SUBJECT_WINDOW_CAP

from conftest import BASE_TIME, USER


class TestFold:
    """Folding inbound messages."""

    def test_counts_intervals_and_seen_times(self, weekly_newsletter):
        messages = weekly_newsletter(4)
        aggregate = fold_all(new_aggregate(USER, 'newsletter@shop.example'), messages)

        assert aggregate.email_count == 4
        assert aggregate.first_seen_at == BASE_TIME
        assert aggregate.last_seen_at == BASE_TIME + timedelta(weeks=3)
        assert list(aggregate.interval_samples) == [7 * 86400.0] * 3
        assert aggregate.sender_name == 'Shop Example'

    def test_header_targets_recorded(self, weekly_newsletter):
        aggregate = fold_all(new_aggregate(USER, 'newsletter@shop.example'),
                             weekly_newsletter(1, one_click=True))

        assert aggregate.saw_list_unsubscribe_header is True
        assert aggregate.saw_one_click_header is True
        assert aggregate.list_unsubscribe_url == 'https://shop.example/unsubscribe?u=42'
        assert aggregate.one_click_url == 'https://shop.example/unsubscribe?u=42'

    def test_one_click_needs_https_target(self, make_message):
        message = make_message('1', headers={
            'List-Unsubscribe': '<http://shop.example/u>',
            'List-Unsubscribe-Post': 'List-Unsubscribe=One-Click'
        })
        aggregate = fold(new_aggregate(USER, message.sender_address), message)

        assert aggregate.saw_one_click_header is True
        assert aggregate.one_click_url is None

    def test_fold_does_not_mutate_input(self, make_message):
        aggregate = new_aggregate(USER, 'newsletter@shop.example')
        fold(aggregate, make_message('1'))

        assert aggregate.email_count == 0
        assert len(aggregate.recent_message_ids) == 0

    def test_distinct_subjects_ignore_reply_prefix_and_case(self, make_message):
        messages = [
            make_message('1', subject='Project plan'),
            make_message('2', subject='RE: project   plan', received_at=BASE_TIME + timedelta(hours=1)),
            make_message('3', subject='Other topic', received_at=BASE_TIME + timedelta(hours=2)),
        ]
        aggregate = fold_all(new_aggregate(USER, 'newsletter@shop.example'), messages)

        assert aggregate.distinct_subject_count == 2
        assert subject_fingerprint('Fwd: Re: Hello') == subject_fingerprint('hello')

    def test_bounded_collections(self, make_message):
        messages = [make_message(str(i), subject=f'Subject {i}', received_at=BASE_TIME + timedelta(hours=i))
                    for i in range(INTERVAL_SAMPLE_CAP + 10)]
        aggregate = fold_all(new_aggregate(USER, 'newsletter@shop.example'), messages)

        assert aggregate.email_count == INTERVAL_SAMPLE_CAP + 10
        assert len(aggregate.interval_samples) == INTERVAL_SAMPLE_CAP
        assert list(aggregate.sample_subjects) == [f'Subject {i}' for i in range(
            INTERVAL_SAMPLE_CAP + 10 - SAMPLE_SUBJECT_CAP, INTERVAL_SAMPLE_CAP + 10)]
        assert len(aggregate.subject_fingerprints) == SUBJECT_WINDOW_CAP
        assert aggregate.distinct_subject_count == INTERVAL_SAMPLE_CAP + 10

    def test_provider_category_tally(self, make_message):
        messages = [
            make_message('1', provider_category='promotions'),
            make_message('2', provider_category='CATEGORY_PROMOTIONS', received_at=BASE_TIME + timedelta(days=1)),
            make_message('3', provider_category='updates', received_at=BASE_TIME + timedelta(days=2)),
        ]
        aggregate = fold_all(new_aggregate(USER, 'newsletter@shop.example'), messages)

        assert aggregate.provider_category_tally == {'promotions': 2, 'updates': 1}


class TestReplay:
    """Duplicate and out-of-order delivery."""

    def test_same_message_twice_is_a_no_op(self, weekly_newsletter):
        first, second = weekly_newsletter(2)
        once = fold_all(new_aggregate(USER, 'newsletter@shop.example'), [first, second])
        twice = fold(once, second)

        assert twice == once
        assert is_replay(once, second) is True

    def test_older_inbound_message_extends_span(self, weekly_newsletter, make_message):
        aggregate = fold_all(new_aggregate(USER, 'newsletter@shop.example'), weekly_newsletter(2))
        late = make_message('late', received_at=BASE_TIME - timedelta(days=3), subject='Spring sale')

        updated = fold(aggregate, late)

        assert updated.email_count == 3
        assert updated.first_seen_at == BASE_TIME - timedelta(days=3)
        assert updated.last_seen_at == BASE_TIME + timedelta(weeks=1)
        assert list(updated.interval_samples) == [7 * 86400.0, 3 * 86400.0]
        assert 'Spring sale' in updated.sample_subjects

    def test_reversed_run_matches_chronological_cadence(self, weekly_newsletter):
        messages = weekly_newsletter(5)
        forward = fold_all(new_aggregate(USER, 'newsletter@shop.example'), messages)
        backward = fold_all(new_aggregate(USER, 'newsletter@shop.example'), reversed(messages))

        assert backward.email_count == 5
        assert backward.first_seen_at == forward.first_seen_at
        assert backward.last_seen_at == forward.last_seen_at
        assert sorted(backward.interval_samples) == sorted(forward.interval_samples)

    def test_message_inside_span_adds_no_interval(self, weekly_newsletter, make_message):
        aggregate = fold_all(new_aggregate(USER, 'newsletter@shop.example'), weekly_newsletter(3))
        middle = make_message('middle', received_at=BASE_TIME + timedelta(days=10))

        updated = fold(aggregate, middle)

        assert updated.email_count == 4
        assert list(updated.interval_samples) == list(aggregate.interval_samples)

    def test_older_message_fills_missing_target_only(self, weekly_newsletter, make_message):
        aggregate = fold_all(new_aggregate(USER, 'newsletter@shop.example'), weekly_newsletter(2))
        older = make_message('older', received_at=BASE_TIME - timedelta(weeks=1), headers={
            'List-Unsubscribe': '<mailto:leave@shop.example>, <https://old.shop.example/u>',
        })

        updated = fold(aggregate, older)

        assert updated.list_unsubscribe_url == 'https://shop.example/unsubscribe?u=42'
        assert updated.list_unsubscribe_mailto == 'mailto:leave@shop.example'


class TestTwoWay:
    """Thread bookkeeping for two-way detection."""

    def test_reply_in_same_thread_marks_two_way(self, make_message):
        inbound = make_message('1', sender='bob@people.example', thread_id='t1')
        outbound = make_message('2', sender='bob@people.example', thread_id='t1', sent_by_user=True,
                                received_at=BASE_TIME + timedelta(hours=1))
        aggregate = fold(new_aggregate(USER, 'bob@people.example'), inbound)
        assert aggregate.has_two_way_conversation is False

        aggregate = fold(aggregate, outbound)

        assert aggregate.has_two_way_conversation is True
        # Outbound messages do not count as mail from the sender
        assert aggregate.email_count == 1

    def test_counterpart_replied_flag(self, make_message):
        message = make_message('1', sender='bob@people.example', thread_id='t9')
        aggregate = fold(new_aggregate(USER, 'bob@people.example'), message, counterpart_replied=True)

        assert aggregate.has_two_way_conversation is True

    def test_different_threads_stay_one_way(self, make_message):
        aggregate = fold_all(new_aggregate(USER, 'bob@people.example'), [
            make_message('1', sender='bob@people.example', thread_id='t1'),
            make_message('2', sender='bob@people.example', thread_id='t2', sent_by_user=True,
                         received_at=BASE_TIME + timedelta(hours=1)),
        ])

        assert aggregate.has_two_way_conversation is False
