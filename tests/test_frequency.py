"""
Tests for cadence classification.
"""

from datetime import timedelta

import pytest

from subscription_engine.detection.frequency import DAY, HOUR, analyze_intervals, monthly_rate
from subscription_engine.detection.types import FrequencyClass, SenderAggregate

from conftest import BASE_TIME, USER


class TestAnalyzeIntervals:

    def test_daily(self):
        result = analyze_intervals([DAY] * 6)

        assert result.frequency_class is FrequencyClass.DAILY
        assert result.confidence == 1.0
        assert result.is_regular

    def test_weekly_with_jitter(self):
        result = analyze_intervals([7 * DAY, 7 * DAY + 6 * HOUR, 7 * DAY - 6 * HOUR])

        assert result.frequency_class is FrequencyClass.WEEKLY
        assert 0.7 < result.confidence < 0.9

    def test_monthly(self):
        result = analyze_intervals([30 * DAY, 31 * DAY, 29 * DAY])

        assert result.frequency_class is FrequencyClass.MONTHLY
        assert result.mean_interval == pytest.approx(30 * DAY)

    def test_irregular_spread(self):
        result = analyze_intervals([1 * DAY, 20 * DAY, 3 * DAY])

        assert result.frequency_class is FrequencyClass.IRREGULAR
        assert result.confidence == 0.0
        assert not result.is_regular

    def test_too_few_samples(self):
        assert analyze_intervals([]).frequency_class is FrequencyClass.IRREGULAR
        single = analyze_intervals([7 * DAY])
        assert single.frequency_class is FrequencyClass.IRREGULAR
        assert single.sample_count == 1

    def test_longer_than_monthly_is_irregular(self):
        assert analyze_intervals([90 * DAY, 90 * DAY]).frequency_class is FrequencyClass.IRREGULAR


class TestMonthlyRate:

    def _aggregate(self, count, span_days):
        return SenderAggregate(user_id=USER, sender_address='a@b.example', email_count=count,
                               first_seen_at=BASE_TIME, last_seen_at=BASE_TIME + timedelta(days=span_days))

    def test_short_span_counts_as_one_month(self):
        assert monthly_rate(self._aggregate(10, 15)) == pytest.approx(10.0)

    def test_rate_over_two_months(self):
        assert monthly_rate(self._aggregate(10, 60)) == pytest.approx(5.0)

    def test_single_message(self):
        assert monthly_rate(self._aggregate(1, 0)) == 1.0
