"""
Send-cadence analysis from inter-arrival samples.
"""

import statistics
from dataclasses import dataclass
from typing import Sequence

from .types import FrequencyClass, SenderAggregate

HOUR = 60 * 60
DAY = 24 * HOUR
MONTH = 30 * DAY


@dataclass(frozen=True)
class CadenceBand:
    frequency_class: FrequencyClass
    max_mean: float
    tolerance: float


# Checked in order. The mean picks the band, the standard deviation must stay
# under the band's tolerance for the cadence to count as regular.
CADENCE_BANDS = (
    CadenceBand(FrequencyClass.DAILY, max_mean=1.5 * DAY, tolerance=2 * HOUR),
    CadenceBand(FrequencyClass.WEEKLY, max_mean=10 * DAY, tolerance=1 * DAY),
    CadenceBand(FrequencyClass.MONTHLY, max_mean=45 * DAY, tolerance=3 * DAY),
)

MIN_SAMPLES = 2


@dataclass(frozen=True)
class FrequencyResult:
    frequency_class: FrequencyClass
    mean_interval: float = 0.0
    std_dev: float = 0.0
    sample_count: int = 0
    confidence: float = 0.0

    @property
    def is_regular(self) -> bool:
        return self.frequency_class is not FrequencyClass.IRREGULAR


def analyze_intervals(samples: Sequence[float]) -> FrequencyResult:
    """Classify a cadence from interval samples in seconds.

    Fewer than two samples is always irregular with zero confidence.
    """
    samples = [float(s) for s in samples]
    if len(samples) < MIN_SAMPLES:
        return FrequencyResult(FrequencyClass.IRREGULAR, sample_count=len(samples))

    mean = statistics.fmean(samples)
    std_dev = statistics.pstdev(samples, mu=mean)

    for band in CADENCE_BANDS:
        if mean <= band.max_mean:
            if std_dev < band.tolerance:
                return FrequencyResult(
                    frequency_class=band.frequency_class,
                    mean_interval=mean,
                    std_dev=std_dev,
                    sample_count=len(samples),
                    confidence=round(1.0 - std_dev / band.tolerance, 6)
                )
            break

    return FrequencyResult(FrequencyClass.IRREGULAR, mean, std_dev, len(samples), 0.0)


def monthly_rate(aggregate: SenderAggregate) -> float:
    """Messages per 30 days, measured over at least one month of span."""
    if aggregate.email_count < 2 or aggregate.first_seen_at is None or aggregate.last_seen_at is None:
        return float(aggregate.email_count)
    span = (aggregate.last_seen_at - aggregate.first_seen_at).total_seconds()
    return aggregate.email_count / (max(span, MONTH) / MONTH)
