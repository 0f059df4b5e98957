"""
Recurring-condition mining over the highest historical peaks.
"""

from typing import Dict, List, Sequence
import logging

from models.data_models import (
    DAY_NAMES,
    FULL_MONTH_NAMES,
    MONTH_NAMES,
    AllTimePeakRecord,
    PatternBucket,
    PeakPattern,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DAY_PARTS = (
    (range(0, 6), 'overnight hours'),
    (range(6, 12), 'mornings'),
    (range(12, 17), 'afternoons'),
    (range(17, 22), 'evenings'),
    (range(22, 24), 'late evenings'),
)


def _empty_buckets(size: int, labels: Sequence[str], offset: int = 0) -> Dict[int, PatternBucket]:
    return {i + offset: PatternBucket(index=i + offset, label=labels[i]) for i in range(size)}


def _finalise(buckets: Dict[int, PatternBucket], totals: Dict[int, float]) -> List[PatternBucket]:
    for index, bucket in buckets.items():
        if bucket.count:
            bucket.avg_demand_mw = int(round(totals[index] / bucket.count))
    # Python's sort is stable, so equal counts stay in natural index order
    return sorted(buckets.values(), key=lambda b: -b.count)


def analyze_patterns(top_peaks: Sequence[AllTimePeakRecord]) -> PeakPattern:
    """
    Build month / hour / day-of-week frequency tables from top peaks.

    Every bucket is present even with a zero count. Each table is sorted by
    count descending, ties by natural index, so the first bucket is the most
    common peak month / hour / day. Days are indexed Monday=0.
    """
    months = _empty_buckets(12, MONTH_NAMES, offset=1)
    hours = _empty_buckets(24, [f"{h:02d}:00" for h in range(24)])
    days = _empty_buckets(7, DAY_NAMES)
    month_totals = {i: 0.0 for i in months}
    hour_totals = {i: 0.0 for i in hours}
    day_totals = {i: 0.0 for i in days}

    for peak in top_peaks:
        for buckets, totals, index in (
            (months, month_totals, peak.month),
            (hours, hour_totals, peak.hour),
            (days, day_totals, peak.day_index),
        ):
            bucket = buckets[index]
            bucket.count += 1
            totals[index] += peak.demand_mw
            if peak.demand_mw > bucket.max_demand_mw:
                bucket.max_demand_mw = peak.demand_mw

    pattern = PeakPattern(
        by_month=_finalise(months, month_totals),
        by_hour=_finalise(hours, hour_totals),
        by_day_of_week=_finalise(days, day_totals),
    )
    logger.info(f"Analyzed peak patterns over {len(top_peaks)} peaks")
    return pattern


def day_part(hour: int) -> str:
    for hours, label in DAY_PARTS:
        if hour in hours:
            return label
    raise ValueError(f"Hour out of range: {hour}")


def describe_dominant_conditions(pattern: PeakPattern) -> str:
    """Plain-language summary such as 'Peaks cluster in December evenings'."""
    if pattern.total == 0:
        return 'No historical peaks available'

    month = pattern.bucket('by_month', pattern.dominant_month)
    hour = pattern.bucket('by_hour', pattern.dominant_hour)
    day = pattern.bucket('by_day_of_week', pattern.dominant_day)
    return (
        f"Peaks cluster in {FULL_MONTH_NAMES[month.index - 1]} {day_part(hour.index)} "
        f"({month.count} of {pattern.total} in {month.label}, most often at {hour.label} "
        f"on {day.label}s)"
    )
