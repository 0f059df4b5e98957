"""
12CP prediction engine.
Projects historical peak clustering forward into (a) month-level risk
scores and (b) a schedule of concrete weekday peak windows, each with an
expected demand range grown from the all-time peak.
"""

import calendar
from collections import Counter
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
import logging

import holidays
import numpy as np
import pandas as pd

from analysis.pattern_analyzer import analyze_patterns
from analysis.peak_aggregator import SUMMER_MONTHS, WINTER_MONTHS
from models.data_models import (
    DAY_NAMES,
    FULL_MONTH_NAMES,
    AllTimePeakRecord,
    DemandRange,
    MonthlyPeak,
    MonthlyPeakPrediction,
    PeakPattern,
    PredictionSummary,
    ScheduledPeakEvent,
    TimeWindow,
    YearlyPeakSummary,
    YearlyTop12Set,
)
from utils.config import Config
from utils.timezone_utils import MOUNTAIN_TZ, TimestampLike, parse_utc_timestamp, tz_abbreviation

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

RISK_THRESHOLDS = (
    (80, 'critical'),
    (60, 'high'),
    (40, 'moderate'),
)
MAX_SCORE = 95
# Below this many historical peaks, confidence is scaled down proportionally
MIN_FULL_SAMPLE = 12
DEMAND_SPREAD = 0.02


def classify_risk(score: float) -> str:
    for threshold, level in RISK_THRESHOLDS:
        if score >= threshold:
            return level
    return 'low'


def mean_growth_rate(maxima: Sequence[float]) -> Optional[float]:
    """Mean year-over-year growth (fraction) of a chronological series, or None."""
    deltas = [(b - a) / a for a, b in zip(maxima, maxima[1:]) if a]
    if not deltas:
        return None
    return float(np.mean(deltas))


class PeakPredictionEngine:
    """
    Turns historical peak sets into forward-looking 12CP predictions.
    Nothing here reads the wall clock unless `as_of` is omitted.
    """

    def __init__(self,
                 default_growth_rate: float = Config.DEFAULT_GROWTH_RATE,
                 event_limit: int = Config.SCHEDULED_EVENT_LIMIT,
                 skip_holidays: bool = Config.SKIP_HOLIDAYS,
                 holiday_country: str = Config.HOLIDAY_COUNTRY,
                 holiday_subdivision: str = Config.HOLIDAY_SUBDIVISION,
                 tz: str = MOUNTAIN_TZ):
        self.default_growth_rate = default_growth_rate
        self.event_limit = event_limit
        self.skip_holidays = skip_holidays
        self.tz = tz
        self.holidays = (
            holidays.country_holidays(holiday_country, subdiv=holiday_subdivision)
            if skip_holidays else {}
        )

    # ----- growth -----

    def estimate_growth_rate(self, yearly_peaks: Sequence[YearlyPeakSummary]) -> float:
        """
        Mean of the available year-over-year growth figures, as a fraction.
        Falls back to the default growth assumption with fewer than two years.
        """
        deltas = [p.growth_from_prev_year for p in yearly_peaks if p.growth_from_prev_year is not None]
        if len(yearly_peaks) < 2 or not deltas:
            logger.warning(
                f"Only {len(yearly_peaks)} year(s) of peaks; using default growth "
                f"of {self.default_growth_rate:.1%}"
            )
            return self.default_growth_rate
        return float(np.mean(deltas)) / 100

    def _growth_from_sets(self, yearly_top12: Sequence[YearlyTop12Set]) -> float:
        ordered = sorted(yearly_top12, key=lambda s: s.year)
        growth = mean_growth_rate([s.max_demand_mw for s in ordered])
        if growth is None:
            logger.warning("Not enough yearly top-12 sets for a growth trend; using default growth")
            return self.default_growth_rate
        return growth

    # ----- (a) month-level heuristic predictions -----

    def predict_monthly(self,
                        top_peaks: Sequence[AllTimePeakRecord],
                        monthly_peaks: Sequence[MonthlyPeak],
                        growth_rate: Optional[float] = None) -> List[MonthlyPeakPrediction]:
        """
        Score every calendar month for its chance of setting a 12CP peak.

        Probability is 75 points for the month's share of the top peaks
        plus 20 points for how strong its monthly peaks are relative to other
        months, capped at 95. A month without any observations cannot score
        above 20.
        """
        if not top_peaks and not monthly_peaks:
            return []
        if growth_rate is None:
            growth_rate = self.default_growth_rate

        pattern = analyze_patterns(top_peaks)
        strengths: Dict[int, int] = {}
        for peak in monthly_peaks:
            strengths[peak.month] = max(strengths.get(peak.month, 0), peak.peak_demand_mw)

        all_time_peak = max(
            [p.demand_mw for p in top_peaks] + [p.peak_demand_mw for p in monthly_peaks]
        )
        projected_peak = all_time_peak * (1 + growth_rate)
        low = min(strengths.values()) if strengths else None
        high = max(strengths.values()) if strengths else None

        predictions = []
        for month in range(1, 13):
            share = pattern.share('by_month', month)
            strength = strengths.get(month)
            if strength is None:
                relative = 0.0
            elif high > low:
                relative = (strength - low) / (high - low)
            else:
                relative = 1.0

            probability = int(round(min(MAX_SCORE, 75 * share + 20 * relative)))
            ratio = self._month_ratio(month, pattern, strength, low, all_time_peak)
            anchor = projected_peak * ratio
            spread = DEMAND_SPREAD + 0.03 * (1 - probability / 100)

            predictions.append(MonthlyPeakPrediction(
                month=month,
                month_name=FULL_MONTH_NAMES[month - 1],
                predicted_peak_hour=self._month_hour(month, top_peaks, monthly_peaks),
                probability_score=probability,
                risk_level=classify_risk(probability),
                expected_demand_range=DemandRange(
                    min=int(round(anchor * (1 - spread))),
                    max=int(round(anchor)),
                ),
                reasoning=self._month_reasoning(month, pattern, strength),
            ))

        predictions.sort(key=lambda p: (-p.probability_score, p.month))
        return predictions

    def _month_ratio(self, month: int, pattern: PeakPattern, strength: Optional[int],
                     low: Optional[int], all_time_peak: float) -> float:
        if strength is not None:
            return strength / all_time_peak
        bucket = pattern.bucket('by_month', month)
        if bucket is not None and bucket.count:
            return bucket.max_demand_mw / all_time_peak
        if low is not None:
            return low / all_time_peak
        return 1.0

    def _month_hour(self, month: int,
                    top_peaks: Sequence[AllTimePeakRecord],
                    monthly_peaks: Sequence[MonthlyPeak]) -> int:
        hours = [p.hour for p in top_peaks if p.month == month]
        if not hours:
            hours = [p.peak_hour for p in monthly_peaks if p.month == month]
        if not hours:
            hours = [p.peak_hour for p in monthly_peaks] or [p.hour for p in top_peaks]
        counts = Counter(hours)
        return min(counts, key=lambda h: (-counts[h], h))

    def _month_reasoning(self, month: int, pattern: PeakPattern, strength: Optional[int]) -> str:
        name = FULL_MONTH_NAMES[month - 1]
        bucket = pattern.bucket('by_month', month)
        parts = []
        if pattern.total:
            share = pattern.share('by_month', month)
            parts.append(f"{share:.0%} of historical top {pattern.total} peaks occurred in {name}.")
        if strength is not None:
            parts.append(f"Highest observed {name} monthly peak: {strength:,} MW.")
        else:
            parts.append(f"No {name} data in the analysis window.")
        if bucket is not None and bucket.count:
            parts.append(self._season_driver(month))
        return ' '.join(parts)

    @staticmethod
    def _season_driver(month: int) -> str:
        if month in WINTER_MONTHS:
            return 'Cold snaps drive heating demand.'
        if month in SUMMER_MONTHS:
            return 'Heat waves drive cooling demand.'
        return 'Shoulder-season weather is variable.'

    # ----- (b) scheduled peak events -----

    def generate_predictions(self,
                             yearly_top12: Sequence[YearlyTop12Set],
                             top_peaks_sample: Sequence[AllTimePeakRecord],
                             as_of: Optional[TimestampLike] = None,
                             growth_rate: Optional[float] = None) -> List[ScheduledPeakEvent]:
        """
        Schedule the most likely upcoming 12CP windows.

        Args:
            yearly_top12: Per-year top-12 peak sets (growth trend and 12CP floor)
            top_peaks_sample: All-time top peaks (e.g. top 50) used for clustering
            as_of: Anchor instant for "upcoming"; defaults to now
            growth_rate: Annual growth used for demand ranges; derived from
                the yearly top-12 maxima when omitted

        Returns:
            Up to `event_limit` weekday events, rank 1 = highest confidence
        """
        if not top_peaks_sample:
            logger.warning("No historical peaks; scheduled predictions suppressed")
            return []

        today = self._local_date(as_of)
        pattern = analyze_patterns(top_peaks_sample)
        if growth_rate is None:
            growth_rate = self._growth_from_sets(yearly_top12)
        baseline = max([p.demand_mw for p in top_peaks_sample] + [s.max_demand_mw for s in yearly_top12])
        floor = self._floor_demand(yearly_top12, top_peaks_sample)
        last_year = max([p.year for p in top_peaks_sample] + [s.year for s in yearly_top12])
        start_hour, end_hour = self._time_window_hours(pattern, top_peaks_sample)

        candidates = self._candidate_dates(pattern, top_peaks_sample, today)

        events = []
        for scheduled, supporting in candidates.items():
            confidence = self._confidence(scheduled, supporting, pattern)
            years_ahead = max(1, scheduled.year - last_year)
            events.append(ScheduledPeakEvent(
                rank=0,
                scheduled_date=scheduled,
                display_date=(f"{DAY_NAMES[scheduled.weekday()]}, "
                              f"{FULL_MONTH_NAMES[scheduled.month - 1]} {scheduled.day}, {scheduled.year}"),
                time_window=TimeWindow(
                    start=f"{start_hour:02d}:00",
                    end=f"{end_hour % 24:02d}:00",
                    timezone=tz_abbreviation(scheduled, start_hour, self.tz),
                ),
                expected_demand_mw=self._demand_range(baseline, floor, growth_rate, years_ahead, confidence),
                confidence_score=confidence,
                risk_level=classify_risk(confidence),
                historical_reference=self._reference(scheduled, supporting, pattern),
                weather_condition=self._weather_condition(scheduled.month, top_peaks_sample),
                month_group=FULL_MONTH_NAMES[scheduled.month - 1].lower(),
                days_until_event=(scheduled - today).days,
            ))

        events.sort(key=lambda e: (-e.confidence_score, e.scheduled_date))
        events = events[:self.event_limit]
        for rank, event in enumerate(events, start=1):
            event.rank = rank

        logger.info(f"Generated {len(events)} scheduled 12CP events from {len(top_peaks_sample)} peaks")
        return events

    def _local_date(self, as_of: Optional[TimestampLike]) -> date:
        instant = pd.Timestamp.now(tz='UTC') if as_of is None else parse_utc_timestamp(as_of)
        return instant.tz_convert(self.tz).date()

    def is_business_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.holidays

    def next_business_day(self, day: date) -> date:
        """Weekend dates move forward to Monday; holidays to the next business day."""
        while not self.is_business_day(day):
            day += timedelta(days=1)
        return day

    @staticmethod
    def next_occurrence(month: int, day_of_month: int, today: date) -> date:
        """First date on or after today with this month and day (Feb 29 -> Feb 28)."""
        year = today.year
        while True:
            day = min(day_of_month, calendar.monthrange(year, month)[1])
            candidate = date(year, month, day)
            if candidate >= today:
                return candidate
            year += 1

    def _candidate_dates(self, pattern: PeakPattern, peaks: Sequence[AllTimePeakRecord],
                         today: date) -> Dict[date, List[AllTimePeakRecord]]:
        candidates: Dict[date, List[AllTimePeakRecord]] = {}

        # Project every historical peak day onto its next occurrence
        for peak in peaks:
            target = self.next_business_day(self.next_occurrence(peak.month, peak.day_of_month, today))
            candidates.setdefault(target, []).append(peak)

        # Fill with dates in the peak months on the historically busiest weekdays
        months = [b.index for b in pattern.by_month if b.count > 0]
        preferred_days = {b.index for b in pattern.by_day_of_week if b.count > 0 and b.index < 5}
        for weekdays in (preferred_days, set(range(5))):
            for month in months:
                if len(candidates) >= self.event_limit:
                    return candidates
                for day in self._month_days(month, today):
                    if len(candidates) >= self.event_limit:
                        break
                    if day.weekday() in weekdays and self.is_business_day(day):
                        candidates.setdefault(day, [])
        return candidates

    def _month_days(self, month: int, today: date) -> List[date]:
        """Remaining days of the next occurrence of a month, starting from today."""
        start = self.next_occurrence(month, 1, today)
        if today.month == month and start.year > today.year:
            start = today
        days_in_month = calendar.monthrange(start.year, month)[1]
        return [date(start.year, month, d) for d in range(start.day, days_in_month + 1)]

    def _confidence(self, scheduled: date, supporting: Sequence[AllTimePeakRecord],
                    pattern: PeakPattern) -> int:
        """
        Score 0-95 from month concentration (60 pts), weekday
        concentration (20 pts) and same-day historical support (20 pts).
        """
        month_share = pattern.share('by_month', scheduled.month)
        day_counts = [b.count for b in pattern.by_day_of_week]
        busiest = max(day_counts) if day_counts else 0
        day_bucket = pattern.bucket('by_day_of_week', scheduled.weekday())
        day_lift = day_bucket.count / busiest if busiest and day_bucket else 0.0
        support = min(1.0, len(supporting) / 3)

        raw = 100 * (0.6 * month_share + 0.2 * day_lift + 0.2 * support)
        sample_factor = min(1.0, pattern.total / MIN_FULL_SAMPLE)
        return int(round(min(MAX_SCORE, raw * sample_factor)))

    def _floor_demand(self, yearly_top12: Sequence[YearlyTop12Set],
                      peaks: Sequence[AllTimePeakRecord]) -> float:
        complete = [s.min_demand_mw for s in yearly_top12 if s.is_complete]
        if complete:
            return float(np.mean(complete))
        if yearly_top12:
            logger.warning("No complete yearly top-12 set; using the lowest available peak as the 12CP floor")
            return float(min(s.min_demand_mw for s in yearly_top12))
        return float(min(p.demand_mw for p in peaks))

    def _demand_range(self, baseline: float, floor: float, growth_rate: float,
                      years_ahead: int, confidence: int) -> DemandRange:
        factor = (1 + growth_rate) ** years_ahead
        projected = baseline * factor
        projected_floor = min(floor, baseline) * factor
        median = projected_floor + (projected - projected_floor) * confidence / 100
        low = int(round(median * (1 - DEMAND_SPREAD)))
        high = max(low, int(round(min(projected, median * (1 + DEMAND_SPREAD)))))
        return DemandRange(min=low, max=high, median=int(round(median)))

    @staticmethod
    def _time_window_hours(pattern: PeakPattern, peaks: Sequence[AllTimePeakRecord]) -> Tuple[int, int]:
        """Dominant peak hour widened by adjacent hours that also saw peaks."""
        dominant = pattern.dominant_hour
        observed = {p.hour for p in peaks}
        hours = [h for h in (dominant - 1, dominant, dominant + 1) if h in observed]
        return min(hours), max(hours) + 1

    def _reference(self, scheduled: date, supporting: Sequence[AllTimePeakRecord],
                   pattern: PeakPattern) -> str:
        if supporting:
            best = supporting[0]
            for peak in supporting[1:]:
                if peak.demand_mw > best.demand_mw:
                    best = peak
            reference = (f"{best.month_name} {best.day_of_month}, {best.year} peak of "
                         f"{best.demand_mw:,} MW at {best.hour:02d}:00 "
                         f"(#{best.rank} of top {pattern.total})")
            if len(supporting) > 1:
                reference += f" and {len(supporting) - 1} more peak(s) on this date"
            return reference

        month_bucket = pattern.bucket('by_month', scheduled.month)
        day_bucket = pattern.bucket('by_day_of_week', scheduled.weekday())
        return (f"{month_bucket.count} of top {pattern.total} peaks fell in "
                f"{FULL_MONTH_NAMES[scheduled.month - 1]}; {day_bucket.count} on {day_bucket.label}s")

    def _weather_condition(self, month: int, peaks: Sequence[AllTimePeakRecord]) -> str:
        temperatures = []
        for peak in peaks:
            if peak.month != month:
                continue
            readings = [t for t in (peak.temperature_calgary, peak.temperature_edmonton) if t is not None]
            if readings:
                temperatures.append(float(np.mean(readings)))

        if temperatures:
            average = float(np.mean(temperatures))
            if average <= -20:
                label = 'Extreme cold'
            elif average <= -10:
                label = 'Cold snap'
            elif average >= 28:
                label = 'Heat wave'
            else:
                label = 'Moderate temperatures'
            return f"{label} (historical peaks averaged {average:.1f}°C)"

        if month in WINTER_MONTHS:
            return 'Cold snap conditions expected'
        if month in SUMMER_MONTHS:
            return 'Heat wave conditions expected'
        return 'Variable weather conditions'

    # ----- summary -----

    @staticmethod
    def get_prediction_summary(events: Sequence[ScheduledPeakEvent]) -> PredictionSummary:
        if not events:
            return PredictionSummary()

        by_month = Counter(e.month_group for e in events)
        return PredictionSummary(
            critical_count=sum(1 for e in events if e.risk_level == 'critical'),
            high_count=sum(1 for e in events if e.risk_level == 'high'),
            events_by_month=dict(sorted(by_month.items(), key=lambda item: -item[1])),
            expected_max_demand=max(e.expected_demand_mw.max for e in events),
            average_confidence=int(round(np.mean([e.confidence_score for e in events]))),
        )
