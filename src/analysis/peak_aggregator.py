"""
Peak aggregation for 12CP analysis.
Reduces demand records to monthly, yearly, seasonal and all-time peaks
using Alberta local time for every calendar grouping.
"""

from collections import Counter
from typing import Dict, List, Optional, Sequence
import logging

import pandas as pd

from models.data_models import (
    DAY_NAMES,
    MONTH_NAMES,
    AllTimePeakRecord,
    DemandPeakRecord,
    HistoricalPeakStats,
    MonthlyPeak,
    SeasonalSummary,
    YearlyPeakSummary,
    YearlyPeakTrend,
    YearlyTop12Set,
)
from utils.timezone_utils import MOUNTAIN_TZ, localize_frame

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

WINTER_MONTHS = (11, 12, 1, 2)
SUMMER_MONTHS = (6, 7, 8)
TOP12_SIZE = 12

RECORD_COLUMNS = [
    'timestamp', 'demand_mw', 'price_at_peak',
    'temperature_calgary', 'temperature_edmonton', 'wind_speed', 'cloud_cover',
]


def _optional(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _round_price(value) -> Optional[float]:
    value = _optional(value)
    return None if value is None else round(value, 2)


class PeakAggregator:
    """
    Aggregates demand records into the peak views used for 12CP analysis.
    All operations are pure: the same records always give the same output.
    """

    def __init__(self, tz: str = MOUNTAIN_TZ):
        self.tz = tz

    def records_to_frame(self, records: Sequence[DemandPeakRecord]) -> pd.DataFrame:
        """
        Build a frame of records with local calendar columns.
        Row order follows input order, which is what tie-breaks rely on.
        """
        if not records:
            return pd.DataFrame(columns=RECORD_COLUMNS)

        frame = pd.DataFrame([{name: getattr(r, name) for name in RECORD_COLUMNS} for r in records])
        frame['demand_mw'] = frame['demand_mw'].astype(float)
        return localize_frame(frame, 'timestamp', self.tz).reset_index(drop=True)

    def _sorted_by_demand(self, frame: pd.DataFrame) -> pd.DataFrame:
        # mergesort is stable: equal demands keep first-seen order
        return frame.sort_values('demand_mw', ascending=False, kind='mergesort')

    def _ranked_peak(self, row: pd.Series, rank: int) -> AllTimePeakRecord:
        return AllTimePeakRecord(
            rank=rank,
            timestamp=row['timestamp'],
            demand_mw=int(round(row['demand_mw'])),
            price_at_peak=_round_price(row['price_at_peak']),
            hour=int(row['local_hour']),
            day_of_week=DAY_NAMES[int(row['local_dow'])],
            day_index=int(row['local_dow']),
            day_of_month=int(row['local_day']),
            month=int(row['local_month']),
            month_name=MONTH_NAMES[int(row['local_month']) - 1],
            year=int(row['local_year']),
            temperature_calgary=_optional(row['temperature_calgary']),
            temperature_edmonton=_optional(row['temperature_edmonton']),
            wind_speed=_optional(row['wind_speed']),
            cloud_cover=_optional(row['cloud_cover']),
        )

    def aggregate_monthly(self, records: Sequence[DemandPeakRecord]) -> List[MonthlyPeak]:
        """
        Find the peak demand interval of each local calendar month.

        Returns:
            MonthlyPeak list sorted by month key ascending
        """
        frame = self.records_to_frame(records)
        if frame.empty:
            return []

        peak_index = frame.groupby(['local_year', 'local_month'], sort=True)['demand_mw'].idxmax()
        peaks = []
        for (year, month), row_index in peak_index.items():
            row = frame.loc[row_index]
            peaks.append(MonthlyPeak(
                month_key=f"{int(year)}-{int(month):02d}",
                month_label=f"{MONTH_NAMES[int(month) - 1]} {str(int(year))[2:]}",
                peak_timestamp=row['timestamp'],
                peak_demand_mw=int(round(row['demand_mw'])),
                peak_hour=int(row['local_hour']),
                day_of_week=DAY_NAMES[int(row['local_dow'])],
                price_at_peak=_round_price(row['price_at_peak']),
                year=int(year),
                month=int(month),
            ))

        logger.info(f"Aggregated {len(peaks)} monthly peaks from {len(frame)} records")
        return peaks

    def aggregate_all_time(self, records: Sequence[DemandPeakRecord], limit: int = 12) -> List[AllTimePeakRecord]:
        """
        Rank the highest demand records across the whole dataset.

        Args:
            records: Demand records
            limit: Number of peaks to keep (12 for display, 50 for pattern mining)

        Returns:
            Up to `limit` peaks ranked 1..k by descending demand
        """
        if limit <= 0:
            raise ValueError("limit must be positive")

        frame = self.records_to_frame(records)
        if frame.empty:
            return []

        top = self._sorted_by_demand(frame).head(limit)
        return [self._ranked_peak(row, rank) for rank, (_, row) in enumerate(top.iterrows(), start=1)]

    def aggregate_yearly(self, records: Sequence[DemandPeakRecord]) -> List[YearlyPeakSummary]:
        """
        Find each local year's highest peak and its growth over the prior year.

        Growth is (peak - previous peak) / previous peak * 100 against the
        previous entry in the series; the earliest year has no growth.
        """
        frame = self.records_to_frame(records)
        if frame.empty:
            return []

        peak_index = frame.groupby('local_year', sort=True)['demand_mw'].idxmax()
        summaries: List[YearlyPeakSummary] = []
        previous: Optional[YearlyPeakSummary] = None
        for year, row_index in peak_index.items():
            row = frame.loc[row_index]
            summary = YearlyPeakSummary(
                year=int(year),
                peak_timestamp=row['timestamp'],
                peak_demand_mw=int(round(row['demand_mw'])),
                peak_hour=int(row['local_hour']),
                day_of_week=DAY_NAMES[int(row['local_dow'])],
                month=int(row['local_month']),
                price_at_peak=_round_price(row['price_at_peak']),
            )
            if previous is not None:
                summary.growth_from_prev_year = (
                    (summary.peak_demand_mw - previous.peak_demand_mw) / previous.peak_demand_mw * 100
                )
            summaries.append(summary)
            previous = summary

        logger.info(f"Aggregated yearly peaks for {len(summaries)} years")
        return summaries

    def aggregate_seasonal(self, records: Sequence[DemandPeakRecord]) -> SeasonalSummary:
        """
        Average monthly peaks for winter (Nov-Feb) and summer (Jun-Aug).
        Averages are over monthly peaks, not raw intervals.
        """
        return self.seasonal_from_monthly(self.aggregate_monthly(records))

    def seasonal_from_monthly(self, monthly_peaks: Sequence[MonthlyPeak]) -> SeasonalSummary:
        winter = [p.peak_demand_mw for p in monthly_peaks if p.month in WINTER_MONTHS]
        summer = [p.peak_demand_mw for p in monthly_peaks if p.month in SUMMER_MONTHS]
        return SeasonalSummary(
            winter_avg_mw=int(round(sum(winter) / len(winter))) if winter else None,
            summer_avg_mw=int(round(sum(summer) / len(summer))) if summer else None,
            winter_count=len(winter),
            summer_count=len(summer),
        )

    def aggregate_yearly_top12(self, records: Sequence[DemandPeakRecord]) -> List[YearlyTop12Set]:
        """
        Rank the twelve highest peaks within each local year.

        Years with fewer than twelve records get a shorter set; the floor
        is then the lowest peak present.
        """
        frame = self.records_to_frame(records)
        if frame.empty:
            return []

        sets = []
        for year, year_frame in frame.groupby('local_year', sort=True):
            top = self._sorted_by_demand(year_frame).head(TOP12_SIZE)
            peaks = [self._ranked_peak(row, rank) for rank, (_, row) in enumerate(top.iterrows(), start=1)]
            if len(peaks) < TOP12_SIZE:
                logger.warning(f"Year {int(year)} has only {len(peaks)} peaks for its top-12 set")
            sets.append(YearlyTop12Set(
                year=int(year),
                peaks=peaks,
                max_demand_mw=peaks[0].demand_mw,
                min_demand_mw=peaks[-1].demand_mw,
            ))
        return sets

    def calculate_stats(self, monthly_peaks: Sequence[MonthlyPeak],
                        seasonal: Optional[SeasonalSummary] = None) -> Optional[HistoricalPeakStats]:
        """Headline statistics over the monthly peaks, or None without data."""
        if not monthly_peaks:
            return None

        all_time = monthly_peaks[0]
        for peak in monthly_peaks[1:]:
            if peak.peak_demand_mw > all_time.peak_demand_mw:
                all_time = peak

        peaks_by_year: Dict[int, List[MonthlyPeak]] = {}
        for peak in monthly_peaks:
            peaks_by_year.setdefault(peak.year, []).append(peak)

        hour_counts = Counter(p.peak_hour for p in monthly_peaks)
        common_hours = sorted(hour_counts.items(), key=lambda item: (-item[1], item[0]))[:5]

        seasonal = seasonal or self.seasonal_from_monthly(monthly_peaks)
        return HistoricalPeakStats(
            all_time_peak_mw=all_time.peak_demand_mw,
            all_time_peak_date=all_time.peak_timestamp,
            avg_monthly_peak_mw=int(round(sum(p.peak_demand_mw for p in monthly_peaks) / len(monthly_peaks))),
            peaks_by_year=peaks_by_year,
            common_peak_hours=common_hours,
            winter_avg_peak_mw=seasonal.winter_avg_mw,
            summer_avg_peak_mw=seasonal.summer_avg_mw,
        )

    def build_yearly_trends(self, yearly_peaks: Sequence[YearlyPeakSummary],
                            growth_rate: float,
                            monthly_peaks: Sequence[MonthlyPeak] = ()) -> List[YearlyPeakTrend]:
        """
        Yearly maximum and average monthly peak, plus one projected point
        for the following year.

        A year without monthly peaks averages to its own maximum. The
        projected average keeps the latest year's average-to-max ratio.
        """
        if not yearly_peaks:
            return []

        monthly_by_year: Dict[int, List[int]] = {}
        for peak in monthly_peaks:
            monthly_by_year.setdefault(peak.year, []).append(peak.peak_demand_mw)

        trends = []
        for summary in yearly_peaks:
            demands = monthly_by_year.get(summary.year) or [summary.peak_demand_mw]
            trends.append(YearlyPeakTrend(
                year=summary.year,
                max_peak_mw=summary.peak_demand_mw,
                avg_peak_mw=int(round(sum(demands) / len(demands))),
            ))

        record_peak = max(p.peak_demand_mw for p in yearly_peaks)
        projected_max = int(round(record_peak * (1 + growth_rate)))
        latest = trends[-1]
        trends.append(YearlyPeakTrend(
            year=latest.year + 1,
            max_peak_mw=projected_max,
            avg_peak_mw=int(round(projected_max * latest.avg_peak_mw / latest.max_peak_mw)),
            is_predicted=True,
        ))
        return trends
