"""
Unit tests for peak aggregation.
Tests monthly, all-time, yearly, seasonal and yearly top-12 views.
"""

import unittest
import pandas as pd
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from analysis.peak_aggregator import PeakAggregator
from models.data_models import DemandPeakRecord
from utils.timezone_utils import parse_utc_timestamp


def record(timestamp, demand, price=None, **weather):
    return DemandPeakRecord(parse_utc_timestamp(timestamp), demand, price, **weather)


class TestMonthlyAggregation(unittest.TestCase):
    """Test cases for aggregate_monthly."""

    def setUp(self):
        self.aggregator = PeakAggregator()
        self.records = [
            record('2024-01-10T01:00:00Z', 10200.4, 45.0),
            record('2024-01-20T01:00:00Z', 10500.6, 123.4567),
            # 20:00 MST on Jan 31 locally, even though it is February in UTC
            record('2024-02-01T03:00:00Z', 10400.0, 80.0),
            record('2024-02-12T01:00:00Z', 10100.0, None),
        ]

    def test_one_peak_per_local_month(self):
        peaks = self.aggregator.aggregate_monthly(self.records)

        self.assertEqual([p.month_key for p in peaks], ['2024-01', '2024-02'])
        january, february = peaks
        self.assertEqual(january.peak_demand_mw, 10501)
        self.assertEqual(january.price_at_peak, 123.46)
        self.assertEqual(january.month_label, 'Jan 24')
        self.assertEqual(january.peak_hour, 18)
        self.assertEqual(january.day_of_week, 'Friday')  # Jan 19 local
        self.assertEqual(february.peak_demand_mw, 10100)
        self.assertIsNone(february.price_at_peak)

    def test_month_assigned_by_local_time(self):
        records = [record('2024-02-01T03:00:00Z', 12000.0)]
        peaks = self.aggregator.aggregate_monthly(records)

        self.assertEqual(len(peaks), 1)
        self.assertEqual(peaks[0].month_key, '2024-01')
        self.assertEqual(peaks[0].month, 1)

    def test_tie_keeps_first_seen(self):
        records = [
            record('2024-03-05T01:00:00Z', 9900.0),
            record('2024-03-06T01:00:00Z', 9900.0),
        ]
        peaks = self.aggregator.aggregate_monthly(records)
        self.assertEqual(peaks[0].peak_timestamp, parse_utc_timestamp('2024-03-05T01:00:00Z'))

    def test_empty_input(self):
        self.assertEqual(self.aggregator.aggregate_monthly([]), [])


class TestAllTimeAggregation(unittest.TestCase):
    """Test cases for aggregate_all_time."""

    def setUp(self):
        self.aggregator = PeakAggregator()
        self.records = [
            record(ts, demand)
            for ts, demand in zip(
                pd.date_range('2023-12-01T01:00:00Z', periods=20, freq='D'),
                [10000 + (i * 37) % 500 + i for i in range(20)],
            )
        ]

    def test_sorted_descending_and_limited(self):
        for limit in (1, 5, 12, 50):
            peaks = self.aggregator.aggregate_all_time(self.records, limit)
            self.assertLessEqual(len(peaks), limit)
            demands = [p.demand_mw for p in peaks]
            self.assertEqual(demands, sorted(demands, reverse=True))
            self.assertTrue(all(a > b for a, b in zip(demands, demands[1:])))
            self.assertEqual([p.rank for p in peaks], list(range(1, len(peaks) + 1)))

    def test_local_fields(self):
        peaks = self.aggregator.aggregate_all_time([record('2023-12-12T01:00:00Z', 12000.0)], 12)
        peak = peaks[0]
        self.assertEqual(peak.year, 2023)
        self.assertEqual(peak.month, 12)
        self.assertEqual(peak.month_name, 'Dec')
        self.assertEqual(peak.day_of_month, 11)
        self.assertEqual(peak.hour, 18)
        self.assertEqual(peak.day_of_week, 'Monday')
        self.assertEqual(peak.day_index, 0)

    def test_ties_first_seen_wins(self):
        records = [
            record('2024-01-02T01:00:00Z', 11000.0),
            record('2024-01-03T01:00:00Z', 11500.0),
            record('2024-01-04T01:00:00Z', 11000.0),
        ]
        peaks = self.aggregator.aggregate_all_time(records, 3)
        self.assertEqual(peaks[0].demand_mw, 11500)
        self.assertEqual(peaks[1].timestamp, parse_utc_timestamp('2024-01-02T01:00:00Z'))
        self.assertEqual(peaks[2].timestamp, parse_utc_timestamp('2024-01-04T01:00:00Z'))

    def test_weather_covariates_carried(self):
        records = [record('2024-01-02T01:00:00Z', 11000.0, 50.0,
                          temperature_calgary=-28.5, wind_speed=12.0)]
        peak = self.aggregator.aggregate_all_time(records, 12)[0]
        self.assertEqual(peak.temperature_calgary, -28.5)
        self.assertIsNone(peak.temperature_edmonton)
        self.assertEqual(peak.wind_speed, 12.0)

    def test_invalid_limit(self):
        with self.assertRaises(ValueError):
            self.aggregator.aggregate_all_time(self.records, 0)

    def test_empty_input(self):
        self.assertEqual(self.aggregator.aggregate_all_time([], 12), [])


class TestYearlyAggregation(unittest.TestCase):
    """Test cases for aggregate_yearly."""

    def setUp(self):
        self.aggregator = PeakAggregator()
        self.records = [
            record('2021-12-20T01:00:00Z', 11000.0),
            record('2021-07-20T22:00:00Z', 10000.0),
            record('2022-12-20T01:00:00Z', 11550.0),
            record('2023-01-15T01:00:00Z', 11200.0),
            record('2023-12-20T01:00:00Z', 11900.0),
        ]

    def test_growth_between_consecutive_years(self):
        summaries = self.aggregator.aggregate_yearly(self.records)

        self.assertEqual([s.year for s in summaries], [2021, 2022, 2023])
        self.assertIsNone(summaries[0].growth_from_prev_year)
        for previous, current in zip(summaries, summaries[1:]):
            expected = (current.peak_demand_mw - previous.peak_demand_mw) / previous.peak_demand_mw * 100
            self.assertAlmostEqual(current.growth_from_prev_year, expected)
        self.assertAlmostEqual(summaries[1].growth_from_prev_year, 5.0)

    def test_single_year(self):
        summaries = self.aggregator.aggregate_yearly(self.records[:2])
        self.assertEqual(len(summaries), 1)
        self.assertIsNone(summaries[0].growth_from_prev_year)
        self.assertEqual(summaries[0].peak_demand_mw, 11000)
        self.assertEqual(summaries[0].month, 12)

    def test_empty_input(self):
        self.assertEqual(self.aggregator.aggregate_yearly([]), [])


class TestSeasonalAggregation(unittest.TestCase):
    """Test cases for aggregate_seasonal."""

    def test_averages_monthly_peaks_not_intervals(self):
        aggregator = PeakAggregator()
        records = [record(ts, 9000.0) for ts in pd.date_range('2023-12-01T20:00:00Z', periods=20, freq='D')]
        records += [
            record('2023-12-22T01:00:00Z', 11000.0),
            record('2024-01-10T01:00:00Z', 12000.0),
            record('2024-07-10T22:00:00Z', 10000.0),
            record('2024-04-10T22:00:00Z', 15000.0),  # shoulder month, ignored
        ]
        seasonal = aggregator.aggregate_seasonal(records)

        self.assertEqual(seasonal.winter_avg_mw, 11500)
        self.assertEqual(seasonal.winter_count, 2)
        self.assertEqual(seasonal.summer_avg_mw, 10000)
        self.assertEqual(seasonal.summer_count, 1)

    def test_empty_input(self):
        seasonal = PeakAggregator().aggregate_seasonal([])
        self.assertIsNone(seasonal.winter_avg_mw)
        self.assertIsNone(seasonal.summer_avg_mw)


class TestYearlyTop12Aggregation(unittest.TestCase):
    """Test cases for aggregate_yearly_top12."""

    def setUp(self):
        self.aggregator = PeakAggregator()
        full_year = pd.date_range('2023-01-05T01:00:00Z', periods=15, freq='7D')
        short_year = pd.date_range('2024-01-05T01:00:00Z', periods=5, freq='7D')
        self.records = [record(ts, 10000.0 + i * 10) for i, ts in enumerate(full_year)]
        self.records += [record(ts, 10500.0 - i * 10) for i, ts in enumerate(short_year)]

    def test_at_most_twelve_per_year(self):
        sets = self.aggregator.aggregate_yearly_top12(self.records)

        self.assertEqual([s.year for s in sets], [2023, 2024])
        for top12 in sets:
            self.assertLessEqual(len(top12.peaks), 12)
            self.assertEqual([p.rank for p in top12.peaks], list(range(1, len(top12.peaks) + 1)))
            demands = [p.demand_mw for p in top12.peaks]
            self.assertTrue(all(a > b for a, b in zip(demands, demands[1:])))
            self.assertEqual(top12.max_demand_mw, demands[0])
            self.assertEqual(top12.min_demand_mw, demands[-1])

    def test_floor_and_completeness(self):
        full, short = self.aggregator.aggregate_yearly_top12(self.records)

        self.assertTrue(full.is_complete)
        self.assertEqual(full.max_demand_mw, 10140)
        self.assertEqual(full.min_demand_mw, 10030)  # 12th highest
        self.assertFalse(short.is_complete)
        self.assertEqual(len(short.peaks), 5)
        self.assertEqual(short.min_demand_mw, 10460)

    def test_empty_input(self):
        self.assertEqual(self.aggregator.aggregate_yearly_top12([]), [])


class TestStatsAndTrends(unittest.TestCase):
    """Test cases for calculate_stats and build_yearly_trends."""

    def setUp(self):
        self.aggregator = PeakAggregator()
        self.records = [
            record('2023-01-10T01:00:00Z', 11000.0),
            record('2023-07-10T23:00:00Z', 10000.0),
            record('2023-12-10T01:00:00Z', 11800.0),
            record('2024-01-10T01:00:00Z', 12000.0),
        ]

    def test_calculate_stats(self):
        monthly = self.aggregator.aggregate_monthly(self.records)
        stats = self.aggregator.calculate_stats(monthly)

        self.assertEqual(stats.all_time_peak_mw, 12000)
        self.assertEqual(stats.all_time_peak_date, parse_utc_timestamp('2024-01-10T01:00:00Z'))
        self.assertEqual(stats.avg_monthly_peak_mw, 11200)
        self.assertEqual(sorted(stats.peaks_by_year), [2023, 2024])
        self.assertEqual(stats.common_peak_hours[0], (18, 3))
        self.assertEqual(stats.winter_avg_peak_mw, 11600)
        self.assertEqual(stats.summer_avg_peak_mw, 10000)

    def test_calculate_stats_empty(self):
        self.assertIsNone(self.aggregator.calculate_stats([]))

    def test_build_yearly_trends(self):
        yearly = self.aggregator.aggregate_yearly(self.records)
        trends = self.aggregator.build_yearly_trends(yearly, 0.03)

        self.assertEqual([t.year for t in trends], [2023, 2024, 2025])
        self.assertFalse(trends[0].is_predicted)
        self.assertTrue(trends[-1].is_predicted)
        self.assertEqual(trends[-1].max_peak_mw, 12360)
        self.assertEqual(self.aggregator.build_yearly_trends([], 0.03), [])

    def test_yearly_trends_average_monthly_peaks(self):
        yearly = self.aggregator.aggregate_yearly(self.records)
        monthly = self.aggregator.aggregate_monthly(self.records)
        trends = self.aggregator.build_yearly_trends(yearly, 0.03, monthly)

        # 2023 monthly peaks: 11000, 10000, 11800
        self.assertEqual(trends[0].avg_peak_mw, 10933)
        self.assertEqual(trends[1].avg_peak_mw, 12000)
        self.assertEqual(trends[-1].avg_peak_mw, 12360)
        for trend in trends:
            self.assertLessEqual(trend.avg_peak_mw, trend.max_peak_mw)

    def test_yearly_trends_without_monthly_peaks(self):
        yearly = self.aggregator.aggregate_yearly(self.records)
        trends = self.aggregator.build_yearly_trends(yearly, 0.03)

        self.assertEqual([t.avg_peak_mw for t in trends], [t.max_peak_mw for t in trends])

    def test_deterministic(self):
        first = self.aggregator.aggregate_monthly(self.records)
        second = self.aggregator.aggregate_monthly(self.records)
        self.assertEqual(first, second)


if __name__ == '__main__':
    unittest.main()
