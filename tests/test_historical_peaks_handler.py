"""
Unit tests for the historical peaks handler.
Tests the concurrent fetch, the analysis bundle and the request/response layer.
"""

import unittest
import json
import threading
import time
from unittest.mock import patch
from datetime import date
import numpy as np
import pandas as pd
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from api.handlers import HistoricalPeaksHandler
from data.connectors import DataFramePeakSource
from utils.exceptions import DataCollectionError

CLOCK = pd.Timestamp('2024-10-01T18:00:00Z')


def synthetic_intervals():
    """Three-hourly AIL with a January seasonal peak and an evening daily peak."""
    np.random.seed(42)
    timestamps = pd.date_range('2022-10-01', '2024-09-30 21:00', freq='3h', tz='UTC')
    local = timestamps.tz_convert('America/Edmonton')
    seasonal = 1200 * np.cos(2 * np.pi * (local.dayofyear - 15) / 365.25)
    daily = 800 * np.exp(-((local.hour - 18) ** 2) / 6)
    demand = 9500 + seasonal + daily + np.random.normal(0, 80, len(timestamps))
    return pd.DataFrame({
        'timestamp': timestamps,
        'ail_mw': np.asarray(demand),
        'pool_price': np.random.uniform(20, 300, len(timestamps)),
        'temperature_calgary': np.asarray(-5 - seasonal / 60),
    })


class FailingSource(DataFramePeakSource):
    def fetch_top_peaks(self, start, end, limit):
        raise DataCollectionError("Request for top_peaks failed: boom", query='top_peaks')


class SlowSource(DataFramePeakSource):
    def fetch_yearly_top12(self, start, end):
        time.sleep(1)
        return super().fetch_yearly_top12(start, end)


class HeldFirstCallSource(DataFramePeakSource):
    """Blocks the first monthly query until released."""

    def __init__(self, data):
        super().__init__(data)
        self.first_call_started = threading.Event()
        self.release = threading.Event()
        self._calls = 0
        self._lock = threading.Lock()

    def fetch_monthly_peaks(self, start, end):
        with self._lock:
            self._calls += 1
            first = self._calls == 1
        if first:
            self.first_call_started.set()
            self.release.wait(5)
        return super().fetch_monthly_peaks(start, end)


class TestFetchHistoricalPeaks(unittest.TestCase):
    """Test cases for fetch_historical_peaks."""

    @classmethod
    def setUpClass(cls):
        cls.data = synthetic_intervals()

    def setUp(self):
        """Set up test fixtures."""
        self.handler = HistoricalPeaksHandler(DataFramePeakSource(self.data), clock=lambda: CLOCK)

    def test_successful_fetch(self):
        bundle = self.handler.fetch_historical_peaks(years=2)

        self.assertEqual(bundle.status, 'ok')
        self.assertTrue(bundle.has_data)
        self.assertEqual(len(bundle.monthly_peaks), 24)
        self.assertEqual(bundle.record_count, 24)
        self.assertEqual(len(bundle.all_time_peaks), 12)
        self.assertEqual(len(bundle.top_peaks_sample), 50)
        self.assertEqual(bundle.all_time_peaks, bundle.top_peaks_sample[:12])
        self.assertEqual(bundle.years_analyzed, 3)
        self.assertEqual(len(bundle.monthly_predictions), 12)
        self.assertLessEqual(len(bundle.scheduled_events), 12)
        self.assertTrue(bundle.scheduled_events)
        self.assertTrue(bundle.yearly_trends[-1].is_predicted)
        self.assertIsNotNone(bundle.seasonal.winter_avg_mw)
        self.assertIsNotNone(bundle.stats)
        self.assertEqual(bundle.peak_patterns.total, 50)

        self.assertIs(self.handler.latest, bundle)
        self.assertFalse(self.handler.loading)
        self.assertEqual(self.handler.selected_range, 2)

    def test_events_start_from_clock(self):
        bundle = self.handler.fetch_historical_peaks(years=2)

        for event in bundle.scheduled_events:
            self.assertGreaterEqual(event.scheduled_date, date(2024, 10, 1))
            self.assertLess(event.scheduled_date.weekday(), 5)

    def test_winter_dominates(self):
        bundle = self.handler.fetch_historical_peaks(years=2)

        self.assertIn(bundle.peak_patterns.dominant_month, (11, 12, 1, 2))
        self.assertIn(bundle.monthly_predictions[0].month, (11, 12, 1, 2))
        self.assertGreater(bundle.seasonal.winter_avg_mw, bundle.seasonal.summer_avg_mw)

    def test_no_data(self):
        empty = pd.DataFrame(columns=['timestamp', 'ail_mw'])
        handler = HistoricalPeaksHandler(DataFramePeakSource(empty), clock=lambda: CLOCK)
        bundle = handler.fetch_historical_peaks(years=1)

        self.assertEqual(bundle.status, 'no_data')
        self.assertFalse(bundle.has_data)
        self.assertEqual(bundle.monthly_peaks, [])
        self.assertEqual(bundle.scheduled_events, [])
        self.assertEqual(bundle.date_range, (CLOCK - pd.DateOffset(years=1), CLOCK))
        self.assertEqual(bundle.dominant_conditions, '')
        self.assertIsNone(bundle.current_year_peak_mw)
        self.assertEqual(handler.notification_for(bundle)['title'], 'No Historical Data')

    def test_failure_keeps_previous_result(self):
        previous = self.handler.fetch_historical_peaks(years=2)
        self.handler.data_source = FailingSource(self.data)

        with self.assertRaises(DataCollectionError) as ctx:
            self.handler.fetch_historical_peaks(years=2)

        self.assertEqual(ctx.exception.query, 'top_peaks')
        self.assertIs(self.handler.latest, previous)
        self.assertFalse(self.handler.loading)

    def test_timeout(self):
        handler = HistoricalPeaksHandler(SlowSource(self.data), clock=lambda: CLOCK, timeout=0.1)

        with self.assertRaises(DataCollectionError) as ctx:
            handler.fetch_historical_peaks(years=1)

        self.assertIn('yearly_top12', str(ctx.exception))
        self.assertIsNone(handler.latest)
        self.assertFalse(handler.loading)

    def test_build_bundle_is_deterministic(self):
        end = CLOCK
        start = end - pd.DateOffset(years=1)
        results = self.handler._run_queries(start, end)

        first = self.handler.format_response(self.handler.build_bundle(results, start, end), 'json')
        second = self.handler.format_response(self.handler.build_bundle(results, start, end), 'json')
        self.assertEqual(first, second)

    def test_bundle_summaries(self):
        bundle = self.handler.fetch_historical_peaks(years=2)

        self.assertEqual(bundle.date_range, (CLOCK - pd.DateOffset(years=2), CLOCK))
        self.assertTrue(bundle.dominant_conditions.startswith('Peaks cluster in'))
        self.assertIn('of 50', bundle.dominant_conditions)
        peak_2024 = next(p.peak_demand_mw for p in bundle.yearly_peaks if p.year == 2024)
        self.assertEqual(bundle.current_year_peak_mw, peak_2024)
        for trend in bundle.yearly_trends:
            self.assertGreater(trend.avg_peak_mw, 0)
            self.assertLessEqual(trend.avg_peak_mw, trend.max_peak_mw)

    def test_current_year_peak_missing(self):
        start = CLOCK - pd.DateOffset(years=1)
        results = self.handler._run_queries(start, CLOCK)
        bundle = self.handler.build_bundle(results, start, pd.Timestamp('2030-06-01T00:00:00Z'))

        self.assertIsNone(bundle.current_year_peak_mw)

    def test_events_use_bundle_growth_rate(self):
        with patch.object(self.handler.engine, 'generate_predictions',
                          wraps=self.handler.engine.generate_predictions) as mock_generate:
            bundle = self.handler.fetch_historical_peaks(years=2)

        mock_generate.assert_called_once()
        self.assertEqual(mock_generate.call_args.kwargs['growth_rate'], bundle.growth_rate)


class TestOverlappingFetches(unittest.TestCase):
    """A newer fetch supersedes an older one that finishes later."""

    @classmethod
    def setUpClass(cls):
        cls.data = synthetic_intervals()

    def test_older_fetch_does_not_replace_newer_result(self):
        source = HeldFirstCallSource(self.data)
        handler = HistoricalPeaksHandler(source, clock=lambda: CLOCK)
        older = []
        worker = threading.Thread(target=lambda: older.append(handler.fetch_historical_peaks(years=2)))
        worker.start()
        self.assertTrue(source.first_call_started.wait(5))

        newer = handler.fetch_historical_peaks(years=1)

        self.assertIs(handler.latest, newer)
        self.assertTrue(handler.loading)
        self.assertEqual(handler.selected_range, 1)

        source.release.set()
        worker.join(5)

        self.assertEqual(len(older), 1)
        self.assertEqual(len(older[0].monthly_peaks), 24)
        self.assertIs(handler.latest, newer)
        self.assertEqual(len(handler.latest.monthly_peaks), 12)
        self.assertFalse(handler.loading)

    def test_sequential_fetches_replace_latest(self):
        handler = HistoricalPeaksHandler(DataFramePeakSource(self.data), clock=lambda: CLOCK)
        first = handler.fetch_historical_peaks(years=2)
        second = handler.fetch_historical_peaks(years=1)

        self.assertIsNot(first, second)
        self.assertIs(handler.latest, second)
        self.assertFalse(handler.loading)


class TestProcessRequest(unittest.TestCase):
    """Test cases for the request/response layer."""

    @classmethod
    def setUpClass(cls):
        cls.data = synthetic_intervals()

    def setUp(self):
        self.handler = HistoricalPeaksHandler(DataFramePeakSource(self.data), clock=lambda: CLOCK)

    def test_validate_request(self):
        self.assertEqual(self.handler.validate_request({'years': 2}), (True, ''))
        self.assertTrue(self.handler.validate_request({})[0])
        self.assertFalse(self.handler.validate_request({'years': 3})[0])
        self.assertFalse(self.handler.validate_request({'years': '2'})[0])
        self.assertFalse(self.handler.validate_request({'years': True})[0])
        self.assertFalse(self.handler.validate_request({'years': 1, 'format': 'xml'})[0])

    def test_invalid_years(self):
        response = self.handler.process_forecast_request({'years': 3})

        self.assertFalse(response['success'])
        self.assertEqual(response['error_code'], 400)
        self.assertEqual(response['notification']['variant'], 'destructive')
        self.assertIsNone(self.handler.latest)

    def test_success_response(self):
        response = self.handler.process_forecast_request({'years': 1})

        self.assertTrue(response['success'])
        self.assertEqual(response['notification']['title'], 'Historical Peaks Loaded')
        self.assertEqual(response['data']['status'], 'ok')
        self.assertEqual(len(response['data']['monthly_peaks']), 12)

    def test_json_response(self):
        response = self.handler.process_forecast_request({'years': 1, 'format': 'json'})
        payload = json.loads(response['data'])

        self.assertEqual(payload['status'], 'ok')
        self.assertEqual(len(payload['all_time_peaks']), 12)

    def test_calendar_response(self):
        response = self.handler.process_forecast_request({'years': 2, 'format': 'calendar'})

        self.assertTrue(response['data'])
        for event in response['data']:
            self.assertIn('scheduledDate', event)
            self.assertIn(event['riskLevel'], ('critical', 'high', 'moderate', 'low'))

    def test_upstream_failure(self):
        self.handler.data_source = FailingSource(self.data)
        response = self.handler.process_forecast_request({'years': 1})

        self.assertFalse(response['success'])
        self.assertEqual(response['error_code'], 502)
        self.assertEqual(response['notification']['title'], 'Error Loading Historical Data')
        self.assertFalse(self.handler.loading)


if __name__ == '__main__':
    unittest.main()
