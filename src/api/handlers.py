"""
API handlers for the 12CP peak analysis system.
"""

from abc import ABC, abstractmethod
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import logging
import threading

import pandas as pd

from analysis.pattern_analyzer import analyze_patterns, describe_dominant_conditions
from analysis.peak_aggregator import PeakAggregator
from data.connectors import QUERY_NAMES, PeakDataSource
from data.validation import PeakRowParser, parse_seasonal_rows
from model.prediction_engine import PeakPredictionEngine
from models.data_models import HistoricalPeaksData
from utils.config import Config
from utils.exceptions import DataCollectionError
from utils.timezone_utils import MOUNTAIN_TZ, parse_utc_timestamp

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class APIHandler(ABC):
    """Abstract base class for API handling."""

    @abstractmethod
    def validate_request(self, request: Dict[str, Any]) -> Tuple[bool, str]:
        """Validate incoming API request."""
        pass

    @abstractmethod
    def process_forecast_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Process forecast generation request."""
        pass

    @abstractmethod
    def format_response(self, data: Any, format_type: str) -> Any:
        """Format response data in specified format."""
        pass

    @abstractmethod
    def handle_error(self, error_code: int, error_message: str) -> Dict[str, Any]:
        """Handle and format error responses."""
        pass


class HistoricalPeaksHandler(APIHandler):
    """
    Runs the historical 12CP analysis for a look-back window.

    The five aggregate queries are issued concurrently and joined; if any
    of them fails or times out the whole fetch fails and `latest` keeps the
    previous successful result. When fetches overlap, only the most
    recently started one may replace `latest`.
    """

    def __init__(self,
                 data_source: PeakDataSource,
                 aggregator: Optional[PeakAggregator] = None,
                 engine: Optional[PeakPredictionEngine] = None,
                 clock: Optional[Callable[[], pd.Timestamp]] = None,
                 timeout: float = Config.QUERY_TIMEOUT_SECONDS,
                 top_limit: int = Config.TOP_PEAKS_LIMIT,
                 sample_limit: int = Config.TOP_PEAKS_SAMPLE_LIMIT,
                 tz: str = MOUNTAIN_TZ):
        self.data_source = data_source
        self.aggregator = aggregator or PeakAggregator(tz)
        self.engine = engine or PeakPredictionEngine(tz=tz)
        self.clock = clock or (lambda: pd.Timestamp.now(tz='UTC'))
        self.timeout = timeout
        self.top_limit = top_limit
        self.sample_limit = max(sample_limit, top_limit)
        self.tz = tz

        self.latest: Optional[HistoricalPeaksData] = None
        self.loading = False
        self.selected_range = 1

        self._lock = threading.Lock()
        self._generation = 0
        self._in_flight = 0

    def validate_request(self, request: Dict[str, Any]) -> Tuple[bool, str]:
        years = request.get('years', 1)
        if isinstance(years, bool) or not isinstance(years, int):
            return False, f"years must be an integer, got {years!r}"
        if years not in Config.ALLOWED_YEAR_RANGES:
            return False, f"years must be one of {Config.ALLOWED_YEAR_RANGES}"
        format_type = request.get('format', 'dict')
        if format_type not in ('dict', 'json', 'calendar'):
            return False, f"Unsupported format: {format_type}"
        return True, ''

    def fetch_historical_peaks(self, years: int = 1) -> HistoricalPeaksData:
        """
        Fetch and analyse `years` of history ending now.

        The returned bundle only becomes `latest` if no newer fetch was
        started in the meantime; `loading` stays set while any fetch runs.

        Raises:
            DataCollectionError: if any query fails or times out
        """
        with self._lock:
            self._generation += 1
            token = self._generation
            self._in_flight += 1
            self.loading = True
            self.selected_range = years

        try:
            end = parse_utc_timestamp(self.clock())
            start = end - pd.DateOffset(years=years)
            results = self._run_queries(start, end)
            bundle = self.build_bundle(results, start, end)
            with self._lock:
                if token == self._generation:
                    self.latest = bundle
                else:
                    logger.info(f"Discarding {years}-year result superseded by a newer fetch")
        finally:
            with self._lock:
                self._in_flight -= 1
                self.loading = self._in_flight > 0

        return bundle

    def _run_queries(self, start: pd.Timestamp, end: pd.Timestamp) -> Dict[str, List[Dict[str, Any]]]:
        source = self.data_source
        calls = {
            'monthly_peaks': (source.fetch_monthly_peaks, (start, end)),
            'top_peaks': (source.fetch_top_peaks, (start, end, self.sample_limit)),
            'yearly_peaks': (source.fetch_yearly_peaks, (start, end)),
            'seasonal_summary': (source.fetch_seasonal_summary, (start, end)),
            'yearly_top12': (source.fetch_yearly_top12, (start, end)),
        }

        executor = ThreadPoolExecutor(max_workers=len(QUERY_NAMES), thread_name_prefix='peak-query')
        try:
            futures = {}
            for name in QUERY_NAMES:
                fn, args = calls[name]
                futures[executor.submit(fn, *args)] = name
            done, pending = wait(futures, timeout=self.timeout, return_when=FIRST_EXCEPTION)

            for future in done:
                error = future.exception()
                if error is not None:
                    name = futures[future]
                    logger.error(f"Peak query {name} failed: {error}")
                    raise DataCollectionError(f"Query {name} failed: {error}", query=name) from error

            if pending:
                names = sorted(futures[f] for f in pending)
                logger.error(f"Peak queries timed out after {self.timeout}s: {names}")
                raise DataCollectionError(f"Queries timed out after {self.timeout}s: {', '.join(names)}",
                                          query=names[0])

            return {futures[future]: future.result() or [] for future in done}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def build_bundle(self, results: Dict[str, List[Dict[str, Any]]],
                     start: pd.Timestamp, end: pd.Timestamp) -> HistoricalPeaksData:
        """
        Pure transform from query results to the analysis bundle.
        `start` and `end` are the analysed window; `end` also anchors
        the upcoming-event schedule.
        """
        parser = PeakRowParser()
        monthly_records = parser.parse_rows(results.get('monthly_peaks'), 'monthly_peaks')
        top_records = parser.parse_rows(results.get('top_peaks'), 'top_peaks')
        yearly_records = parser.parse_rows(results.get('yearly_peaks'), 'yearly_peaks')
        top12_records = parser.parse_rows(results.get('yearly_top12'), 'yearly_top12')

        if not monthly_records and not top_records:
            logger.warning("No historical demand data for the selected period")
            return HistoricalPeaksData(status='no_data', generated_at=end.to_pydatetime(),
                                       date_range=(start, end))

        aggregator = self.aggregator
        monthly_peaks = aggregator.aggregate_monthly(monthly_records)
        top_sample = aggregator.aggregate_all_time(top_records, self.sample_limit)
        all_time_peaks = top_sample[:self.top_limit]
        yearly_peaks = aggregator.aggregate_yearly(yearly_records)
        yearly_top12 = aggregator.aggregate_yearly_top12(top12_records)

        seasonal = parse_seasonal_rows(results.get('seasonal_summary'))
        if seasonal.winter_avg_mw is None and seasonal.summer_avg_mw is None:
            seasonal = aggregator.seasonal_from_monthly(monthly_peaks)

        # One growth figure drives monthly predictions, events and trends
        growth_rate = self.engine.estimate_growth_rate(yearly_peaks)
        events = self.engine.generate_predictions(yearly_top12, top_sample, as_of=end, growth_rate=growth_rate)
        stats = aggregator.calculate_stats(monthly_peaks, seasonal)
        patterns = analyze_patterns(top_sample)

        current_year = end.tz_convert(self.tz).year
        current_year_peak = next((p.peak_demand_mw for p in yearly_peaks if p.year == current_year), None)

        bundle = HistoricalPeaksData(
            status='ok',
            generated_at=end.to_pydatetime(),
            monthly_peaks=monthly_peaks,
            all_time_peaks=all_time_peaks,
            top_peaks_sample=top_sample,
            yearly_peaks=yearly_peaks,
            yearly_top12=yearly_top12,
            seasonal=seasonal,
            peak_patterns=patterns,
            dominant_conditions=describe_dominant_conditions(patterns),
            monthly_predictions=self.engine.predict_monthly(all_time_peaks, monthly_peaks, growth_rate),
            scheduled_events=events,
            prediction_summary=self.engine.get_prediction_summary(events),
            stats=stats,
            yearly_trends=aggregator.build_yearly_trends(yearly_peaks, growth_rate, monthly_peaks),
            current_year_peak_mw=current_year_peak,
            growth_rate=growth_rate,
            date_range=(start, end),
            record_count=len(monthly_records),
            years_analyzed=len(stats.peaks_by_year) if stats else 0,
        )
        logger.info(
            f"Found {len(monthly_peaks)} monthly peaks across {bundle.years_analyzed} years "
            f"with {len(all_time_peaks)} all-time peaks"
        )
        return bundle

    def process_forecast_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        valid, message = self.validate_request(request)
        if not valid:
            return self.handle_error(400, message)

        try:
            bundle = self.fetch_historical_peaks(request.get('years', 1))
        except DataCollectionError as e:
            return self.handle_error(502, str(e))

        return {
            'success': True,
            'notification': self.notification_for(bundle),
            'data': self.format_response(bundle, request.get('format', 'dict')),
        }

    def format_response(self, data: HistoricalPeaksData, format_type: str) -> Any:
        if format_type == 'dict':
            return data.to_dict()
        if format_type == 'json':
            return json.dumps(data.to_dict(), default=str)
        if format_type == 'calendar':
            return [event.to_calendar_event() for event in data.scheduled_events]
        raise ValueError(f"Unsupported format: {format_type}")

    def handle_error(self, error_code: int, error_message: str) -> Dict[str, Any]:
        logger.error(f"Historical peaks request failed ({error_code}): {error_message}")
        return {
            'success': False,
            'error_code': error_code,
            'notification': {
                'title': 'Error Loading Historical Data',
                'description': error_message or 'Failed to fetch historical peaks.',
                'variant': 'destructive',
            },
        }

    @staticmethod
    def notification_for(bundle: HistoricalPeaksData) -> Dict[str, str]:
        if not bundle.has_data:
            return {
                'title': 'No Historical Data',
                'description': 'Insufficient history: no demand data available for the selected period.',
                'variant': 'destructive',
            }
        return {
            'title': 'Historical Peaks Loaded',
            'description': (f"Found {len(bundle.monthly_peaks)} monthly peaks across "
                            f"{bundle.years_analyzed} years with top {len(bundle.all_time_peaks)} "
                            f"all-time peaks."),
            'variant': 'default',
        }
