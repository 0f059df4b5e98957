"""
Data source connectors for historical AESO peak demand.
Each source answers the five aggregate queries the 12CP analysis needs.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from analysis.peak_aggregator import SUMMER_MONTHS, TOP12_SIZE, WINTER_MONTHS, PeakAggregator
from data.validation import WEATHER_FIELDS, PeakRowParser
from models.data_models import DAY_NAMES
from utils.config import Config
from utils.exceptions import DataCollectionError
from utils.timezone_utils import MOUNTAIN_TZ, parse_utc_timestamp

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

QUERY_NAMES = ('monthly_peaks', 'top_peaks', 'yearly_peaks', 'seasonal_summary', 'yearly_top12')


class PeakDataSource(ABC):
    """Abstract source of pre-aggregated peak demand rows."""

    @abstractmethod
    def fetch_monthly_peaks(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Rows: month_key, peak_timestamp, peak_demand_mw, peak_hour, price_at_peak, day_of_week."""
        pass

    @abstractmethod
    def fetch_top_peaks(self, start: datetime, end: datetime, limit: int) -> List[Dict[str, Any]]:
        """Highest demand rows, ordered by demand descending."""
        pass

    @abstractmethod
    def fetch_yearly_peaks(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Rows: year, peak_timestamp, peak_demand_mw, peak_hour, price_at_peak, day_of_week."""
        pass

    @abstractmethod
    def fetch_seasonal_summary(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Rows: season ('winter' | 'summer'), avg_peak_mw, record_count."""
        pass

    @abstractmethod
    def fetch_yearly_top12(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Monthly-peak shaped rows plus year, rank and weather covariates."""
        pass


class SupabasePeakConnector(PeakDataSource):
    """
    Calls the peak aggregation functions exposed through Supabase's
    PostgREST RPC endpoint.
    """

    RPC_FUNCTIONS = {
        'monthly_peaks': 'get_monthly_peak_demand',
        'top_peaks': 'get_top_peak_demand',
        'yearly_peaks': 'get_yearly_peak_demand',
        'seasonal_summary': 'get_seasonal_peak_summary',
        'yearly_top12': 'get_yearly_top12_peaks',
    }

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: float = Config.QUERY_TIMEOUT_SECONDS):
        self.url = (url or Config.SUPABASE_URL).rstrip('/')
        self.api_key = api_key or Config.SUPABASE_ANON_KEY
        self.timeout = timeout
        self.session = self._create_session()

        logger.info(f"Initialized SupabasePeakConnector for {self.url}")

    def _create_session(self) -> requests.Session:
        """Create requests session with retry strategy."""
        session = requests.Session()

        # RPC calls are read-only, so POST is safe to retry
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=frozenset(['GET', 'POST']),
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            'apikey': self.api_key,
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json',
        })

        return session

    def _call_rpc(self, query: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        function = self.RPC_FUNCTIONS[query]
        url = f"{self.url}/rest/v1/rpc/{function}"
        try:
            response = self.session.post(url, json=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Request for {query} failed: {e}")
            raise DataCollectionError(f"Request for {query} failed: {e}", query=query) from e

        if response.status_code != 200:
            logger.error(f"RPC {function} returned status {response.status_code}")
            raise DataCollectionError(
                f"RPC {function} returned status {response.status_code}: {response.text[:200]}",
                query=query,
            )

        try:
            rows = response.json()
        except ValueError as e:
            raise DataCollectionError(f"RPC {function} returned invalid JSON", query=query) from e

        if rows is None:
            return []
        if not isinstance(rows, list):
            raise DataCollectionError(f"RPC {function} returned {type(rows).__name__}, expected a list",
                                      query=query)
        logger.info(f"Fetched {len(rows)} rows from {function}")
        return rows

    @staticmethod
    def _window(start: datetime, end: datetime) -> Dict[str, str]:
        return {
            'start_date': parse_utc_timestamp(start).isoformat(),
            'end_date': parse_utc_timestamp(end).isoformat(),
        }

    def fetch_monthly_peaks(self, start, end):
        return self._call_rpc('monthly_peaks', self._window(start, end))

    def fetch_top_peaks(self, start, end, limit):
        params = self._window(start, end)
        params['peak_limit'] = limit
        return self._call_rpc('top_peaks', params)

    def fetch_yearly_peaks(self, start, end):
        return self._call_rpc('yearly_peaks', self._window(start, end))

    def fetch_seasonal_summary(self, start, end):
        return self._call_rpc('seasonal_summary', self._window(start, end))

    def fetch_yearly_top12(self, start, end):
        return self._call_rpc('yearly_top12', self._window(start, end))


class DataFramePeakSource(PeakDataSource):
    """
    Answers the aggregate queries from a raw interval DataFrame
    (timestamp, ail_mw, pool_price and optional weather columns).
    Useful offline, for backtests and in tests.
    """

    def __init__(self, data: pd.DataFrame, tz: str = MOUNTAIN_TZ):
        self.aggregator = PeakAggregator(tz)
        parser = PeakRowParser()
        records = parser.parse_rows(data.to_dict('records'), query='raw_intervals')
        self.frame = self.aggregator.records_to_frame(records)
        self.issues = parser.issues

        logger.info(f"Initialized DataFramePeakSource with {len(self.frame)} valid intervals")

    def _in_window(self, start: datetime, end: datetime) -> pd.DataFrame:
        if self.frame.empty:
            return self.frame
        mask = (self.frame['timestamp'] >= parse_utc_timestamp(start)) & \
               (self.frame['timestamp'] <= parse_utc_timestamp(end))
        return self.frame[mask]

    @staticmethod
    def _to_row(row: pd.Series) -> Dict[str, Any]:
        result = {
            'month_key': f"{int(row['local_year'])}-{int(row['local_month']):02d}",
            'year': int(row['local_year']),
            'peak_timestamp': row['timestamp'].isoformat(),
            'peak_demand_mw': float(row['demand_mw']),
            'peak_hour': int(row['local_hour']),
            'price_at_peak': None if pd.isna(row['price_at_peak']) else float(row['price_at_peak']),
            'day_of_week': DAY_NAMES[int(row['local_dow'])],
        }
        for name in WEATHER_FIELDS:
            result[name] = None if pd.isna(row[name]) else float(row[name])
        return result

    def _group_maxima(self, frame: pd.DataFrame, keys: List[str]) -> pd.DataFrame:
        if frame.empty:
            return frame
        return frame.loc[frame.groupby(keys, sort=True)['demand_mw'].idxmax()]

    def fetch_monthly_peaks(self, start, end):
        monthly = self._group_maxima(self._in_window(start, end), ['local_year', 'local_month'])
        return [self._to_row(row) for _, row in monthly.iterrows()]

    def fetch_top_peaks(self, start, end, limit):
        frame = self._in_window(start, end)
        top = frame.sort_values('demand_mw', ascending=False, kind='mergesort').head(limit)
        return [self._to_row(row) for _, row in top.iterrows()]

    def fetch_yearly_peaks(self, start, end):
        yearly = self._group_maxima(self._in_window(start, end), ['local_year'])
        return [self._to_row(row) for _, row in yearly.iterrows()]

    def fetch_seasonal_summary(self, start, end):
        monthly = self._group_maxima(self._in_window(start, end), ['local_year', 'local_month'])
        rows = []
        for season, months in (('winter', WINTER_MONTHS), ('summer', SUMMER_MONTHS)):
            if monthly.empty:
                break
            season_peaks = monthly[monthly['local_month'].isin(months)]['demand_mw']
            if season_peaks.empty:
                continue
            rows.append({
                'season': season,
                'avg_peak_mw': float(season_peaks.round().mean()),
                'record_count': int(len(season_peaks)),
            })
        return rows

    def fetch_yearly_top12(self, start, end):
        frame = self._in_window(start, end)
        rows = []
        if frame.empty:
            return rows
        for _, year_frame in frame.groupby('local_year', sort=True):
            top = year_frame.sort_values('demand_mw', ascending=False, kind='mergesort').head(TOP12_SIZE)
            for rank, (_, row) in enumerate(top.iterrows(), start=1):
                result = self._to_row(row)
                result['rank'] = rank
                rows.append(result)
        return rows
