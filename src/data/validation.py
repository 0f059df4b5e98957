"""
Validation of peak demand rows returned by the data source.
Malformed rows are skipped with a warning instead of aborting the
whole aggregation, since historical AESO data carries occasional bad
samples.
"""

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from models.data_models import DemandPeakRecord, SeasonalSummary
from utils.exceptions import TimestampParseError
from utils.timezone_utils import parse_utc_timestamp

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS = ('peak_timestamp', 'timestamp')
DEMAND_FIELDS = ('peak_demand_mw', 'ail_mw', 'demand_mw')
PRICE_FIELDS = ('price_at_peak', 'pool_price')
WEATHER_FIELDS = ('temperature_calgary', 'temperature_edmonton', 'wind_speed', 'cloud_cover')

# Alberta system load has never been near this; anything above is a bad sample
MAX_PLAUSIBLE_DEMAND_MW = 50000.0


class DataQualityIssue:
    """A single problem found in a source row."""

    def __init__(self, issue_type: str, severity: str, description: str,
                 row_index: Optional[int] = None, query: Optional[str] = None):
        self.issue_type = issue_type
        self.severity = severity
        self.description = description
        self.row_index = row_index
        self.query = query
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'issue_type': self.issue_type,
            'severity': self.severity,
            'description': self.description,
            'row_index': self.row_index,
            'query': self.query,
            'timestamp': self.timestamp.isoformat(),
        }


def _first_present(row: Dict[str, Any], fields: Iterable[str]) -> Any:
    for name in fields:
        if name in row and row[name] is not None:
            return row[name]
    return None


def coerce_optional_float(value: Any) -> Optional[float]:
    """Return a finite float, or None for missing / non-numeric values."""
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


class PeakRowParser:
    """
    Turns query rows into DemandPeakRecord objects.
    Keeps a list of DataQualityIssue for every skipped row.
    """

    def __init__(self, max_demand_mw: float = MAX_PLAUSIBLE_DEMAND_MW):
        self.max_demand_mw = max_demand_mw
        self.issues: List[DataQualityIssue] = []

    def parse_rows(self, rows: Optional[Iterable[Dict[str, Any]]], query: str = 'peaks') -> List[DemandPeakRecord]:
        """
        Parse rows, skipping malformed ones.

        Args:
            rows: Rows as returned by the data source
            query: Name of the query, used in log messages

        Returns:
            List of valid records in source order
        """
        records = []
        issues_before = len(self.issues)
        for index, row in enumerate(rows or []):
            record = self.parse_row(row, index, query)
            if record is not None:
                records.append(record)

        skipped = len(self.issues) - issues_before
        if skipped:
            logger.warning(f"Skipped {skipped} malformed rows from {query}")
        return records

    def parse_row(self, row: Dict[str, Any], index: int = None, query: str = 'peaks') -> Optional[DemandPeakRecord]:
        raw_timestamp = _first_present(row, TIMESTAMP_FIELDS)
        try:
            timestamp = parse_utc_timestamp(raw_timestamp)
        except TimestampParseError as e:
            self._skip('invalid_timestamp', str(e), index, query)
            return None

        demand = coerce_optional_float(_first_present(row, DEMAND_FIELDS))
        if demand is None:
            self._skip('missing_demand', f"Row at {timestamp} has no numeric demand", index, query)
            return None
        if demand <= 0 or demand > self.max_demand_mw:
            self._skip('out_of_range', f"Demand {demand} MW at {timestamp} is out of range", index, query)
            return None

        return DemandPeakRecord(
            timestamp=timestamp,
            demand_mw=demand,
            price_at_peak=coerce_optional_float(_first_present(row, PRICE_FIELDS)),
            **{name: coerce_optional_float(row.get(name)) for name in WEATHER_FIELDS},
        )

    def _skip(self, issue_type: str, description: str, index: Optional[int], query: str) -> None:
        logger.warning(f"Skipping row {index} from {query}: {description}")
        self.issues.append(DataQualityIssue(issue_type, 'medium', description, index, query))


def parse_peak_rows(rows: Optional[Iterable[Dict[str, Any]]], query: str = 'peaks') -> List[DemandPeakRecord]:
    """Convenience wrapper around PeakRowParser.parse_rows."""
    return PeakRowParser().parse_rows(rows, query)


def parse_seasonal_rows(rows: Optional[Iterable[Dict[str, Any]]]) -> SeasonalSummary:
    """
    Build a SeasonalSummary from {season, avg_peak_mw, record_count} rows.
    Unknown seasons and non-numeric averages are ignored.
    """
    summary = SeasonalSummary()
    for row in rows or []:
        season = str(row.get('season', '')).strip().lower()
        average = coerce_optional_float(row.get('avg_peak_mw'))
        count = int(coerce_optional_float(row.get('record_count')) or 0)
        if season not in ('winter', 'summer'):
            logger.warning(f"Ignoring seasonal row with unknown season {season!r}")
            continue
        if average is None:
            logger.warning(f"Ignoring {season} row without a numeric average")
            continue
        setattr(summary, f"{season}_avg_mw", int(round(average)))
        setattr(summary, f"{season}_count", count)
    return summary
