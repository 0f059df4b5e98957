"""
Data models for the 12CP peak analysis system.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd


MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
               'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']
FULL_MONTH_NAMES = ['January', 'February', 'March', 'April', 'May', 'June',
                    'July', 'August', 'September', 'October', 'November', 'December']
# Monday first, matching pandas dayofweek
DAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']


@dataclass(frozen=True)
class DemandPeakRecord:
    """One demand observation (the peak of an aggregation window)."""
    timestamp: pd.Timestamp  # tz-aware, UTC
    demand_mw: float
    price_at_peak: Optional[float] = None
    temperature_calgary: Optional[float] = None
    temperature_edmonton: Optional[float] = None
    wind_speed: Optional[float] = None
    cloud_cover: Optional[float] = None


@dataclass(frozen=True)
class LocalCalendar:
    """Wall-clock calendar fields of an instant in the peak timezone."""
    year: int
    month: int
    day_of_month: int
    hour: int
    day_of_week: int  # Monday=0
    tz_abbreviation: str = ''

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]


@dataclass
class MonthlyPeak:
    """Highest demand interval of one local calendar month."""
    month_key: str  # YYYY-MM
    month_label: str  # e.g. "Dec 25"
    peak_timestamp: pd.Timestamp
    peak_demand_mw: int
    peak_hour: int
    day_of_week: str
    price_at_peak: Optional[float]
    year: int
    month: int


@dataclass
class AllTimePeakRecord:
    """A ranked peak hour, used for all-time and per-year top-N lists."""
    rank: int
    timestamp: pd.Timestamp
    demand_mw: int
    price_at_peak: Optional[float]
    hour: int
    day_of_week: str
    day_index: int
    day_of_month: int
    month: int
    month_name: str
    year: int
    temperature_calgary: Optional[float] = None
    temperature_edmonton: Optional[float] = None
    wind_speed: Optional[float] = None
    cloud_cover: Optional[float] = None


@dataclass
class YearlyPeakSummary:
    """Single highest peak of a local calendar year."""
    year: int
    peak_timestamp: pd.Timestamp
    peak_demand_mw: int
    peak_hour: int
    day_of_week: str
    month: int
    price_at_peak: Optional[float]
    growth_from_prev_year: Optional[float] = None  # percent


@dataclass
class YearlyTop12Set:
    """Twelve highest peaks of a year; min_demand_mw is the 12CP floor."""
    year: int
    peaks: List[AllTimePeakRecord]
    max_demand_mw: int
    min_demand_mw: int

    @property
    def is_complete(self) -> bool:
        return len(self.peaks) == 12


@dataclass
class SeasonalSummary:
    """Average monthly peak for winter (Nov-Feb) and summer (Jun-Aug)."""
    winter_avg_mw: Optional[int] = None
    summer_avg_mw: Optional[int] = None
    winter_count: int = 0
    summer_count: int = 0


@dataclass
class PatternBucket:
    index: int
    label: str
    count: int = 0
    max_demand_mw: int = 0
    avg_demand_mw: int = 0


@dataclass
class PeakPattern:
    """Frequency tables of top peaks by month, hour of day and day of week."""
    by_month: List[PatternBucket]
    by_hour: List[PatternBucket]
    by_day_of_week: List[PatternBucket]

    @property
    def total(self) -> int:
        return sum(bucket.count for bucket in self.by_month)

    def share(self, dimension: str, index: int) -> float:
        """Fraction of peaks that fell in the given bucket (0 when no peaks)."""
        if self.total == 0:
            return 0.0
        for bucket in getattr(self, dimension):
            if bucket.index == index:
                return bucket.count / self.total
        return 0.0

    def bucket(self, dimension: str, index: int) -> Optional[PatternBucket]:
        for bucket in getattr(self, dimension):
            if bucket.index == index:
                return bucket
        return None

    @property
    def dominant_month(self) -> Optional[int]:
        if self.total == 0:
            return None
        return self.by_month[0].index

    @property
    def dominant_hour(self) -> Optional[int]:
        if self.total == 0:
            return None
        return self.by_hour[0].index

    @property
    def dominant_day(self) -> Optional[int]:
        if self.total == 0:
            return None
        return self.by_day_of_week[0].index


@dataclass
class DemandRange:
    min: int
    max: int
    median: Optional[int] = None


@dataclass
class TimeWindow:
    start: str  # "HH:00"
    end: str
    timezone: str  # MST / MDT


@dataclass
class MonthlyPeakPrediction:
    month: int
    month_name: str
    predicted_peak_hour: int
    probability_score: int  # 0-100
    risk_level: str
    expected_demand_range: DemandRange
    reasoning: str


@dataclass
class ScheduledPeakEvent:
    """A projected future 12CP window on a specific weekday."""
    rank: int
    scheduled_date: date
    display_date: str
    time_window: TimeWindow
    expected_demand_mw: DemandRange
    confidence_score: int  # 0-100
    risk_level: str
    historical_reference: str
    weather_condition: str
    month_group: str
    days_until_event: int

    def to_calendar_event(self) -> Dict[str, Any]:
        """Shape consumed by the calendar export utility."""
        return {
            'scheduledDate': datetime(self.scheduled_date.year,
                                      self.scheduled_date.month,
                                      self.scheduled_date.day),
            'timeWindow': {
                'start': self.time_window.start,
                'end': self.time_window.end,
                'timezone': self.time_window.timezone,
            },
            'expectedDemandMW': {
                'min': self.expected_demand_mw.min,
                'max': self.expected_demand_mw.max,
            },
            'confidenceScore': self.confidence_score,
            'riskLevel': self.risk_level,
            'historicalReference': self.historical_reference,
        }


@dataclass
class PredictionSummary:
    critical_count: int = 0
    high_count: int = 0
    events_by_month: Dict[str, int] = field(default_factory=dict)
    expected_max_demand: int = 0
    average_confidence: int = 0


@dataclass
class HistoricalPeakStats:
    all_time_peak_mw: int
    all_time_peak_date: Optional[pd.Timestamp]
    avg_monthly_peak_mw: int
    peaks_by_year: Dict[int, List[MonthlyPeak]]
    common_peak_hours: List[Tuple[int, int]]  # (hour, count)
    winter_avg_peak_mw: Optional[int]
    summer_avg_peak_mw: Optional[int]


@dataclass
class YearlyPeakTrend:
    year: int
    max_peak_mw: int
    avg_peak_mw: int = 0  # mean of the year's monthly peaks
    is_predicted: bool = False


@dataclass
class HistoricalPeaksData:
    """Everything derived from one snapshot of the peak data source."""
    status: str  # "ok" | "no_data"
    generated_at: datetime
    monthly_peaks: List[MonthlyPeak] = field(default_factory=list)
    all_time_peaks: List[AllTimePeakRecord] = field(default_factory=list)
    top_peaks_sample: List[AllTimePeakRecord] = field(default_factory=list)
    yearly_peaks: List[YearlyPeakSummary] = field(default_factory=list)
    yearly_top12: List[YearlyTop12Set] = field(default_factory=list)
    seasonal: SeasonalSummary = field(default_factory=SeasonalSummary)
    peak_patterns: Optional[PeakPattern] = None
    dominant_conditions: str = ''
    monthly_predictions: List[MonthlyPeakPrediction] = field(default_factory=list)
    scheduled_events: List[ScheduledPeakEvent] = field(default_factory=list)
    prediction_summary: Optional[PredictionSummary] = None
    stats: Optional[HistoricalPeakStats] = None
    yearly_trends: List[YearlyPeakTrend] = field(default_factory=list)
    current_year_peak_mw: Optional[int] = None  # peak so far in the year of generated_at
    growth_rate: Optional[float] = None
    date_range: Optional[Tuple[pd.Timestamp, pd.Timestamp]] = None  # analysed window
    record_count: int = 0
    years_analyzed: int = 0

    @property
    def has_data(self) -> bool:
        return self.status == 'ok'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
