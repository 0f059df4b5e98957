"""
Mountain Time calendar reconstruction for AESO peak timestamps.
All source timestamps are UTC instants; 12CP reporting is done on
Alberta wall-clock time, which switches between MST and MDT.
"""

from datetime import date, datetime, time
from typing import Union

import pandas as pd

from models.data_models import LocalCalendar
from utils.config import Config
from utils.exceptions import TimestampParseError

MOUNTAIN_TZ = Config.PEAK_TIMEZONE

TimestampLike = Union[str, datetime, pd.Timestamp]


def parse_utc_timestamp(value: TimestampLike) -> pd.Timestamp:
    """
    Parse a timestamp into a tz-aware UTC pd.Timestamp.

    Naive values are taken to be UTC. Raises TimestampParseError for
    anything that cannot be parsed.
    """
    if value is None:
        raise TimestampParseError("Timestamp is missing")
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError) as e:
        raise TimestampParseError(f"Unparseable timestamp {value!r}: {e}") from e
    if ts is pd.NaT:
        raise TimestampParseError(f"Unparseable timestamp {value!r}")
    if ts.tzinfo is None:
        return ts.tz_localize('UTC')
    return ts.tz_convert('UTC')


def to_local_calendar(value: TimestampLike, tz: str = MOUNTAIN_TZ) -> LocalCalendar:
    """
    Convert a UTC instant into local calendar fields.

    The UTC offset is resolved from the instant itself, so a January 2019
    timestamp uses MST and a July 2019 timestamp uses MDT regardless of
    today's date.
    """
    local = parse_utc_timestamp(value).tz_convert(tz)
    return LocalCalendar(
        year=local.year,
        month=local.month,
        day_of_month=local.day,
        hour=local.hour,
        day_of_week=local.dayofweek,
        tz_abbreviation=local.tzname(),
    )


def to_utc(calendar: LocalCalendar, tz: str = MOUNTAIN_TZ) -> pd.Timestamp:
    """
    Inverse of to_local_calendar at hour resolution.

    Ambiguous fall-back hours resolve to the daylight-time occurrence and
    non-existent spring-forward hours are shifted forward.
    """
    naive = pd.Timestamp(year=calendar.year, month=calendar.month,
                         day=calendar.day_of_month, hour=calendar.hour)
    local = naive.tz_localize(tz, ambiguous=True, nonexistent='shift_forward')
    return local.tz_convert('UTC')


def localize_frame(df: pd.DataFrame, column: str = 'timestamp', tz: str = MOUNTAIN_TZ) -> pd.DataFrame:
    """
    Add local calendar columns to a frame holding UTC timestamps.

    Adds local_year, local_month, local_day, local_hour and local_dow
    (Monday=0). The timestamp column is normalised to UTC.
    """
    result = df.copy()
    result[column] = pd.to_datetime(result[column], utc=True)
    local = result[column].dt.tz_convert(tz)
    result['local_year'] = local.dt.year
    result['local_month'] = local.dt.month
    result['local_day'] = local.dt.day
    result['local_hour'] = local.dt.hour
    result['local_dow'] = local.dt.dayofweek
    return result


def tz_abbreviation(day: date, hour: int = 12, tz: str = MOUNTAIN_TZ) -> str:
    """MST or MDT label in effect on a calendar date at the given hour."""
    naive = pd.Timestamp(datetime.combine(day, time(hour=hour % 24)))
    return naive.tz_localize(tz, ambiguous=True, nonexistent='shift_forward').tzname()


def format_peak_hour(hour: int) -> str:
    """Format an hour of day the way operators read it, e.g. '5 PM'."""
    if hour == 0:
        return '12 AM'
    if hour == 12:
        return '12 PM'
    return f"{hour} AM" if hour < 12 else f"{hour - 12} PM"

