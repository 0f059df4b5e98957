import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SUPABASE_URL = os.getenv('SUPABASE_URL', '')
    SUPABASE_ANON_KEY = os.getenv('SUPABASE_ANON_KEY', '')

    PEAK_TIMEZONE = os.getenv('PEAK_TIMEZONE', 'America/Edmonton')
    QUERY_TIMEOUT_SECONDS = float(os.getenv('QUERY_TIMEOUT_SECONDS', 30))

    TOP_PEAKS_LIMIT = int(os.getenv('TOP_PEAKS_LIMIT', 12))
    TOP_PEAKS_SAMPLE_LIMIT = int(os.getenv('TOP_PEAKS_SAMPLE_LIMIT', 50))
    SCHEDULED_EVENT_LIMIT = int(os.getenv('SCHEDULED_EVENT_LIMIT', 12))

    # Annual load growth assumed when fewer than two years of peaks exist
    DEFAULT_GROWTH_RATE = float(os.getenv('DEFAULT_GROWTH_RATE', 0.03))

    SKIP_HOLIDAYS = _env_bool('SKIP_HOLIDAYS', True)
    HOLIDAY_COUNTRY = os.getenv('HOLIDAY_COUNTRY', 'CA')
    HOLIDAY_SUBDIVISION = os.getenv('HOLIDAY_SUBDIVISION', 'AB')

    ALLOWED_YEAR_RANGES = (1, 2, 4)

    @classmethod
    def validate(cls):
        """Validate required environment variables"""
        if not cls.SUPABASE_URL:
            raise ValueError("SUPABASE_URL not set")
        if not cls.SUPABASE_ANON_KEY:
            raise ValueError("SUPABASE_ANON_KEY not set")
