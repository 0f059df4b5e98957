"""
Custom exceptions for the 12CP peak analysis system.
"""


class PeakAnalysisError(Exception):
    """Base exception for the 12CP peak analysis system."""
    pass


class DataCollectionError(PeakAnalysisError):
    """Exception raised when a peak data query fails or times out."""

    def __init__(self, message: str, query: str = None):
        super().__init__(message)
        self.query = query


class DataValidationError(PeakAnalysisError):
    """Exception raised during data validation."""
    pass


class TimestampParseError(DataValidationError, ValueError):
    """Exception raised when a timestamp cannot be parsed."""
    pass


class PredictionError(PeakAnalysisError):
    """Exception raised during peak prediction generation."""
    pass


class APIError(PeakAnalysisError):
    """Exception raised in API operations."""
    pass
