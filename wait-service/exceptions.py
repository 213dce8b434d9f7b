"""
Error taxonomy for the wait-time service
"""


class WaitServiceError(Exception):
    """Base exception for all wait-service errors."""
    pass


class InvalidInput(WaitServiceError):
    """Raised for malformed dates, times or negative queue lengths. Never retried."""
    pass


class InvalidDateKey(InvalidInput):
    """Raised when a date key is not a real YYYY-MM-DD date."""
    pass


class InvalidTimeFormat(InvalidInput):
    """Raised when a time is neither HH:MM nor an ISO timestamp."""
    pass


class SourceUnavailable(WaitServiceError):
    """Raised when the backing store cannot be reached at all (or is disabled)."""

    def __init__(self, message: str, source: str = None):
        super().__init__(message)
        self.source = source
