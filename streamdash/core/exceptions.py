"""Error types raised by the query layer"""
from typing import Optional


class StreamDashError(Exception):
    """Base error for all StreamDash failures"""

    summary = "Request failed"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidQuery(StreamDashError):
    """Caller supplied parameters the engine cannot turn into a query"""

    summary = "Invalid query parameters"


class InvalidGranularity(InvalidQuery):
    pass


class InvalidSortField(InvalidQuery):
    pass


class InvalidFilterField(InvalidQuery):
    pass


class InvalidTimeRange(InvalidQuery):
    pass


class QueryFailure(StreamDashError):
    """The time-series store could not answer the query"""

    summary = "Bandwidth query failed"


class QueryTimeout(QueryFailure):
    summary = "Bandwidth query timed out"


class StoreUnavailable(QueryFailure):
    summary = "Time-series store unavailable"


class ResultTooLarge(QueryFailure):
    """Result set exceeded the in-memory row cap"""

    summary = "Result set too large"


class CountUnavailable(StreamDashError):
    """Count-only query failed while the data query succeeded"""

    summary = "Total count unavailable"
