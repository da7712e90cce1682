from typing import Optional

from sentinel_aggregator.domain import SourceErrorReason


class AggregatorError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SourceError(AggregatorError):
    """Raised inside an adapter; converted to a failed SourceResult at the adapter boundary."""

    def __init__(self, reason: SourceErrorReason, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code)
        self.reason = reason


class NotReadyError(AggregatorError):
    """No snapshot has been published yet."""


class ConfigError(AggregatorError):
    pass
