"""
Exception hierarchy for the stockframe pipeline.

Every exception accepts keyword context (ticker, stage, value, ...) which is
kept on ``.context`` and rendered into the message, so a failed run can be
diagnosed from its log line alone.

Only ``TickerFetchError`` is recoverable: the assembler logs it and skips the
ticker. Everything else aborts the run.
"""

from typing import Any, Dict


class StockFrameError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        if self.context:
            ctx = ', '.join(f'{k}={v}' for k, v in self.context.items())
            return f"{self.message} [{ctx}]"
        return self.message


class ConfigurationError(StockFrameError):
    """Raised when a credential or setting is missing or invalid."""


class TickerFetchError(StockFrameError):
    """Raised when bars for a single ticker cannot be retrieved."""


class InvalidResponseError(TickerFetchError):
    """Raised when the provider answers with a body of the wrong shape."""


class SchemaMismatchError(StockFrameError):
    """Raised when raw bar records do not match the expected raw schema."""


class TimestampParseError(StockFrameError):
    """Raised when a timestamp string does not match the fixed format."""


class InsufficientHistoryError(StockFrameError):
    """Raised when a symbol has fewer rows than the largest indicator window."""


class FeatureComputationError(StockFrameError):
    """Raised when an indicator fails on a symbol partition."""
