"""
Configuration loading for the stockframe pipeline.

Settings come from (lowest to highest precedence) built-in defaults, a
``.env`` file in the working directory, the process environment, and
explicit keyword overrides.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple

from dotenv import load_dotenv

from .exceptions import ConfigurationError

KEY_ENV = "ALPACA_KEY"
SECRET_ENV = "ALPACA_SECRET"

DEFAULT_DATA_URL = "https://data.alpaca.markets"
DEFAULT_TICKERS = ["AAPL", "TSLA"]
DEFAULT_LOOKBACK_DAYS = 30

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class PipelineConfig:
    """Runtime settings for a pipeline run."""

    api_key_id: str
    api_secret_key: str = field(repr=False)
    data_url: str = DEFAULT_DATA_URL
    requests_per_minute: float = 15.0  # one request every 4 seconds
    max_workers: int = 4
    request_timeout: float = 30.0
    skip_short_history: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.api_key_id:
            raise ConfigurationError("Missing API key id", variable=KEY_ENV)
        if not self.api_secret_key:
            raise ConfigurationError("Missing API secret key", variable=SECRET_ENV)
        if self.requests_per_minute <= 0:
            raise ConfigurationError(
                "requests_per_minute must be positive", value=self.requests_per_minute
            )
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1", value=self.max_workers)
        if self.request_timeout <= 0:
            raise ConfigurationError(
                "request_timeout must be positive", value=self.request_timeout
            )

    @property
    def masked_key(self) -> str:
        return f"{self.api_key_id[:8]}..."

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Return a copy with non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def _env_number(name: str, default: float, cast=float):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} is not a valid number", variable=name, value=raw)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} is not a valid boolean", variable=name, value=raw)


def load_config(env_file: Optional[str] = None, **overrides: Any) -> PipelineConfig:
    """
    Build a PipelineConfig from the environment.

    Credentials are required: a missing ``ALPACA_KEY`` or ``ALPACA_SECRET``
    raises ConfigurationError before any network call is attempted.

    Args:
        env_file: Optional path to a dotenv file (defaults to ``.env`` lookup)
        **overrides: Explicit values that take precedence over the environment

    Returns:
        Validated PipelineConfig
    """
    load_dotenv(env_file)

    for variable in (KEY_ENV, SECRET_ENV):
        if not os.environ.get(variable):
            raise ConfigurationError(
                f"{variable} environment variable not set. "
                "Set it in your shell or add it to a .env file in the project root.",
                variable=variable
            )

    config = PipelineConfig(
        api_key_id=os.environ[KEY_ENV],
        api_secret_key=os.environ[SECRET_ENV],
        data_url=os.environ.get("ALPACA_DATA_URL", DEFAULT_DATA_URL),
        requests_per_minute=_env_number("STOCKFRAME_REQUESTS_PER_MINUTE", 15.0),
        max_workers=_env_number("STOCKFRAME_MAX_WORKERS", 4, cast=int),
        request_timeout=_env_number("STOCKFRAME_REQUEST_TIMEOUT", 30.0),
        skip_short_history=_env_flag("STOCKFRAME_SKIP_SHORT_HISTORY", False),
        log_level=os.environ.get("STOCKFRAME_LOG_LEVEL", "INFO"),
    )
    return config.with_overrides(**overrides)


def default_window(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    days: int = DEFAULT_LOOKBACK_DAYS
) -> Tuple[datetime, datetime]:
    """
    Resolve the fetch window.

    When either bound is missing, ``end`` becomes today's UTC midnight and
    ``start`` is ``days`` before it. Naive datetimes are taken as UTC.
    """
    if start is None or end is None:
        end = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        start = end - timedelta(days=days)

    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)

    if start > end:
        raise ConfigurationError("start must not be after end", start=start, end=end)
    return start, end


def default_tickers(tickers: Optional[List[str]] = None) -> List[str]:
    """Return the given tickers (upper-cased, de-duplicated) or the default pair."""
    if not tickers:
        return list(DEFAULT_TICKERS)
    seen = []
    for ticker in tickers:
        ticker = ticker.strip().upper()
        if ticker and ticker not in seen:
            seen.append(ticker)
    return seen
