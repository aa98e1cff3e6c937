"""
Shared fixtures for the stockframe test suite.
"""

import logging

import numpy as np
import pandas as pd
import pytest

from stockframe.data.schema import INDICATOR_COLUMNS, coerce_dtypes


def make_bars(start: str, n: int, base: float = 100.0):
    """Raw provider bar records, one per minute from ``start``."""
    times = pd.date_range(start=start, periods=n, freq="60s", tz="UTC")
    bars = []
    for i, ts in enumerate(times):
        close = base + 2.0 * np.sin(i / 5.0) + 0.05 * i
        bars.append({
            "t": ts.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "o": round(close - 0.1, 4),
            "h": round(close + 0.5, 4),
            "l": round(close - 0.5, 4),
            "c": round(close, 4),
            "v": 1000 + i,
            "n": 10 + i,
            "vw": round(close, 4),
        })
    return bars


def make_table(rows):
    """FeatureTable from ``(symbol, timestamp, close)`` tuples, other prices derived."""
    records = []
    for symbol, ts, close in rows:
        records.append({
            "symbol": symbol,
            "timestamp": pd.Timestamp(ts),
            "open": close,
            "high": None if close is None else close + 0.5,
            "low": None if close is None else close - 0.5,
            "close": close,
            "volume": 100,
            "vwap": close,
            "trade_count": 1,
        })
    df = pd.DataFrame.from_records(records)
    for col in INDICATOR_COLUMNS:
        df[col] = np.nan
    df = coerce_dtypes(df)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True).astype("datetime64[ns, UTC]")
    return df


@pytest.fixture
def bar_factory():
    return make_bars


@pytest.fixture
def table_factory():
    return make_table


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers installed by CLI callbacks so they don't outlive the test."""
    yield
    logger = logging.getLogger("stockframe")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
