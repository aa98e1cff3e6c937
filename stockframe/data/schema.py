"""
Canonical FeatureTable schema.

The column list and order below is a contract with downstream consumers:
stages may change rows and values, never columns.
"""

from typing import Dict, List

import numpy as np
import pandas as pd

KEY_COLUMNS: List[str] = ["symbol", "timestamp"]

BAR_COLUMNS: List[str] = [
    "symbol",
    "timestamp",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "vwap",
    "trade_count",
]

INDICATOR_COLUMNS: List[str] = [
    "adx",
    "atr",
    "aroonosc",
    "aroonu",
    "aroond",
    "bband_up",
    "bband_mid",
    "bband_low",
    "macd",
    "macdsignal",
    "macdhist",
    "rsi",
    "stoch_slowk",
    "stoch_slowd",
    "sma",
]

CANONICAL_COLUMNS: List[str] = BAR_COLUMNS + INDICATOR_COLUMNS

# Provider bar record field -> canonical column
RAW_FIELD_MAP: Dict[str, str] = {
    "c": "close",
    "h": "high",
    "l": "low",
    "n": "trade_count",
    "o": "open",
    "t": "timestamp",
    "v": "volume",
    "vw": "vwap",
}

FLOAT_COLUMNS: List[str] = ["open", "high", "low", "close", "vwap"] + INDICATOR_COLUMNS
INTEGER_COLUMNS: List[str] = ["volume", "trade_count"]


def empty_frame() -> pd.DataFrame:
    """Empty FeatureTable carrying the canonical schema and dtypes."""
    frame = pd.DataFrame({
        col: pd.Series(dtype=object if col in KEY_COLUMNS else float)
        for col in CANONICAL_COLUMNS
    })
    return coerce_dtypes(frame)


def coerce_dtypes(df: pd.DataFrame) -> pd.DataFrame:
    """
    Cast columns to canonical dtypes without touching the timestamp.

    Prices and indicators become float64, volume/trade_count nullable Int64,
    symbol a string column.
    """
    out = df.copy()
    out["symbol"] = out["symbol"].astype("string")
    for col in FLOAT_COLUMNS:
        out[col] = pd.to_numeric(out[col], errors="raise").astype(np.float64)
    for col in INTEGER_COLUMNS:
        out[col] = pd.to_numeric(out[col], errors="raise").astype("Int64")
    return out


def validate_schema(df: pd.DataFrame) -> None:
    """Raise ValueError if ``df`` does not carry the canonical column list."""
    columns = list(df.columns)
    if columns != CANONICAL_COLUMNS:
        missing = [c for c in CANONICAL_COLUMNS if c not in columns]
        extra = [c for c in columns if c not in CANONICAL_COLUMNS]
        raise ValueError(
            f"FeatureTable schema drift: missing={missing}, extra={extra}, order={columns}"
        )
