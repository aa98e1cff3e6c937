"""
Technical indicator engine.

Pure functions over one symbol's price arrays, built on the ``ta`` library.
Every function returns a float64 array of the same length as its input;
positions inside the indicator's lookback are NaN.
"""

from typing import Dict, Sequence, Union

import numpy as np
import pandas as pd
from ta.momentum import RSIIndicator, StochasticOscillator
from ta.trend import ADXIndicator, AroonIndicator, MACD, SMAIndicator
from ta.volatility import AverageTrueRange, BollingerBands

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]

ADX_WINDOW = 14
ATR_WINDOW = 14
AROON_WINDOW = 14
BBANDS_WINDOW = 5
BBANDS_DEV = 2
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
RSI_WINDOW = 14
STOCH_FASTK = 5
STOCH_SLOWK = 3
STOCH_SLOWD = 3
SMA_WINDOW = 30

# Largest single window any indicator needs; shorter partitions cannot be computed.
MIN_HISTORY = MACD_SLOW

# Leading positions without a valid value, per output column
LOOKBACK: Dict[str, int] = {
    "adx": 2 * ADX_WINDOW - 1,
    "atr": ATR_WINDOW,
    "aroonosc": AROON_WINDOW,
    "aroonu": AROON_WINDOW,
    "aroond": AROON_WINDOW,
    "bband_up": BBANDS_WINDOW - 1,
    "bband_mid": BBANDS_WINDOW - 1,
    "bband_low": BBANDS_WINDOW - 1,
    "macd": MACD_SLOW - 1 + MACD_SIGNAL - 1,
    "macdsignal": MACD_SLOW - 1 + MACD_SIGNAL - 1,
    "macdhist": MACD_SLOW - 1 + MACD_SIGNAL - 1,
    "rsi": RSI_WINDOW,
    "stoch_slowk": (STOCH_FASTK - 1) + (STOCH_SLOWK - 1) + (STOCH_SLOWD - 1),
    "stoch_slowd": (STOCH_FASTK - 1) + (STOCH_SLOWK - 1) + (STOCH_SLOWD - 1),
    "sma": SMA_WINDOW - 1,
}


def _series(values: ArrayLike) -> pd.Series:
    return pd.Series(np.asarray(values, dtype=np.float64))


def _finish(values: pd.Series, lookback: int) -> np.ndarray:
    """Convert to float array, blank the lookback and non-finite values."""
    out = values.to_numpy(dtype=np.float64, copy=True)
    out[~np.isfinite(out)] = np.nan
    out[:lookback] = np.nan
    return out


def adx(high: ArrayLike, low: ArrayLike, close: ArrayLike, window: int = ADX_WINDOW) -> np.ndarray:
    """Average Directional Movement Index."""
    close_s = _series(close)
    lookback = 2 * window - 1
    if len(close_s) <= lookback:
        return np.full(len(close_s), np.nan)
    indicator = ADXIndicator(high=_series(high), low=_series(low), close=close_s, window=window)
    return _finish(indicator.adx(), lookback)


def atr(high: ArrayLike, low: ArrayLike, close: ArrayLike, window: int = ATR_WINDOW) -> np.ndarray:
    """Average True Range (Wilder smoothing)."""
    close_s = _series(close)
    if len(close_s) <= window:
        return np.full(len(close_s), np.nan)
    indicator = AverageTrueRange(high=_series(high), low=_series(low), close=close_s, window=window)
    return _finish(indicator.average_true_range(), window)


def aroon(high: ArrayLike, low: ArrayLike, window: int = AROON_WINDOW) -> Dict[str, np.ndarray]:
    """
    Aroon up/down and oscillator.

    Returns:
        Dict with ``aroonu``, ``aroond`` and ``aroonosc`` (up minus down)
    """
    indicator = AroonIndicator(high=_series(high), low=_series(low), window=window)
    return {
        "aroonu": _finish(indicator.aroon_up(), window),
        "aroond": _finish(indicator.aroon_down(), window),
        "aroonosc": _finish(indicator.aroon_indicator(), window),
    }


def aroonosc(high: ArrayLike, low: ArrayLike, window: int = AROON_WINDOW) -> np.ndarray:
    """Aroon oscillator (aroon up minus aroon down)."""
    return aroon(high, low, window)["aroonosc"]


def bollinger_bands(
    close: ArrayLike,
    window: int = BBANDS_WINDOW,
    window_dev: float = BBANDS_DEV
) -> Dict[str, np.ndarray]:
    """Bollinger Bands on an SMA basis with population standard deviation."""
    indicator = BollingerBands(close=_series(close), window=window, window_dev=window_dev)
    lookback = window - 1
    return {
        "bband_up": _finish(indicator.bollinger_hband(), lookback),
        "bband_mid": _finish(indicator.bollinger_mavg(), lookback),
        "bband_low": _finish(indicator.bollinger_lband(), lookback),
    }


def macd(
    close: ArrayLike,
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL
) -> Dict[str, np.ndarray]:
    """MACD line, signal line and histogram."""
    indicator = MACD(close=_series(close), window_slow=slow, window_fast=fast, window_sign=signal)
    lookback = slow - 1 + signal - 1
    return {
        "macd": _finish(indicator.macd(), lookback),
        "macdsignal": _finish(indicator.macd_signal(), lookback),
        "macdhist": _finish(indicator.macd_diff(), lookback),
    }


def rsi(close: ArrayLike, window: int = RSI_WINDOW) -> np.ndarray:
    """Relative Strength Index."""
    indicator = RSIIndicator(close=_series(close), window=window)
    return _finish(indicator.rsi(), window)


def stoch_slow(
    high: ArrayLike,
    low: ArrayLike,
    close: ArrayLike,
    fastk: int = STOCH_FASTK,
    slowk: int = STOCH_SLOWK,
    slowd: int = STOCH_SLOWD
) -> Dict[str, np.ndarray]:
    """
    Slow stochastic: %K is the SMA(slowk) of fast %K, %D the SMA(slowd) of %K.
    """
    indicator = StochasticOscillator(
        high=_series(high), low=_series(low), close=_series(close),
        window=fastk, smooth_window=slowk
    )
    slow_k = indicator.stoch_signal()
    slow_d = slow_k.rolling(slowd, min_periods=slowd).mean()
    lookback = (fastk - 1) + (slowk - 1) + (slowd - 1)
    return {
        "stoch_slowk": _finish(slow_k, lookback),
        "stoch_slowd": _finish(slow_d, lookback),
    }


def sma(close: ArrayLike, window: int = SMA_WINDOW) -> np.ndarray:
    """Simple moving average."""
    indicator = SMAIndicator(close=_series(close), window=window)
    return _finish(indicator.sma_indicator(), window - 1)


def compute_indicators(high: ArrayLike, low: ArrayLike, close: ArrayLike) -> Dict[str, np.ndarray]:
    """
    Run every indicator with the fixed pipeline parameters.

    Args:
        high: High prices, oldest first
        low: Low prices, oldest first
        close: Close prices, oldest first

    Returns:
        Dict keyed by indicator column name; every array has ``len(close)``
        elements aligned index-for-index with the inputs
    """
    n = len(close)
    if len(high) != n or len(low) != n:
        raise ValueError(f"Input length mismatch: high={len(high)}, low={len(low)}, close={n}")

    out: Dict[str, np.ndarray] = {
        "adx": adx(high, low, close),
        "atr": atr(high, low, close),
    }
    out.update(aroon(high, low))
    out.update(bollinger_bands(close))
    out.update(macd(close))
    out["rsi"] = rsi(close)
    out.update(stoch_slow(high, low, close))
    out["sma"] = sma(close)
    return out
