"""
Feature engineering stage for the stockframe pipeline.

Splits the FeatureTable by symbol, runs the indicator engine on each
partition's high/low/close arrays and splices the results back into the
placeholder indicator columns.

Partitions are independent, so they are computed on a thread pool; the
output is always ordered by symbol, then timestamp.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from .indicators import MIN_HISTORY, compute_indicators
from .schema import INDICATOR_COLUMNS
from ..utils.exceptions import FeatureComputationError, InsufficientHistoryError
from ..utils.logging import LoggingMixin

COMPUTED = "computed"
SKIPPED = "skipped"


@dataclass
class SymbolResult:
    """Outcome of the feature stage for one symbol."""

    symbol: str
    status: str
    rows: int
    reason: Optional[str] = None


class FeatureBuilder(LoggingMixin):
    """
    Computes indicator columns per symbol partition.

    With ``skip_short_history=False`` a partition shorter than
    ``min_history`` aborts the run with InsufficientHistoryError. With
    ``True`` that symbol keeps all-null indicators and is reported as
    skipped.
    """

    def __init__(
        self,
        max_workers: int = 4,
        skip_short_history: bool = False,
        min_history: int = MIN_HISTORY
    ):
        """
        Initialize feature builder.

        Args:
            max_workers: Number of partitions computed concurrently
            skip_short_history: Degrade short partitions instead of failing
            min_history: Minimum rows a partition needs
        """
        self.max_workers = max_workers
        self.skip_short_history = skip_short_history
        self.min_history = min_history
        self.results: List[SymbolResult] = []

    def compute_partition(self, symbol: str, part: pd.DataFrame) -> Tuple[pd.DataFrame, SymbolResult]:
        """
        Compute indicators for one symbol's rows.

        Args:
            symbol: Symbol of the partition
            part: Rows of that symbol only

        Returns:
            (partition with indicator columns filled, SymbolResult)
        """
        out = part.sort_values("timestamp", kind="stable").copy()
        n = len(out)

        if n < self.min_history:
            if not self.skip_short_history:
                raise InsufficientHistoryError(
                    f"Not enough history to compute indicators: need {self.min_history} rows",
                    symbol=symbol, rows=n, stage="compute_features"
                )
            self.log_warning(
                f"Skipping indicators for {symbol}: {n} rows < {self.min_history}"
            )
            for col in INDICATOR_COLUMNS:
                out[col] = np.nan
            return out, SymbolResult(symbol, SKIPPED, n, reason=f"{n} rows < {self.min_history}")

        high = out["high"].to_numpy(dtype=np.float64, na_value=np.nan)
        low = out["low"].to_numpy(dtype=np.float64, na_value=np.nan)
        close = out["close"].to_numpy(dtype=np.float64, na_value=np.nan)

        try:
            indicators = compute_indicators(high, low, close)
        except (ValueError, IndexError, ZeroDivisionError, FloatingPointError) as e:
            raise FeatureComputationError(
                "Indicator computation failed", symbol=symbol, rows=n,
                stage="compute_features", reason=e
            ) from e

        for col in INDICATOR_COLUMNS:
            out[col] = indicators[col]

        self.log_debug(f"Computed {len(INDICATOR_COLUMNS)} indicator columns for {symbol} ({n} rows)")
        return out, SymbolResult(symbol, COMPUTED, n)

    def compute_features(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Fill indicator columns for every symbol in ``df``.

        Args:
            df: FeatureTable after null repair

        Returns:
            New FeatureTable, same columns, sorted by symbol then timestamp
        """
        self.results = []
        if df.empty:
            return df.copy()

        columns = list(df.columns)
        partitions = list(df.groupby("symbol", sort=True))

        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(partitions)))) as executor:
            outputs = list(executor.map(lambda item: self.compute_partition(*item), partitions))

        self.results = [result for _, result in outputs]

        combined = pd.concat([frame for frame, _ in outputs], ignore_index=True)
        combined = combined.sort_values(["symbol", "timestamp"], kind="stable").reset_index(drop=True)

        skipped = [r.symbol for r in self.results if r.status == SKIPPED]
        self.log_info(
            f"Computed indicators for {len(self.results) - len(skipped)} symbol(s)"
            + (f", skipped {len(skipped)}: {', '.join(skipped)}" if skipped else "")
        )
        return combined[columns]


def compute_features(
    df: pd.DataFrame,
    max_workers: int = 4,
    skip_short_history: bool = False
) -> pd.DataFrame:
    """
    Compute indicator columns for every symbol partition.

    Args:
        df: FeatureTable after null repair
        max_workers: Number of partitions computed concurrently
        skip_short_history: Degrade short partitions instead of failing

    Returns:
        FeatureTable with indicator columns populated
    """
    builder = FeatureBuilder(max_workers=max_workers, skip_short_history=skip_short_history)
    return builder.compute_features(df)
