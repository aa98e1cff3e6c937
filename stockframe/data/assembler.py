"""
Table assembly for the stockframe pipeline.

Fetches raw bars for every ticker, maps provider fields to canonical column
names, tags rows with their symbol and stacks everything into one
FeatureTable with placeholder (null) indicator columns.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from tqdm import tqdm

from .alpaca_loader import AlpacaLoader
from .schema import (
    BAR_COLUMNS,
    CANONICAL_COLUMNS,
    INDICATOR_COLUMNS,
    RAW_FIELD_MAP,
    coerce_dtypes,
    empty_frame,
)
from ..utils.exceptions import SchemaMismatchError, TickerFetchError
from ..utils.logging import LoggingMixin

_EXPECTED_FIELDS = frozenset(RAW_FIELD_MAP)


def normalize_bars(ticker: str, bars: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Turn raw provider bar records into canonical bar columns.

    Fields are extracted by name, so provider key order does not matter; a
    record with a different field set is a structural problem and aborts the
    run.

    Args:
        ticker: Symbol to tag every row with
        bars: Raw bar records as returned by the provider

    Returns:
        DataFrame with BAR_COLUMNS; timestamps are left as raw strings

    Raises:
        SchemaMismatchError: If any record's fields differ from the raw schema
    """
    if not bars:
        return pd.DataFrame(columns=BAR_COLUMNS)

    field_sets = set()
    for position, bar in enumerate(bars):
        if not isinstance(bar, dict):
            raise SchemaMismatchError(
                "Bar record is not an object", ticker=ticker, position=position, value=bar
            )
        field_sets.add(frozenset(bar))

    for fields in field_sets:
        if fields != _EXPECTED_FIELDS:
            raise SchemaMismatchError(
                f"Column number mismatch: expected {len(_EXPECTED_FIELDS)} fields, "
                f"got {len(fields)}",
                ticker=ticker,
                missing=sorted(_EXPECTED_FIELDS - fields),
                unexpected=sorted(fields - _EXPECTED_FIELDS),
            )

    df = pd.DataFrame.from_records(bars).rename(columns=RAW_FIELD_MAP)
    df["symbol"] = ticker
    return df[BAR_COLUMNS]


class TableAssembler(LoggingMixin):
    """
    Builds the initial FeatureTable from per-ticker fetches.

    Tickers are fetched on a bounded thread pool; a ``TickerFetchError`` only
    drops that ticker, any other error cancels outstanding work and
    propagates.
    """

    def __init__(self, loader: AlpacaLoader, max_workers: int = 4, show_progress: bool = False):
        self.loader = loader
        self.max_workers = max_workers
        self.show_progress = show_progress
        self.failures: Dict[str, str] = {}

    def _fetch_one(self, ticker: str, start: datetime, end: datetime) -> pd.DataFrame:
        bars = self.loader.fetch_bars(ticker, start, end)
        return normalize_bars(ticker, bars)

    def assemble(self, tickers: List[str], start: datetime, end: datetime) -> pd.DataFrame:
        """
        Fetch and stack bars for all tickers.

        Args:
            tickers: Symbols to fetch
            start: Range start
            end: Range end

        Returns:
            FeatureTable with canonical columns, stacked in ticker order, with
            every indicator column null. Empty (schema only) if no ticker
            succeeded.
        """
        self.failures = {}
        frames: Dict[str, pd.DataFrame] = {}

        executor = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(tickers) or 1)))
        try:
            futures = {
                executor.submit(self._fetch_one, ticker, start, end): ticker
                for ticker in tickers
            }
            progress = tqdm(
                as_completed(futures), total=len(futures),
                desc="Fetching bars", disable=not self.show_progress
            )
            for future in progress:
                ticker = futures[future]
                try:
                    frames[ticker] = future.result()
                except TickerFetchError as e:
                    self.log_error(f"Failed to grab data for ticker: {ticker}, Error: {e}")
                    self.failures[ticker] = str(e)
        except BaseException:
            if self.loader.cancel_event is not None:
                self.loader.cancel_event.set()
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        ordered = [frames[t] for t in tickers if t in frames and not frames[t].empty]
        if not ordered:
            self.log_warning(f"No bars retrieved for any of {len(tickers)} ticker(s)")
            return empty_frame()

        df = pd.concat(ordered, ignore_index=True)
        for col in INDICATOR_COLUMNS:
            df[col] = np.nan
        df = coerce_dtypes(df[CANONICAL_COLUMNS])

        self.log_info(
            f"Assembled {len(df)} rows for {len(ordered)} ticker(s); "
            f"{len(self.failures)} failed"
        )
        return df


def assemble(
    tickers: List[str],
    start: datetime,
    end: datetime,
    loader: AlpacaLoader,
    max_workers: int = 4,
    failures: Optional[Dict[str, str]] = None
) -> pd.DataFrame:
    """
    Fetch and stack bars for ``tickers`` with a fresh TableAssembler.

    Args:
        tickers: Symbols to fetch
        start: Range start
        end: Range end
        loader: Market data loader to use
        max_workers: Fetch concurrency bound
        failures: Optional dict that receives ``ticker -> error`` for skipped tickers

    Returns:
        Assembled FeatureTable
    """
    assembler = TableAssembler(loader, max_workers=max_workers)
    df = assembler.assemble(tickers, start, end)
    if failures is not None:
        failures.update(assembler.failures)
    return df
