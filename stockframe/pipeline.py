"""
Pipeline driver: market data -> feature table.

Runs the stages in a fixed order, each taking the previous stage's table
and returning a new one:

    assemble -> parse_timestamps -> densify -> repair_nulls
             -> compute_features -> filter_session

The schema is checked after every stage.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

import pandas as pd

from .data.alpaca_loader import AlpacaLoader
from .data.assembler import TableAssembler
from .data.cleaning import densify, filter_session, parse_timestamps, repair_nulls
from .data.feature_builder import FeatureBuilder, SymbolResult
from .data.schema import validate_schema
from .utils.config import PipelineConfig, default_tickers, default_window, load_config
from .utils.logging import LoggingMixin, StageTimer, setup_logging


class FeaturePipeline(LoggingMixin):
    """
    Builds the FeatureTable for a set of tickers and a time range.

    Attributes set by ``run``:
        tickers: Tickers requested for the last run
        failures: ``ticker -> error`` for tickers dropped during fetch
        feature_results: Per-symbol feature stage outcomes
    """

    log_name = "pipeline"

    def __init__(
        self,
        config: PipelineConfig,
        loader: Optional[AlpacaLoader] = None,
        show_progress: bool = False
    ):
        self.config = config
        self.cancel_event = threading.Event()
        if loader is None:
            loader = AlpacaLoader(
                api_key_id=config.api_key_id,
                api_secret_key=config.api_secret_key,
                base_url=config.data_url,
                requests_per_minute=config.requests_per_minute,
                timeout=config.request_timeout,
                cancel_event=self.cancel_event,
            )
        elif loader.cancel_event is None:
            loader.cancel_event = self.cancel_event
        self.loader = loader
        self.assembler = TableAssembler(
            loader, max_workers=config.max_workers, show_progress=show_progress
        )
        self.feature_builder = FeatureBuilder(
            max_workers=config.max_workers,
            skip_short_history=config.skip_short_history,
        )

        self.tickers: List[str] = []
        self.failures: Dict[str, str] = {}
        self.feature_results: List[SymbolResult] = []

        self.log_debug(
            f"Configured with key {config.masked_key}, {config.max_workers} worker(s), "
            f"{config.requests_per_minute:g} requests/min"
        )

    def cancel(self) -> None:
        """Stop outstanding fetches before their next page."""
        self.cancel_event.set()

    def _stage(self, name: str, func: Callable[[pd.DataFrame], pd.DataFrame], df: pd.DataFrame) -> pd.DataFrame:
        with StageTimer(self.logger, name, rows_in=len(df)) as timer:
            out = func(df)
            validate_schema(out)
            timer.rows_out = len(out)
        return out

    def run(
        self,
        tickers: Optional[List[str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> pd.DataFrame:
        """
        Run every stage and return the finished FeatureTable.

        Args:
            tickers: Symbols to fetch (default AAPL, TSLA)
            start: Range start (default 30 days before ``end``)
            end: Range end (default today's UTC midnight)

        Returns:
            FeatureTable with the canonical 24 columns
        """
        self.tickers = default_tickers(tickers)
        start, end = default_window(start, end)
        self.cancel_event.clear()

        self.log_info(
            f"Building feature table for {', '.join(self.tickers)} "
            f"from {start.isoformat()} to {end.isoformat()}"
        )

        with StageTimer(self.logger, "assemble", rows_in=0) as timer:
            df = self.assembler.assemble(self.tickers, start, end)
            validate_schema(df)
            timer.rows_out = len(df)
        self.failures = dict(self.assembler.failures)

        df = self._stage("parse_timestamps", parse_timestamps, df)
        df = self._stage("densify", densify, df)
        df = self._stage("repair_nulls", repair_nulls, df)
        df = self._stage("compute_features", self.feature_builder.compute_features, df)
        self.feature_results = list(self.feature_builder.results)
        df = self._stage("filter_session", filter_session, df)

        self.log_info(
            f"Feature table ready: {len(df)} rows, "
            f"{df['symbol'].nunique()} symbol(s), {len(self.failures)} ticker(s) skipped"
        )
        return df

    def close(self) -> None:
        self.loader.close()


def build_feature_table(
    tickers: Optional[List[str]] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    config: Optional[PipelineConfig] = None,
    **overrides
) -> pd.DataFrame:
    """
    Build the FeatureTable in one call.

    Credentials are loaded (and validated) before anything touches the
    network.

    Args:
        tickers: Symbols to fetch (default AAPL, TSLA)
        start: Range start
        end: Range end
        config: Pre-built configuration; loaded from the environment if omitted
        **overrides: PipelineConfig field overrides

    Returns:
        Finished FeatureTable
    """
    if config is None:
        config = load_config(**overrides)
    else:
        config = config.with_overrides(**overrides)

    if not logging.getLogger("stockframe").handlers:
        setup_logging(log_level=config.log_level)

    pipeline = FeaturePipeline(config)
    try:
        return pipeline.run(tickers, start, end)
    finally:
        pipeline.close()
