"""
Command-line entry point for the stockframe pipeline.
"""

import os
from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer
from dotenv import load_dotenv

from ..data.schema import CANONICAL_COLUMNS
from ..pipeline import FeaturePipeline
from ..utils.config import KEY_ENV, SECRET_ENV, default_window, load_config
from ..utils.exceptions import StockFrameError
from ..utils.logging import setup_logging

app = typer.Typer(
    name="stockframe",
    help="Minute-bar feature table builder",
    add_completion=False
)


def _parse_time(value: Optional[str], name: str):
    if value is None:
        return None
    try:
        ts = pd.Timestamp(value)
    except ValueError:
        raise typer.BadParameter(f"{value!r} is not an ISO 8601 date/time", param_hint=name)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.to_pydatetime()


def write_table(df: pd.DataFrame, output: Path) -> Path:
    """Write the table as Parquet for ``.parquet`` paths, CSV otherwise."""
    output.parent.mkdir(parents=True, exist_ok=True)
    if output.suffix == ".parquet":
        df.to_parquet(output, index=False)
    else:
        df.to_csv(output, index=False)
    return output


def summarize(df: pd.DataFrame) -> pd.DataFrame:
    """Rows and time span per symbol."""
    if df.empty:
        return pd.DataFrame(columns=["symbol", "rows", "first", "last"])
    return (
        df.groupby("symbol")
        .agg(rows=("timestamp", "size"), first=("timestamp", "min"), last=("timestamp", "max"))
        .reset_index()
    )


@app.command()
def build(
    tickers: Optional[List[str]] = typer.Argument(None, help="Ticker symbols (default: AAPL TSLA)"),
    start: Optional[str] = typer.Option(None, help="Range start, ISO 8601 (UTC if no offset)"),
    end: Optional[str] = typer.Option(None, help="Range end, ISO 8601 (UTC if no offset)"),
    days: int = typer.Option(30, help="Lookback in days when start/end are not given"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write table to .parquet or .csv"),
    max_workers: Optional[int] = typer.Option(None, help="Concurrent fetch/feature workers"),
    skip_short_history: bool = typer.Option(
        False, "--skip-short-history",
        help="Leave indicators null for symbols with too little history instead of failing"
    ),
):
    """Fetch bars and build the feature table."""
    start_dt = _parse_time(start, "--start")
    end_dt = _parse_time(end, "--end")
    if (start_dt is None) != (end_dt is None):
        raise typer.BadParameter("--start and --end must be given together")

    try:
        start_dt, end_dt = default_window(start_dt, end_dt, days=days)
        config = load_config(
            max_workers=max_workers,
            skip_short_history=skip_short_history or None,
        )
        pipeline = FeaturePipeline(config, show_progress=True)
        try:
            df = pipeline.run(tickers, start_dt, end_dt)
        finally:
            pipeline.close()
    except StockFrameError as e:
        typer.echo(f"❌ Build failed: {e}", err=True)
        raise typer.Exit(1)

    for ticker, reason in pipeline.failures.items():
        typer.echo(f"⚠ Skipped {ticker}: {reason}", err=True)

    if output is not None:
        write_table(df, output)
        typer.echo(f"✅ Wrote {len(df)} rows to {output}")
    else:
        typer.echo(summarize(df).to_string(index=False))


@app.command()
def version():
    """Show version information."""
    from .. import __version__
    typer.echo(f"StockFrame v{__version__}")


@app.command()
def info():
    """Show pipeline stages, output schema and credential status."""
    load_dotenv()
    typer.echo("StockFrame feature pipeline")
    typer.echo("=" * 40)
    typer.echo("Stages:")
    for stage in ("assemble", "parse_timestamps", "densify", "repair_nulls",
                  "compute_features", "filter_session"):
        typer.echo(f"  - {stage}")
    typer.echo()
    typer.echo(f"Columns ({len(CANONICAL_COLUMNS)}): {', '.join(CANONICAL_COLUMNS)}")
    typer.echo()
    for variable in (KEY_ENV, SECRET_ENV):
        mark = "✓" if os.environ.get(variable) else "✗"
        typer.echo(f"{mark} {variable}")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Log to file")
):
    """
    StockFrame market-data feature pipeline
    """
    if debug:
        log_level = "DEBUG"
    elif verbose:
        log_level = "INFO"
    else:
        log_level = os.environ.get("STOCKFRAME_LOG_LEVEL", "WARNING")

    setup_logging(log_level=log_level, log_file=log_file)


if __name__ == "__main__":
    app()
