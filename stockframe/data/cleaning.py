"""
Row-level cleaning stages for the FeatureTable.

- parse_timestamps: raw provider strings -> UTC datetimes
- densify: one row per minute per symbol over the table's global range
- repair_nulls: per-symbol close fill, open/high/low derived from close
- filter_session: keep rows inside the active UTC hour range

Every stage returns a new DataFrame with the same columns in the same order.
"""

from typing import Optional, Tuple

import pandas as pd

from .schema import KEY_COLUMNS
from ..utils.exceptions import TimestampParseError
from ..utils.logging import get_logger

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Substituted for rows whose timestamp is null, so they stay distinguishable
# from real market data downstream.
FALLBACK_TIMESTAMP = pd.Timestamp("1970-01-01T00:00:00Z")

GRID_FREQ = "60s"

SESSION_START_HOUR = 14
SESSION_END_HOUR = 20


def parse_timestamps(df: pd.DataFrame) -> pd.DataFrame:
    """
    Parse the ``timestamp`` column into ``datetime64[ns, UTC]``.

    Strings must match TIMESTAMP_FORMAT exactly. Null timestamps take
    FALLBACK_TIMESTAMP. Columns that are already datetimes are converted to
    UTC (naive values are taken as UTC).

    Raises:
        TimestampParseError: On the first string that does not match
    """
    out = df.copy()
    raw = out["timestamp"]

    if pd.api.types.is_datetime64_any_dtype(raw):
        parsed = raw.dt.tz_localize("UTC") if raw.dt.tz is None else raw.dt.tz_convert("UTC")
    else:
        missing = raw.isna()
        parsed = pd.to_datetime(raw, format=TIMESTAMP_FORMAT, utc=True, errors="coerce")
        bad = parsed.isna() & ~missing
        if bad.any():
            label = bad.idxmax()
            raise TimestampParseError(
                "Failed to parse date time index",
                stage="parse_timestamps",
                value=raw.loc[label],
                symbol=out.loc[label, "symbol"],
                bad_rows=int(bad.sum()),
            )
        if missing.any():
            logger.warning(
                f"{int(missing.sum())} row(s) without timestamp set to {FALLBACK_TIMESTAMP.isoformat()}"
            )
            parsed = parsed.fillna(FALLBACK_TIMESTAMP)

    out["timestamp"] = parsed.astype("datetime64[ns, UTC]")
    return out


def get_min_timestamp(df: pd.DataFrame) -> pd.Timestamp:
    """Earliest timestamp in the whole table, truncated to whole seconds."""
    return df["timestamp"].min().floor("s")


def get_max_timestamp(df: pd.DataFrame) -> pd.Timestamp:
    """Latest timestamp in the whole table, truncated to whole seconds."""
    return df["timestamp"].max().floor("s")


def minute_grid(min_ts: pd.Timestamp, max_ts: pd.Timestamp) -> pd.DatetimeIndex:
    """Every instant from ``min_ts`` to ``max_ts`` inclusive, one minute apart."""
    return pd.date_range(start=min_ts, end=max_ts, freq=GRID_FREQ, name="timestamp")


def timestamp_bounds(df: pd.DataFrame) -> Optional[Tuple[pd.Timestamp, pd.Timestamp]]:
    """(min, max) over the whole table, or None for an empty table."""
    if df.empty:
        return None
    return get_min_timestamp(df), get_max_timestamp(df)


def densify(df: pd.DataFrame) -> pd.DataFrame:
    """
    Reindex so every symbol has a row for every minute of the table's range.

    The range is global (min/max over all symbols), so a symbol with a
    shorter history gains all-null rows outside its own observed span.
    Output is sorted by symbol, then timestamp.
    """
    if df.empty:
        return df.copy()

    columns = list(df.columns)
    keys = list(KEY_COLUMNS)

    duplicated = df.duplicated(subset=keys)
    if duplicated.any():
        logger.warning(f"Dropping {int(duplicated.sum())} duplicate (symbol, timestamp) row(s)")
        df = df[~duplicated]

    min_ts, max_ts = timestamp_bounds(df)
    grid = minute_grid(min_ts, max_ts)

    symbols = df["symbol"].drop_duplicates()
    index = pd.MultiIndex.from_product([symbols, grid], names=keys).to_frame(index=False)
    index["symbol"] = index["symbol"].astype(df["symbol"].dtype)
    index["timestamp"] = index["timestamp"].astype(df["timestamp"].dtype)

    merged = df.merge(index, on=keys, how="outer")
    merged = merged.sort_values(keys, kind="stable").reset_index(drop=True)

    logger.debug(
        f"Minute grid {min_ts} -> {max_ts}: {len(grid)} slots x {len(symbols)} symbol(s)"
    )
    return merged[columns]


def repair_nulls(df: pd.DataFrame) -> pd.DataFrame:
    """
    Fill price gaps within each symbol.

    ``close`` is forward- then backward-filled per symbol; remaining nulls in
    ``open``/``high``/``low`` take that row's repaired close. Volume, vwap and
    trade_count are left as they are. A symbol with no close at all stays null.
    """
    if df.empty:
        return df.copy()

    out = df.sort_values(KEY_COLUMNS, kind="stable").reset_index(drop=True)

    out["close"] = out.groupby("symbol", sort=False)["close"].ffill()
    out["close"] = out.groupby("symbol", sort=False)["close"].bfill()

    for col in ("open", "high", "low"):
        out[col] = out[col].fillna(out["close"])

    unrepaired = out.loc[out["close"].isna(), "symbol"].unique()
    if len(unrepaired):
        logger.warning(f"No close prices to fill from for: {', '.join(map(str, unrepaired))}")

    return out


def filter_session(
    df: pd.DataFrame,
    start_hour: int = SESSION_START_HOUR,
    end_hour: int = SESSION_END_HOUR
) -> pd.DataFrame:
    """
    Keep rows whose UTC hour-of-day lies in ``[start_hour, end_hour]``.

    The default 14-20 UTC window approximates regular US trading hours
    minus the first 30 minutes.
    """
    timestamps = df["timestamp"]
    if timestamps.dt.tz is None:
        timestamps = timestamps.dt.tz_localize("UTC")
    hours = timestamps.dt.tz_convert("UTC").dt.hour
    mask = (hours >= start_hour) & (hours <= end_hour)
    return df[mask].reset_index(drop=True)
