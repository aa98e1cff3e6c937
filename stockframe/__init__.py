"""
StockFrame market-data feature pipeline

Fetches minute OHLCV bars for a set of tickers, reconciles them onto a
per-minute grid, repairs price gaps and appends technical indicators,
producing one feature table for downstream trading agents.
"""

__version__ = "0.1.0"
__author__ = "StockFrame"
