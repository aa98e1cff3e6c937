"""
Alpaca market data loader for the stockframe pipeline.

Downloads 1-minute bars for one ticker over a time range from the Alpaca v2
stock bars endpoint, following ``next_page_token`` cursors until the provider
stops returning one.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..utils.exceptions import InvalidResponseError, TickerFetchError
from ..utils.logging import LoggingMixin
from ..utils.rate import TokenBucket

TIMEFRAME = "1Min"


def format_rfc3339(ts: datetime) -> str:
    """Format a datetime as RFC3339 UTC with second precision (``...Z``)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AlpacaLoader(LoggingMixin):
    """
    Loader for Alpaca minute bars with rate limiting and error handling.
    """

    def __init__(
        self,
        api_key_id: str,
        api_secret_key: str,
        base_url: str = "https://data.alpaca.markets",
        requests_per_minute: float = 15.0,
        timeout: float = 30.0,
        rate_limiter: Optional[TokenBucket] = None,
        cancel_event: Optional[threading.Event] = None
    ):
        """
        Initialize Alpaca loader.

        Args:
            api_key_id: Value of the APCA-API-KEY-ID header
            api_secret_key: Value of the APCA-API-SECRET-KEY header
            base_url: Base URL for the market data API
            requests_per_minute: Request quota shared by all threads using this loader
            timeout: Per-request timeout in seconds
            rate_limiter: Pre-built bucket to share across loaders (optional)
            cancel_event: When set, pagination stops before the next page
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter or TokenBucket(requests_per_minute)
        self.cancel_event = cancel_event

        # Set up session with retry strategy
        self.session = requests.Session()
        self.session.headers.update({
            "APCA-API-KEY-ID": api_key_id,
            "APCA-API-SECRET-KEY": api_secret_key,
        })
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.log_info(f"Initialized Alpaca loader with API key: {api_key_id[:8]}...")

    def bars_url(self, ticker: str) -> str:
        return f"{self.base_url}/v2/stocks/{ticker}/bars"

    def _make_request(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make one rate-limited GET request and decode the JSON object body.

        Args:
            url: API endpoint URL
            params: Query parameters

        Returns:
            Decoded JSON object

        Raises:
            TickerFetchError: On transport or HTTP status failure
            InvalidResponseError: If the body is not a JSON object
        """
        waited = self.rate_limiter.acquire()
        if waited:
            self.log_debug(f"Rate limiter held request for {waited:.2f}s")

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise TickerFetchError("API request failed", url=url, reason=e) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise InvalidResponseError(
                "Response body is not valid JSON", url=url, body=response.text[:200]
            ) from e

        if not isinstance(payload, dict):
            raise InvalidResponseError(
                "Response body is not a JSON object", url=url, body=str(payload)[:200]
            )
        return payload

    def fetch_bars(self, ticker: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """
        Fetch every raw bar for ``ticker`` between ``start`` and ``end``.

        Keeps requesting with the returned ``next_page_token`` until a page
        comes back with a null token. There is no page-count cap.

        Args:
            ticker: Stock symbol (e.g., 'AAPL')
            start: Range start (naive values are taken as UTC)
            end: Range end (naive values are taken as UTC)

        Returns:
            Raw bar records in provider order, concatenated across pages

        Raises:
            TickerFetchError: If any page fails or the fetch is cancelled
            InvalidResponseError: If a page lacks ``bars`` or ``next_page_token``
        """
        url = self.bars_url(ticker)
        params: Dict[str, Any] = {
            "start": format_rfc3339(start),
            "end": format_rfc3339(end),
            "timeframe": TIMEFRAME,
        }

        all_bars: List[Dict[str, Any]] = []
        page = 0

        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise TickerFetchError("Fetch cancelled", ticker=ticker, pages=page)

            response = self._make_request(url, params)
            page += 1

            if "next_page_token" not in response:
                raise InvalidResponseError(
                    "Invalid API response: missing next_page_token",
                    ticker=ticker, page=page, body=str(response)[:200]
                )
            bars = response.get("bars")
            if not isinstance(bars, list):
                raise InvalidResponseError(
                    "Invalid API response: bars is not an array",
                    ticker=ticker, page=page, body=str(response)[:200]
                )

            all_bars.extend(bars)

            next_token = response["next_page_token"]
            if not next_token:
                break

            params["page_token"] = next_token
            self.log_debug(f"{ticker}: got {len(bars)} bars on page {page}, continuing with pagination...")

        self.log_info(f"{ticker}: fetched {len(all_bars)} bars in {page} page(s)")
        return all_bars

    def close(self) -> None:
        self.session.close()
