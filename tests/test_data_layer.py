"""
Tests for stockframe.data ingestion - alpaca_loader and assembler modules.

The HTTP layer is always mocked: either ``_make_request`` is patched on the
loader or the underlying requests session is replaced.
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pandas as pd
import pytest
import requests

from stockframe.data.alpaca_loader import AlpacaLoader, format_rfc3339
from stockframe.data.assembler import TableAssembler, assemble, normalize_bars
from stockframe.data.schema import BAR_COLUMNS, CANONICAL_COLUMNS, INDICATOR_COLUMNS
from stockframe.utils.exceptions import (
    InvalidResponseError,
    SchemaMismatchError,
    TickerFetchError,
)

START = datetime(2024, 1, 2, tzinfo=timezone.utc)
END = datetime(2024, 1, 3, tzinfo=timezone.utc)


@pytest.fixture
def loader():
    """Loader with a no-wait rate limiter."""
    limiter = Mock()
    limiter.acquire.return_value = 0.0
    return AlpacaLoader(
        api_key_id="PKTEST1234567890",
        api_secret_key="secret",
        rate_limiter=limiter,
    )


class TestFormatRfc3339:
    """Test request timestamp formatting."""

    def test_utc(self):
        assert format_rfc3339(datetime(2024, 1, 2, tzinfo=timezone.utc)) == "2024-01-02T00:00:00Z"

    def test_naive_taken_as_utc(self):
        assert format_rfc3339(datetime(2024, 1, 2, 14, 30)) == "2024-01-02T14:30:00Z"

    def test_offset_converted(self):
        est = timezone(timedelta(hours=-5))
        assert format_rfc3339(datetime(2024, 1, 2, 9, 30, tzinfo=est)) == "2024-01-02T14:30:00Z"

    def test_sub_second_dropped(self):
        ts = datetime(2024, 1, 2, 14, 30, 5, 999999, tzinfo=timezone.utc)
        assert format_rfc3339(ts) == "2024-01-02T14:30:05Z"


class TestAlpacaLoader:
    """Test paginated bar download with mocked API calls."""

    def test_credential_headers(self, loader):
        assert loader.session.headers["APCA-API-KEY-ID"] == "PKTEST1234567890"
        assert loader.session.headers["APCA-API-SECRET-KEY"] == "secret"

    def test_bars_url(self, loader):
        assert loader.bars_url("AAPL") == "https://data.alpaca.markets/v2/stocks/AAPL/bars"

    def test_custom_base_url_trailing_slash(self):
        loader = AlpacaLoader("key", "secret", base_url="http://localhost:8080/", rate_limiter=Mock())
        assert loader.bars_url("TSLA") == "http://localhost:8080/v2/stocks/TSLA/bars"

    def test_single_page(self, loader, bar_factory):
        bars = bar_factory("2024-01-02T14:30:00Z", 5)
        response = {"bars": bars, "symbol": "AAPL", "next_page_token": None}

        with patch.object(loader, "_make_request", return_value=response) as mock_request:
            result = loader.fetch_bars("AAPL", START, END)

        assert result == bars
        mock_request.assert_called_once()
        url, params = mock_request.call_args[0]
        assert url.endswith("/v2/stocks/AAPL/bars")
        assert params == {
            "start": "2024-01-02T00:00:00Z",
            "end": "2024-01-03T00:00:00Z",
            "timeframe": "1Min",
        }

    def test_pagination_follows_tokens(self, loader, bar_factory):
        pages = [
            {"bars": bar_factory("2024-01-02T14:30:00Z", 3), "next_page_token": "tok1"},
            {"bars": bar_factory("2024-01-02T14:33:00Z", 3), "next_page_token": "tok2"},
            {"bars": bar_factory("2024-01-02T14:36:00Z", 2), "next_page_token": None},
        ]
        seen_params = []

        def fake_request(url, params):
            seen_params.append(dict(params))
            return pages[len(seen_params) - 1]

        with patch.object(loader, "_make_request", side_effect=fake_request):
            result = loader.fetch_bars("AAPL", START, END)

        assert len(result) == 8
        assert [bar["t"] for bar in result] == [
            bar["t"] for page in pages for bar in page["bars"]
        ]
        assert "page_token" not in seen_params[0]
        assert seen_params[1]["page_token"] == "tok1"
        assert seen_params[2]["page_token"] == "tok2"
        assert all(p["timeframe"] == "1Min" for p in seen_params)

    def test_empty_string_token_ends_pagination(self, loader):
        response = {"bars": [], "next_page_token": ""}
        with patch.object(loader, "_make_request", return_value=response) as mock_request:
            assert loader.fetch_bars("AAPL", START, END) == []
        assert mock_request.call_count == 1

    def test_missing_next_page_token(self, loader, bar_factory):
        response = {"bars": bar_factory("2024-01-02T14:30:00Z", 2)}

        with patch.object(loader, "_make_request", return_value=response):
            with pytest.raises(InvalidResponseError, match="next_page_token"):
                loader.fetch_bars("AAPL", START, END)

    def test_null_bars(self, loader):
        response = {"bars": None, "next_page_token": None}

        with patch.object(loader, "_make_request", return_value=response):
            with pytest.raises(TickerFetchError, match="bars is not an array"):
                loader.fetch_bars("AAPL", START, END)

    def test_cancelled_before_first_page(self, loader):
        loader.cancel_event = threading.Event()
        loader.cancel_event.set()

        with patch.object(loader, "_make_request") as mock_request:
            with pytest.raises(TickerFetchError, match="cancelled"):
                loader.fetch_bars("AAPL", START, END)
        mock_request.assert_not_called()

    def test_cancelled_between_pages(self, loader):
        loader.cancel_event = threading.Event()

        def fake_request(url, params):
            loader.cancel_event.set()
            return {"bars": [], "next_page_token": "more"}

        with patch.object(loader, "_make_request", side_effect=fake_request) as mock_request:
            with pytest.raises(TickerFetchError) as exc_info:
                loader.fetch_bars("AAPL", START, END)

        assert mock_request.call_count == 1
        assert exc_info.value.context["pages"] == 1


class TestMakeRequest:
    """Test the HTTP wrapper with a mocked session."""

    @staticmethod
    def _response(payload=None, json_error=None, text=""):
        response = Mock()
        response.raise_for_status.return_value = None
        response.text = text
        if json_error is not None:
            response.json.side_effect = json_error
        else:
            response.json.return_value = payload
        return response

    def test_success(self, loader):
        payload = {"bars": [], "next_page_token": None}
        with patch.object(loader.session, "get", return_value=self._response(payload)) as mock_get:
            assert loader._make_request("http://x/bars", {"timeframe": "1Min"}) == payload

        mock_get.assert_called_once_with("http://x/bars", params={"timeframe": "1Min"}, timeout=30.0)
        loader.rate_limiter.acquire.assert_called_once()

    def test_transport_error(self, loader):
        with patch.object(loader.session, "get", side_effect=requests.exceptions.ConnectionError("down")):
            with pytest.raises(TickerFetchError, match="API request failed"):
                loader._make_request("http://x/bars", {})

    def test_http_error_status(self, loader):
        response = self._response({})
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("403 Forbidden")
        with patch.object(loader.session, "get", return_value=response):
            with pytest.raises(TickerFetchError, match="403"):
                loader._make_request("http://x/bars", {})

    def test_malformed_json(self, loader):
        response = self._response(json_error=ValueError("Expecting value"), text="<html>oops</html>")
        with patch.object(loader.session, "get", return_value=response):
            with pytest.raises(InvalidResponseError, match="not valid JSON"):
                loader._make_request("http://x/bars", {})

    def test_non_object_body(self, loader):
        with patch.object(loader.session, "get", return_value=self._response([1, 2, 3])):
            with pytest.raises(InvalidResponseError, match="not a JSON object"):
                loader._make_request("http://x/bars", {})


class TestNormalizeBars:
    """Test raw record to canonical column mapping."""

    def test_named_field_mapping(self, bar_factory):
        bars = bar_factory("2024-01-02T14:30:00Z", 3)
        df = normalize_bars("AAPL", bars)

        assert list(df.columns) == BAR_COLUMNS
        assert (df["symbol"] == "AAPL").all()
        assert df["close"].tolist() == [b["c"] for b in bars]
        assert df["trade_count"].tolist() == [b["n"] for b in bars]
        assert df["vwap"].tolist() == [b["vw"] for b in bars]
        assert df["timestamp"].tolist() == [b["t"] for b in bars]

    def test_key_order_irrelevant(self, bar_factory):
        bars = bar_factory("2024-01-02T14:30:00Z", 2)
        shuffled = [dict(reversed(list(bar.items()))) for bar in bars]

        pd.testing.assert_frame_equal(normalize_bars("AAPL", bars), normalize_bars("AAPL", shuffled))

    def test_empty(self):
        df = normalize_bars("AAPL", [])
        assert df.empty
        assert list(df.columns) == BAR_COLUMNS

    def test_missing_field(self, bar_factory):
        bars = bar_factory("2024-01-02T14:30:00Z", 2)
        del bars[1]["vw"]

        with pytest.raises(SchemaMismatchError) as exc_info:
            normalize_bars("AAPL", bars)
        assert exc_info.value.context["missing"] == ["vw"]

    def test_extra_field(self, bar_factory):
        bars = bar_factory("2024-01-02T14:30:00Z", 2)
        bars[0]["x"] = "NASDAQ"

        with pytest.raises(SchemaMismatchError, match="Column number mismatch"):
            normalize_bars("AAPL", bars)

    def test_non_object_record(self):
        with pytest.raises(SchemaMismatchError):
            normalize_bars("AAPL", [["2024-01-02T14:30:00Z", 1.0]])


class TestTableAssembler:
    """Test concurrent fetch, isolation and stacking."""

    @pytest.fixture
    def bars_by_ticker(self, bar_factory):
        return {
            "AAPL": bar_factory("2024-01-02T14:30:00Z", 4, base=180.0),
            "TSLA": bar_factory("2024-01-02T14:31:00Z", 3, base=240.0),
            "MSFT": bar_factory("2024-01-02T14:30:00Z", 2, base=370.0),
        }

    @pytest.fixture
    def mock_loader(self, bars_by_ticker):
        loader = Mock()
        loader.cancel_event = None

        def fetch_bars(ticker, start, end):
            if ticker not in bars_by_ticker:
                raise TickerFetchError("API request failed", ticker=ticker)
            return bars_by_ticker[ticker]

        loader.fetch_bars.side_effect = fetch_bars
        return loader

    def test_schema_and_placeholders(self, mock_loader):
        df = TableAssembler(mock_loader).assemble(["AAPL", "TSLA"], START, END)

        assert list(df.columns) == CANONICAL_COLUMNS
        assert len(df) == 7
        assert df[INDICATOR_COLUMNS].isna().all().all()
        assert str(df["volume"].dtype) == "Int64"
        assert str(df["trade_count"].dtype) == "Int64"
        assert df["close"].dtype == "float64"

    def test_stacked_in_ticker_order(self, mock_loader):
        df = TableAssembler(mock_loader, max_workers=3).assemble(["TSLA", "MSFT", "AAPL"], START, END)

        symbols = df["symbol"].tolist()
        assert symbols == ["TSLA"] * 3 + ["MSFT"] * 2 + ["AAPL"] * 4

    def test_failed_ticker_isolated(self, mock_loader):
        assembler = TableAssembler(mock_loader, max_workers=2)
        df = assembler.assemble(["AAPL", "BROKEN", "TSLA"], START, END)

        assert set(df["symbol"]) == {"AAPL", "TSLA"}
        assert list(assembler.failures) == ["BROKEN"]
        assert "API request failed" in assembler.failures["BROKEN"]

    def test_all_failed_returns_empty_schema(self, mock_loader):
        df = TableAssembler(mock_loader).assemble(["BAD1", "BAD2"], START, END)

        assert df.empty
        assert list(df.columns) == CANONICAL_COLUMNS

    def test_schema_mismatch_aborts_run(self, mock_loader, bars_by_ticker):
        del bars_by_ticker["TSLA"][0]["n"]
        mock_loader.cancel_event = threading.Event()

        with pytest.raises(SchemaMismatchError):
            TableAssembler(mock_loader).assemble(["AAPL", "TSLA"], START, END)
        assert mock_loader.cancel_event.is_set()

    def test_module_level_assemble(self, mock_loader):
        failures = {}
        df = assemble(["AAPL", "NOPE"], START, END, loader=mock_loader, failures=failures)

        assert set(df["symbol"]) == {"AAPL"}
        assert list(failures) == ["NOPE"]
