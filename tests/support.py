import threading
from unittest.mock import MagicMock

import requests

from quotefetch.services.events import QuoteEventHub


def quote_payload(symbol: str) -> dict:
    return {
        "Global Quote": {
            "01. symbol": symbol,
            "02. open": "10.00",
            "03. high": "11.00",
            "04. low": "9.50",
            "06. volume": "1000",
            "07. latest trading day": "2024-03-15",
            "08. previous close": "10.25",
        }
    }


class StubHandle:
    def __init__(self) -> None:
        self.aborted = False
        self.responded = False
        self.abort_event = threading.Event()

    def abort(self) -> None:
        self.aborted = True
        self.abort_event.set()

    def close(self) -> None:
        pass


class StubQuoteClient:
    def __init__(self, responses: dict | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[str] = []
        self.handles: list[StubHandle] = []

    def open_request(self) -> StubHandle:
        handle = StubHandle()
        self.handles.append(handle)
        return handle

    def get_global_quote(self, symbol: str, *, handle=None) -> dict:
        self.calls.append(symbol)
        result = self.responses.get(symbol)
        if callable(result):
            return result(symbol, handle)
        handle.responded = True
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        return quote_payload(symbol)


class EventRecorder:
    def __init__(self, hub: QuoteEventHub) -> None:
        self.quotes = []
        self.errors = []
        self.suspended = []
        self.complete = []
        self.done = threading.Event()
        self.suspended_event = threading.Event()
        hub.subscribe("quote_available", self.quotes.append)
        hub.subscribe("download_error", self.errors.append)
        hub.subscribe("suspended", self._on_suspended)
        hub.subscribe("complete", self._on_complete)

    def _on_suspended(self, value: bool) -> None:
        self.suspended.append(value)
        if value:
            self.suspended_event.set()

    def _on_complete(self, value: bool) -> None:
        self.complete.append(value)
        self.done.set()


def http_error(status_code: int) -> requests.HTTPError:
    return requests.HTTPError(f"{status_code} Server Error", response=MagicMock(status_code=status_code))


def series_payload(symbol: str) -> dict:
    return {
        "Meta Data": {"2. Symbol": symbol},
        "Time Series (Daily)": {
            "2024-03-15": {"1. open": "3.0", "4. close": "3.5"},
            "2024-03-14": {"1. open": "2.0", "4. close": "2.5"},
            "2024-03-13": {"1. open": "1.0", "4. close": "1.5"},
        },
    }


class StubHistoryClient(StubQuoteClient):
    def __init__(self, responses=None, history=None) -> None:
        super().__init__(responses)
        self.history = history or {}
        self.history_calls: list[str] = []

    def get_daily_series(self, symbol: str, *, handle=None) -> dict:
        self.history_calls.append(symbol)
        result = self.history.get(symbol)
        if callable(result):
            return result(symbol, handle)
        handle.responded = True
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        return series_payload(symbol)

