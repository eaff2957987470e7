from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

import requests

from quotefetch.errors import QuoteParseError

logger = logging.getLogger(__name__)


class RestRequestHandle:
    """One abortable GET against the provider.

    Each handle owns its own session so that ``abort()`` from another thread
    tears down only this request's connection.
    """

    def __init__(self, session: Any, *, timeout: float) -> None:
        self.session = session
        self.timeout = timeout
        self.aborted = False
        self.responded = False
        self._lock = threading.Lock()

    def get_json(self, url: str, *, params: Dict[str, str], headers: Dict[str, str]) -> Any:
        with self._lock:
            if self.aborted:
                raise requests.exceptions.ConnectionError("request aborted")
        response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        self.responded = True
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise QuoteParseError("response is not valid JSON") from exc

    def abort(self) -> None:
        with self._lock:
            if self.aborted:
                return
            self.aborted = True
        try:
            self.session.close()
        except Exception as exc:  # pragma: no cover
            logger.debug("[QUOTE][abort_close_failed] error=%s", exc)

    def close(self) -> None:
        self.session.close()


class AlphaVantageRestClient:
    """Alpha Vantage query endpoint client for quotes and daily series."""

    USER_AGENT = "Mozilla/4.0 (compatible; MSIE 6.0; Windows NT 5.1;)"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://www.alphavantage.co",
        timeout: float = 10.0,
        session_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session_factory = session_factory or requests.Session

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> "AlphaVantageRestClient":
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout_sec,
            **kwargs,
        )

    def open_request(self) -> RestRequestHandle:
        return RestRequestHandle(self.session_factory(), timeout=self.timeout)

    def _query(self, params: Dict[str, str], handle: Optional[RestRequestHandle]) -> Any:
        owned = handle is None
        active = handle or self.open_request()
        try:
            return active.get_json(
                f"{self.base_url}/query",
                params={**params, "apikey": self.api_key},
                headers={"User-Agent": self.USER_AGENT},
            )
        finally:
            if owned:
                active.close()

    def get_global_quote(self, symbol: str, *, handle: Optional[RestRequestHandle] = None) -> Any:
        return self._query({"function": "GLOBAL_QUOTE", "symbol": symbol}, handle)

    def get_daily_series(self, symbol: str, *, handle: Optional[RestRequestHandle] = None) -> Any:
        return self._query(
            {"function": "TIME_SERIES_DAILY", "symbol": symbol, "outputsize": "full"},
            handle,
        )
