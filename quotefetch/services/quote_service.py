from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable

import requests

from quotefetch.config.settings import ProviderSettings
from quotefetch.errors import InvalidSymbolError, QuotaExceededError, QuoteFetchError
from quotefetch.integrations.alpha_vantage_parser import parse_time_series, validate_symbol
from quotefetch.integrations.alpha_vantage_rest import AlphaVantageRestClient, RestRequestHandle
from quotefetch.schemas.quote import HistoryRecord
from quotefetch.services.events import QuoteEventHub
from quotefetch.services.fetch_worker import FetchWorker, wait_for_budget
from quotefetch.services.pending_set import PendingSet
from quotefetch.services.throttle import ThrottleBudget

logger = logging.getLogger(__name__)


class QuoteService:
    """Public entry point: queued quote downloads plus one-shot history fetches."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        client: AlphaVantageRestClient | None = None,
        budget: ThrottleBudget | None = None,
        events: QuoteEventHub | None = None,
        sleep_increment_sec: float = 1.0,
    ) -> None:
        self.settings = settings
        self.client = client or AlphaVantageRestClient.from_settings(settings)
        self.budget = budget or ThrottleBudget.from_settings(settings)
        self.events = events or QuoteEventHub()
        self.sleep_increment_sec = sleep_increment_sec
        self.pending = PendingSet()
        self.worker = FetchWorker(
            client=self.client,
            budget=self.budget,
            pending=self.pending,
            events=self.events,
            quota_penalty=settings.requests_per_minute,
            sleep_increment_sec=sleep_increment_sec,
        )
        self._history_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="quote-history")
        self._history_cancel = threading.Event()
        self._history_lock = threading.Lock()
        self._history_current: RestRequestHandle | None = None

    @property
    def pending_count(self) -> int:
        return self.pending.count()

    def submit(self, symbols: Iterable[str]) -> int:
        return self.worker.submit(list(symbols))

    def cancel(self) -> None:
        logger.info("[QUOTE][cancel] pending=%s", self.pending_count)
        self.worker.cancel()
        self._history_cancel.set()
        with self._history_lock:
            current = self._history_current
        if current is not None:
            current.abort()

    def fetch_history(self, symbol: str) -> Future:
        """Schedule a full daily history download.

        The returned future resolves to a HistoryRecord, or None when the
        download failed; failures are reported through the error event.
        """
        self._history_cancel.clear()
        return self._history_executor.submit(self._history_task, symbol)

    def _history_task(self, symbol: str) -> HistoryRecord | None:
        try:
            return self._download_history(symbol)
        except Exception as exc:
            logger.exception("[QUOTE][history_failed] symbol=%s", symbol)
            self.events.download_error(f"Error fetching history for {symbol}: {exc}")
            return None

    def _download_history(self, symbol: str) -> HistoryRecord | None:
        try:
            validate_symbol(symbol)
        except InvalidSymbolError as exc:
            self.events.download_error(str(exc))
            return None

        with self.budget.persisted():
            if not wait_for_budget(
                self.budget, self.events, self._history_cancel, increment_sec=self.sleep_increment_sec
            ):
                return None

            handle = self.client.open_request()
            with self._history_lock:
                self._history_current = handle
            if self._history_cancel.is_set():
                handle.abort()

            logger.info("[QUOTE][history_fetch] symbol=%s", symbol)
            try:
                try:
                    payload = self.client.get_daily_series(symbol, handle=handle)
                finally:
                    if handle.responded:
                        self.budget.record_call()
                    handle.close()
                    with self._history_lock:
                        self._history_current = None
                history = parse_time_series(payload)
            except QuotaExceededError as exc:
                self.budget.penalize_minute(self.settings.requests_per_minute)
                self.events.download_error(f"Error fetching history for {symbol}: {exc}")
                return None
            except requests.RequestException as exc:
                if not handle.aborted:
                    self.events.download_error(f"Error fetching history for {symbol}: {exc}")
                return None
            except QuoteFetchError as exc:
                self.events.download_error(f"Error fetching history for {symbol}: {exc}")
                return None

        if not history.matches(symbol):
            self.events.download_error(
                f"History for symbol {symbol} return different symbol {history.symbol}"
            )
        return history

    def shutdown(self, wait: bool = True) -> None:
        self.cancel()
        if wait:
            self.worker.join(timeout=self.sleep_increment_sec + 1.0)
        self._history_executor.shutdown(wait=wait)
        self.budget.save()

    def metrics(self) -> dict:
        return {
            **self.worker.metrics(),
            "throttle": self.budget.snapshot(),
        }
