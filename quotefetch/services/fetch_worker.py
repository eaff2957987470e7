from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Iterable

import requests

from quotefetch.errors import (
    InvalidSymbolError,
    QuotaExceededError,
    QuoteFetchError,
    QuoteSchemaError,
)
from quotefetch.integrations.alpha_vantage_parser import parse_global_quote, validate_symbol
from quotefetch.integrations.alpha_vantage_rest import RestRequestHandle
from quotefetch.services.events import QuoteEventHub
from quotefetch.services.pending_set import PendingSet
from quotefetch.services.throttle import ThrottleBudget

logger = logging.getLogger(__name__)

FATAL_STATUS_CODES = frozenset({401, 500, 503})


def status_code_from_error(exc: Exception) -> int | None:
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    return None


def sleep_message(wait: timedelta) -> str:
    ms = int(wait.total_seconds() * 1000)
    if ms > 1000:
        return f"AlphaVantage service needs to sleep for {ms // 1000} seconds"
    return f"AlphaVantage service needs to sleep for {ms} ms"


def wait_for_budget(
    budget: ThrottleBudget,
    events: QuoteEventHub,
    cancel: threading.Event,
    *,
    increment_sec: float = 1.0,
) -> bool:
    """Sleep out the throttle in bounded steps. Returns False if cancelled."""
    wait = budget.time_until_next_call()
    if wait <= timedelta(0):
        return True

    logger.info("[QUOTE][throttle_wait] seconds=%.1f", wait.total_seconds())
    events.download_error(sleep_message(wait))
    events.suspended(True)
    try:
        while not cancel.is_set():
            remaining = budget.time_until_next_call().total_seconds()
            if remaining <= 0:
                break
            cancel.wait(min(remaining, increment_sec))
    finally:
        events.suspended(False)
    return not cancel.is_set()


class FetchWorker:
    """Single background thread draining a PendingSet one symbol at a time.

    ``submit`` and the loop's "queue is empty, stop" decision share one lock,
    so a merge is either seen by the running thread or starts a new one.
    """

    def __init__(
        self,
        *,
        client,
        budget: ThrottleBudget,
        pending: PendingSet,
        events: QuoteEventHub,
        quota_penalty: int,
        sleep_increment_sec: float = 1.0,
    ) -> None:
        self.client = client
        self.budget = budget
        self.pending = pending
        self.events = events
        self.quota_penalty = quota_penalty
        self.sleep_increment_sec = sleep_increment_sec
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._running = False
        self._thread: threading.Thread | None = None
        self._current: RestRequestHandle | None = None
        self._metrics = {
            "runs": 0,
            "attempted": 0,
            "quotes": 0,
            "errors": 0,
            "quota_notes": 0,
        }

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def submit(self, symbols: Iterable[str]) -> int:
        with self._lock:
            count = self.pending.merge(symbols)
            self._cancel.clear()
            if not self._running:
                self._running = True
                self._thread = threading.Thread(target=self._run, daemon=True, name="quote-fetch-worker")
                logger.info("[QUOTE][worker_start] pending=%s", count)
                self._thread.start()
            return count

    def cancel(self) -> None:
        self._cancel.set()
        with self._lock:
            current = self._current
        if current is not None:
            current.abort()

    def join(self, timeout: float | None = None) -> bool:
        with self._lock:
            thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _take_next(self) -> str | None:
        with self._lock:
            symbol = None if self._cancel.is_set() else self.pending.take_one()
            if symbol is None:
                self._running = False
            return symbol

    def _run(self) -> None:
        self._metrics["runs"] += 1
        try:
            with self.budget.persisted():
                while True:
                    symbol = self._take_next()
                    if symbol is None:
                        break
                    self._process(symbol)
        except Exception as exc:
            logger.exception("[QUOTE][worker_failed]")
            self._error(f"Quote download stopped unexpectedly: {exc}")
        finally:
            with self._lock:
                if self._thread is threading.current_thread():
                    self._running = False
                    self._current = None
            remaining = self.pending.count()
            logger.info("[QUOTE][worker_stop] remaining=%s cancelled=%s", remaining, self._cancel.is_set())
            self.events.complete(remaining == 0)

    def _error(self, message: str) -> None:
        self._metrics["errors"] += 1
        self.events.download_error(message)

    def _process(self, symbol: str) -> None:
        try:
            validate_symbol(symbol)
        except InvalidSymbolError as exc:
            self._error(str(exc))
            return

        if not wait_for_budget(self.budget, self.events, self._cancel, increment_sec=self.sleep_increment_sec):
            return

        handle = self.client.open_request()
        with self._lock:
            self._current = handle
        if self._cancel.is_set():
            handle.abort()

        self._metrics["attempted"] += 1
        logger.debug("[QUOTE][fetch] symbol=%s", symbol)
        try:
            try:
                payload = self.client.get_global_quote(symbol, handle=handle)
            finally:
                if handle.responded:
                    self.budget.record_call()
                handle.close()
                with self._lock:
                    self._current = None
            quote = parse_global_quote(payload)
        except QuotaExceededError as exc:
            self._metrics["quota_notes"] += 1
            self.budget.penalize_minute(self.quota_penalty)
            self.budget.save()
            self._error(f"Error fetching quote for {symbol}: {exc}")
            return
        except QuoteSchemaError as exc:
            logger.error("[QUOTE][schema_error] symbol=%s error=%s", symbol, exc)
            self._error(f"Error fetching quote for {symbol}: {exc}")
            self._cancel.set()
            return
        except requests.RequestException as exc:
            if handle.aborted:
                logger.info("[QUOTE][fetch_aborted] symbol=%s", symbol)
                return
            self._error(f"Error fetching quote for {symbol}: {exc}")
            code = status_code_from_error(exc)
            if code in FATAL_STATUS_CODES:
                logger.error("[QUOTE][fatal_status] symbol=%s status=%s", symbol, code)
                self._cancel.set()
            return
        except QuoteFetchError as exc:
            self._error(f"Error fetching quote for {symbol}: {exc}")
            return

        if not quote.is_valid:
            self._error(f"Error fetching quote for {symbol}: no quote data returned")
        elif quote.symbol.casefold() != symbol.casefold():
            self._error(f"Quote for symbol {symbol} returned different symbol {quote.symbol}")
        else:
            self._metrics["quotes"] += 1
            self.events.quote_available(quote)

    def metrics(self) -> dict:
        return {
            **self._metrics,
            "running": self.running,
            "pending_count": self.pending.count(),
        }
