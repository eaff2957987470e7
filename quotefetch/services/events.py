from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable

from quotefetch.schemas.quote import Quote

logger = logging.getLogger(__name__)

QUOTE_AVAILABLE = "quote_available"
DOWNLOAD_ERROR = "download_error"
SUSPENDED = "suspended"
COMPLETE = "complete"
EVENT_KINDS = (QUOTE_AVAILABLE, DOWNLOAD_ERROR, SUSPENDED, COMPLETE)


class QuoteEventHub:
    """Callback registry for fetch notifications.

    Handlers run synchronously on the emitting thread in emission order. A
    handler that raises is logged and skipped; it never stops the emitter.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[Callable[[Any], None]]] = {kind: [] for kind in EVENT_KINDS}

    def subscribe(self, kind: str, handler: Callable[[Any], None]) -> None:
        if kind not in self._handlers:
            raise ValueError(f"unknown event kind: {kind}")
        with self._lock:
            self._handlers[kind].append(handler)

    def unsubscribe(self, kind: str, handler: Callable[[Any], None]) -> None:
        with self._lock:
            if handler in self._handlers.get(kind, []):
                self._handlers[kind].remove(handler)

    def subscribe_all(self, handler: Callable[[str, Any], None]) -> None:
        for kind in EVENT_KINDS:
            self.subscribe(kind, lambda payload, _kind=kind: handler(_kind, payload))

    def emit(self, kind: str, payload: Any) -> None:
        with self._lock:
            handlers = list(self._handlers[kind])
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("[QUOTE][event_handler_failed] kind=%s", kind)

    def quote_available(self, quote: Quote) -> None:
        self.emit(QUOTE_AVAILABLE, quote)

    def download_error(self, message: str) -> None:
        self.emit(DOWNLOAD_ERROR, message)

    def suspended(self, value: bool) -> None:
        self.emit(SUSPENDED, value)

    def complete(self, queue_empty: bool) -> None:
        self.emit(COMPLETE, queue_empty)


class RecentEventLog:
    """Bounded record of recent events plus the latest quote per symbol."""

    def __init__(self, maxlen: int = 100) -> None:
        self._lock = threading.Lock()
        self._events: deque[dict] = deque(maxlen=maxlen)
        self._latest: dict[str, Quote] = {}
        self._hubs: list[QuoteEventHub] = []

    def attach(self, hub: QuoteEventHub) -> None:
        if any(attached is hub for attached in self._hubs):
            return
        self._hubs.append(hub)
        hub.subscribe_all(self.record)

    def record(self, kind: str, payload: Any) -> None:
        if isinstance(payload, Quote):
            row_payload: Any = payload.model_dump(mode="json")
        else:
            row_payload = payload
        with self._lock:
            self._events.append({"kind": kind, "payload": row_payload, "ts": int(time.time())})
            if kind == QUOTE_AVAILABLE and payload.symbol:
                self._latest[payload.symbol.upper()] = payload

    def recent(self, limit: int | None = None) -> list[dict]:
        with self._lock:
            rows = list(self._events)
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return rows

    def latest_quote(self, symbol: str) -> Quote | None:
        with self._lock:
            return self._latest.get(symbol.upper())
