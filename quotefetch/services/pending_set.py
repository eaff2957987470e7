from __future__ import annotations

import threading
from typing import Iterable


class PendingSet:
    """Deduplicated symbols awaiting fetch; safe to merge into while draining."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # dict keeps insertion order, so draining is first-in first-out.
        self._symbols: dict[str, None] = {}

    def merge(self, symbols: Iterable[str]) -> int:
        with self._lock:
            for symbol in symbols:
                self._symbols.setdefault(symbol, None)
            return len(self._symbols)

    def take_one(self) -> str | None:
        with self._lock:
            if not self._symbols:
                return None
            symbol = next(iter(self._symbols))
            del self._symbols[symbol]
            return symbol

    def count(self) -> int:
        with self._lock:
            return len(self._symbols)
