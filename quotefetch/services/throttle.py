from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, Protocol

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

MINUTE_WINDOW = timedelta(seconds=60)


class ThrottleState(BaseModel):
    calls_this_minute: int = 0
    calls_this_day: int = 0
    calls_this_month: int = 0
    minute_started_at: datetime | None = None
    day_started_at: datetime | None = None
    month_started_at: datetime | None = None


class ThrottleStore(Protocol):
    def load(self) -> ThrottleState | None: ...

    def save(self, state: ThrottleState) -> None: ...


class MemoryThrottleStore:
    def __init__(self, state: ThrottleState | None = None) -> None:
        self.state = state
        self.saves = 0

    def load(self) -> ThrottleState | None:
        return self.state.model_copy() if self.state is not None else None

    def save(self, state: ThrottleState) -> None:
        self.state = state.model_copy()
        self.saves += 1


class JsonFileThrottleStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> ThrottleState | None:
        if not self.path.exists():
            return None
        try:
            return ThrottleState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, json.JSONDecodeError, OSError) as exc:
            logger.warning("[THROTTLE][load_failed] path=%s error=%s", self.path, exc)
            return None

    def save(self, state: ThrottleState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(state.model_dump_json(), encoding="utf-8")
        os.replace(tmp_path, self.path)


def _next_midnight(now: datetime) -> datetime:
    return datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=now.tzinfo)


def _next_month_start(now: datetime) -> datetime:
    if now.month == 12:
        first = date(now.year + 1, 1, 1)
    else:
        first = date(now.year, now.month + 1, 1)
    return datetime.combine(first, datetime.min.time(), tzinfo=now.tzinfo)


class ThrottleBudget:
    """Per-minute/day/month call allowance shared by every fetch path.

    The minute window runs 60 seconds from the first call recorded in it; the
    day and month windows follow the calendar of the injected clock. A limit
    of 0 never blocks.
    """

    def __init__(
        self,
        *,
        per_minute: int = 0,
        per_day: int = 0,
        per_month: int = 0,
        store: ThrottleStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.per_minute = per_minute
        self.per_day = per_day
        self.per_month = per_month
        self.store = store or MemoryThrottleStore()
        self.clock = clock
        self._state = ThrottleState()
        self._loaded = False
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings, *, store: ThrottleStore | None = None, **kwargs) -> "ThrottleBudget":
        if store is None and settings.throttle_path:
            store = JsonFileThrottleStore(settings.throttle_path)
        return cls(
            per_minute=settings.requests_per_minute,
            per_day=settings.requests_per_day,
            per_month=settings.requests_per_month,
            store=store,
            **kwargs,
        )

    def _roll(self, now: datetime) -> None:
        state = self._state
        if state.minute_started_at is not None and now - state.minute_started_at >= MINUTE_WINDOW:
            state.calls_this_minute = 0
            state.minute_started_at = None
        if state.day_started_at is not None and state.day_started_at.date() != now.date():
            state.calls_this_day = 0
            state.day_started_at = None
        if state.month_started_at is not None and (
            (state.month_started_at.year, state.month_started_at.month) != (now.year, now.month)
        ):
            state.calls_this_month = 0
            state.month_started_at = None

    def time_until_next_call(self) -> timedelta:
        """Return how long to wait before the next call; zero when allowed.

        When several windows are exhausted the longest reset wins, since the
        call stays blocked until every one of them has rolled over.
        """
        with self._lock:
            self.load()
            now = self.clock()
            self._roll(now)
            state = self._state
            waits: list[timedelta] = []
            if self.per_minute and state.calls_this_minute >= self.per_minute:
                started = state.minute_started_at or now
                waits.append(started + MINUTE_WINDOW - now)
            if self.per_day and state.calls_this_day >= self.per_day:
                waits.append(_next_midnight(now) - now)
            if self.per_month and state.calls_this_month >= self.per_month:
                waits.append(_next_month_start(now) - now)
            return max([w for w in waits if w > timedelta(0)], default=timedelta(0))

    def record_call(self) -> None:
        with self._lock:
            self.load()
            now = self.clock()
            self._roll(now)
            state = self._state
            state.minute_started_at = state.minute_started_at or now
            state.day_started_at = state.day_started_at or now
            state.month_started_at = state.month_started_at or now
            state.calls_this_minute += 1
            state.calls_this_day += 1
            state.calls_this_month += 1

    def penalize_minute(self, amount: int) -> None:
        with self._lock:
            self.load()
            now = self.clock()
            self._roll(now)
            self._state.minute_started_at = self._state.minute_started_at or now
            self._state.calls_this_minute += amount
        logger.info("[THROTTLE][penalize_minute] amount=%s calls_this_minute=%s", amount, self._state.calls_this_minute)

    def load(self) -> None:
        with self._lock:
            if self._loaded:
                return
            self._loaded = True
            stored = self.store.load()
            if stored is not None:
                self._state = stored

    def save(self) -> None:
        with self._lock:
            state = self._state.model_copy()
        try:
            self.store.save(state)
        except OSError as exc:
            logger.error("[THROTTLE][save_failed] error=%s", exc)

    @contextmanager
    def persisted(self) -> Iterator["ThrottleBudget"]:
        self.load()
        try:
            yield self
        finally:
            self.save()

    def snapshot(self) -> dict:
        with self._lock:
            self.load()
            self._roll(self.clock())
            state = self._state
            return {
                "calls_this_minute": state.calls_this_minute,
                "calls_this_day": state.calls_this_day,
                "calls_this_month": state.calls_this_month,
                "per_minute_limit": self.per_minute,
                "per_day_limit": self.per_day,
                "per_month_limit": self.per_month,
            }
