from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Any

from quotefetch.errors import (
    InvalidSymbolError,
    ProviderError,
    QuotaExceededError,
    QuoteParseError,
    QuoteSchemaError,
)
from quotefetch.schemas.quote import HistoryRecord, Quote

ILLEGAL_SYMBOL_CHARS = frozenset(" \t\n\r/+=&:")

# The provider has used both keys for call-volume messages.
_QUOTA_KEYS = ("Note", "Information")

_GLOBAL_QUOTE_FIELDS = {
    "symbol": "01. symbol",
    "open": "02. open",
    "high": "03. high",
    "low": "04. low",
    "close": "08. previous close",
    "volume": "06. volume",
}

_DAILY_FIELDS = {
    "open": "1. open",
    "high": "2. high",
    "low": "3. low",
    "close": "4. close",
    "volume": "5. volume",
}


def validate_symbol(symbol: str | None) -> str:
    """Return the symbol unchanged or raise InvalidSymbolError.

    Symbols travel on the query string, so anything that would need escaping
    there is rejected rather than encoded.
    """
    if not symbol:
        raise InvalidSymbolError("Skipping security with an empty symbol")
    bad = sorted({ch for ch in symbol if ch in ILLEGAL_SYMBOL_CHARS})
    if bad:
        raise InvalidSymbolError(
            f"Skipping security with illegal symbol {symbol!r}: contains {''.join(bad)!r}"
        )
    return symbol


def _to_decimal(value: Any, *, field_name: str) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise QuoteParseError(f"invalid numeric value for {field_name}: {value!r}") from exc


def _to_date(value: Any) -> dt.date | None:
    if not value:
        return None
    try:
        return dt.date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _raise_for_provider_message(payload: dict) -> None:
    for key in _QUOTA_KEYS:
        if key in payload:
            raise QuotaExceededError(str(payload[key]))
    if "Error Message" in payload:
        raise ProviderError(str(payload["Error Message"]))


def _ensure_object(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise QuoteParseError("response body must be a JSON object")
    return payload


def parse_global_quote(payload: Any) -> Quote:
    """Parse a GLOBAL_QUOTE response into a Quote.

    Every field inside ``"Global Quote"`` is optional; the container itself is
    required.
    """
    raw = _ensure_object(payload)
    _raise_for_provider_message(raw)

    if "Global Quote" not in raw:
        raise QuoteSchemaError("Global quote data schema has changed")

    body = raw["Global Quote"]
    if not isinstance(body, dict):
        return Quote()

    values: dict[str, Any] = {}
    symbol = body.get(_GLOBAL_QUOTE_FIELDS["symbol"])
    if symbol is not None:
        values["symbol"] = str(symbol)
    for field_name in ("open", "high", "low", "close", "volume"):
        values[field_name] = _to_decimal(body.get(_GLOBAL_QUOTE_FIELDS[field_name]), field_name=field_name)
    values["date"] = _to_date(body.get("07. latest trading day"))
    return Quote(**values)


def parse_time_series(payload: Any) -> HistoryRecord:
    """Parse a TIME_SERIES_DAILY response.

    The provider lists days newest first; the record holds them oldest first.
    Rows whose key is not a date are skipped.
    """
    raw = _ensure_object(payload)
    _raise_for_provider_message(raw)

    if "Meta Data" not in raw or "Time Series (Daily)" not in raw:
        raise QuoteSchemaError("Time series data schema has changed")

    record = HistoryRecord()
    meta = raw["Meta Data"]
    if isinstance(meta, dict) and meta.get("2. Symbol") is not None:
        record.symbol = str(meta["2. Symbol"])

    series = raw["Time Series (Daily)"]
    if not isinstance(series, dict):
        return record

    for day, row in reversed(list(series.items())):
        trading_day = _to_date(day)
        if trading_day is None or not isinstance(row, dict):
            continue
        values = {
            field_name: _to_decimal(row.get(key), field_name=field_name)
            for field_name, key in _DAILY_FIELDS.items()
        }
        record.history.append(Quote(symbol=record.symbol, date=trading_day, **values))
    return record
