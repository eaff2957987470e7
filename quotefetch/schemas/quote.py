import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field


class Quote(BaseModel):
    symbol: str | None = None
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    close: Decimal | None = None
    volume: Decimal | None = None
    date: dt.date | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.symbol)


class HistoryRecord(BaseModel):
    symbol: str | None = None
    history: list[Quote] = Field(default_factory=list)

    def matches(self, symbol: str) -> bool:
        return (self.symbol or "").casefold() == symbol.casefold()
