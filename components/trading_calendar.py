from __future__ import annotations
from typing import Dict, Iterable, List, Tuple

from components.types import Row

class TradingCalendar:
    """
    Global date axis derived from the rows of every symbol.
    Positions are contiguous (0..n-1) even though calendar days are not; days without any row are simply absent.
    """
    def __init__(self, trading_days_: Iterable[str]):
        self._days: Tuple[str, ...] = tuple(sorted(set(trading_days_))) # ISO strings sort chronologically
        self._index: Dict[str, int] = {d: i for i, d in enumerate(self._days)}

    @property
    def days(self) -> Tuple[str, ...]:
        return self._days

    def __len__(self) -> int:
        return len(self._days)

    def position(self, date_: str) -> int:
        return self._index[date_]

    @staticmethod
    def build_universe(rows_: List[Row]) -> Tuple[TradingCalendar, Tuple[str, ...]]:
        """Calendar plus the sorted distinct symbols of `rows_`."""
        calendar = TradingCalendar(r.date for r in rows_)
        symbols = tuple(sorted({r.symbol for r in rows_}))
        return calendar, symbols
