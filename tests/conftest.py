# tests/conftest.py
from __future__ import annotations
from datetime import date, timedelta
from typing import Callable, Dict, List, Sequence
import logging

import numpy as np
import pytest

from components.types import Row
from utils.logger import Logger


@pytest.fixture(autouse=True)
def quiet_logger():
    Logger.set_level(logging.WARNING)
    yield
    Logger.close_file()


def _trading_days(n: int, start: date = date(2024, 1, 1)) -> List[str]:
    """n weekdays starting at `start` (weekends are absent, like a real calendar)."""
    days, d = [], start
    while len(days) < n:
        if d.weekday() < 5:
            days.append(d.isoformat())
        d += timedelta(days=1)
    return days


@pytest.fixture
def make_rows() -> Callable[[Dict[str, Sequence[float]]], List[Row]]:
    """
    {symbol: closes} -> rows over shared weekdays; NaN closes are left out as missing rows.
    Open is the close shifted by a small constant.
    """
    def _make(closes_by_symbol: Dict[str, Sequence[float]]) -> List[Row]:
        n = max(len(v) for v in closes_by_symbol.values())
        days = _trading_days(n)
        rows = []
        for symbol, closes in closes_by_symbol.items():
            for d, c in zip(days, closes):
                if np.isnan(c):
                    continue
                rows.append(Row(date=d, symbol=symbol, open=float(c) - 0.5, close=float(c)))
        return sorted(rows, key=lambda r: (r.date, r.symbol))
    return _make


@pytest.fixture
def random_walk_rows(make_rows) -> List[Row]:
    rng = np.random.default_rng(7)
    closes = {
        "AAA": 100 + np.cumsum(rng.normal(0, 1, 60)),
        "BBB": 50 + np.cumsum(rng.normal(0, 0.5, 60)),
    }
    return make_rows(closes)


@pytest.fixture
def price_csv_text() -> str:
    return (
        "Date,Symbol,Open,Close,Volume\n"
        "2024-01-03,BBB,20.0,21.0,100\n"
        "2024-01-02,AAA,10.0,10.5,100\n"
        "2024-01-02,BBB,19.0,20.0,100\n"
        "2024-01-03,AAA,10.5,11.0,100\n"
    )
