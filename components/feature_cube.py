from __future__ import annotations
from dataclasses import dataclass
from numpy.lib.stride_tricks import sliding_window_view
from sklearn.preprocessing import MinMaxScaler, StandardScaler
from typing import Dict, List, Tuple
import numpy as np
import pandas as pd

from components.errors import DataInsufficientError
from components.trading_calendar import TradingCalendar
from components.types import Row
from utils.logger import Logger

LEVEL_FEATURES: Tuple[str, ...] = ("Open", "Close")
DERIVED_FEATURES: Tuple[str, ...] = ("Return", "Momentum3", "Volatility5")
FEATURE_KEYS: Tuple[str, ...] = LEVEL_FEATURES + DERIVED_FEATURES
MOMENTUM_LOOKBACK = 3
VOLATILITY_WINDOW = 5

@dataclass(frozen=True)
class FeatureCube:
    """
    Dense (symbol, feature, date) array aligned to one global date axis.
    `symbol_index` / `feature_index` map names to the first two axes.
    """
    values: np.ndarray
    symbols: Tuple[str, ...]
    features: Tuple[str, ...]
    dates: Tuple[str, ...]
    symbol_index: Dict[str, int]
    feature_index: Dict[str, int]
    normalized: bool = False

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.values.shape

    def series(self, symbol_: str, feature_: str) -> np.ndarray:
        return self.values[self.symbol_index[symbol_], self.feature_index[feature_]]

class FeatureCubeBuilder:
    @staticmethod
    def build(rows_: List[Row]) -> Tuple[FeatureCube, FeatureCube]:
        """Raw (gap-filled, with derived features) and per-symbol normalised cubes for `rows_`."""
        calendar, symbols = TradingCalendar.build_universe(rows_)
        if len(calendar) == 0 or len(symbols) == 0:
            Logger.error(f"Empty universe: {len(calendar)} dates, {len(symbols)} symbols")
            raise DataInsufficientError("Feature cube needs at least one date and one symbol.")
        symbol_index = {s: i for i, s in enumerate(symbols)}
        feature_index = {f: i for i, f in enumerate(FEATURE_KEYS)}
        f_open, f_close = feature_index["Open"], feature_index["Close"]
        values = np.full((len(symbols), len(FEATURE_KEYS), len(calendar)), np.nan, dtype=np.float64)
        for row in rows_:
            s = symbol_index.get(row.symbol)
            if s is None:
                continue
            t = calendar.position(row.date)
            values[s, f_open, t] = row.open if np.isfinite(row.open) else np.nan
            values[s, f_close, t] = row.close if np.isfinite(row.close) else np.nan
        for s, symbol in enumerate(symbols):
            values[s, f_open] = FeatureCubeBuilder.fill_gaps(values[s, f_open])
            values[s, f_close] = FeatureCubeBuilder.fill_gaps(values[s, f_close])
            closes = values[s, f_close]
            if not np.isfinite(closes).any():
                Logger.warning(f"{symbol}: no valid Close values, its windows will be rejected")
            values[s, feature_index["Return"]] = FeatureCubeBuilder.pct_change(closes, 1)
            values[s, feature_index["Momentum3"]] = FeatureCubeBuilder.pct_change(closes, MOMENTUM_LOOKBACK)
            values[s, feature_index["Volatility5"]] = FeatureCubeBuilder.rolling_volatility(closes, VOLATILITY_WINDOW)
        raw = FeatureCube(values, symbols, FEATURE_KEYS, calendar.days, symbol_index, feature_index)
        normalized = FeatureCubeBuilder.normalize(raw)
        Logger.info(f"Built feature cube {raw.shape} for {len(symbols)} symbols over {len(calendar)} dates "
                    f"({calendar.days[0]} .. {calendar.days[-1]})")
        return raw, normalized

    @staticmethod
    def fill_gaps(series_: np.ndarray) -> np.ndarray:
        """Forward fill, then back fill leading gaps. An all-missing series stays all-missing."""
        s = pd.Series(series_, dtype=np.float64)
        s = s.where(np.isfinite(s))
        return s.ffill().bfill().to_numpy(dtype=np.float64)

    @staticmethod
    def pct_change(closes_: np.ndarray, lookback_: int) -> np.ndarray:
        """(c[t] - c[t-k]) / c[t-k]; 0 without enough history, on non-finite inputs or a zero baseline."""
        out = np.zeros_like(closes_, dtype=np.float64)
        if len(closes_) <= lookback_:
            return out
        cur = closes_[lookback_:]
        base = closes_[:-lookback_]
        ok = np.isfinite(cur) & np.isfinite(base) & (base != 0)
        tail = out[lookback_:]
        tail[ok] = (cur[ok] - base[ok]) / base[ok]
        return out

    @staticmethod
    def rolling_volatility(closes_: np.ndarray, window_: int) -> np.ndarray:
        """Trailing population std over `window_` closes divided by the window mean, 0 when undefined."""
        out = np.zeros_like(closes_, dtype=np.float64)
        if len(closes_) < window_:
            return out
        windows = sliding_window_view(closes_, window_)
        valid = np.isfinite(windows).all(axis=1)
        with np.errstate(invalid="ignore"):
            mean = windows.mean(axis=1)
            std = np.where(np.ptp(windows, axis=1) == 0, 0.0, windows.std(axis=1))
        ok = valid & np.isfinite(mean) & (mean != 0) & np.isfinite(std)
        tail = out[window_ - 1:]
        tail[ok] = std[ok] / mean[ok]
        return out

    @staticmethod
    def min_max_scale(series_: np.ndarray) -> np.ndarray:
        finite = np.isfinite(series_)
        if not finite.any():
            return series_.astype(np.float64, copy=True)
        vals = series_[finite]
        if vals.min() == vals.max():
            return np.where(finite, 0.0, np.nan)
        scaler = MinMaxScaler(clip=True)
        scaler.fit(vals.reshape(-1, 1))
        out = np.full(series_.shape, np.nan, dtype=np.float64)
        out[finite] = scaler.transform(vals.reshape(-1, 1)).ravel()
        return out

    @staticmethod
    def standard_scale(series_: np.ndarray) -> np.ndarray:
        finite = np.isfinite(series_)
        out = np.zeros(series_.shape, dtype=np.float64)
        if not finite.any():
            return out
        vals = series_[finite]
        if vals.min() == vals.max():
            return out
        scaler = StandardScaler()
        scaler.fit(vals.reshape(-1, 1))
        out[finite] = scaler.transform(vals.reshape(-1, 1)).ravel()
        return out

    @staticmethod
    def normalize(raw_: FeatureCube) -> FeatureCube:
        """Scale every (symbol, feature) series from its own statistics only."""
        values = np.empty_like(raw_.values)
        for s in range(len(raw_.symbols)):
            for f, feature in enumerate(raw_.features):
                if feature in LEVEL_FEATURES:
                    values[s, f] = FeatureCubeBuilder.min_max_scale(raw_.values[s, f])
                else:
                    values[s, f] = FeatureCubeBuilder.standard_scale(raw_.values[s, f])
        return FeatureCube(values, raw_.symbols, raw_.features, raw_.dates,
                           raw_.symbol_index, raw_.feature_index, normalized=True)
