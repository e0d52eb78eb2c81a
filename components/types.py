from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import numpy as np

@dataclass(frozen=True, slots=True)
class Row:
    date: str # YYYY-MM-DD
    symbol: str
    open: float
    close: float

@dataclass(slots=True)
class DatasetBundle:
    """
    Chronologically split windowed dataset.
    Shapes:
        x_train (split_index, L, S*F), x_test (N - split_index, L, S*F)
        y_train (split_index, S*H),    y_test (N - split_index, S*H)
    The buffers are owned by the bundle until release() is called.
    """
    x_train: Optional[np.ndarray]
    x_test: Optional[np.ndarray]
    y_train: Optional[np.ndarray]
    y_test: Optional[np.ndarray]
    sample_dates: List[str]
    split_index: int
    symbols: Tuple[str, ...]
    features: Tuple[str, ...]
    sequence_length: int
    prediction_horizon: int
    total_dates: int = 0
    total_rows: int = 0
    released: bool = False

    @property
    def num_samples(self) -> int:
        return len(self.sample_dates)

    @property
    def features_per_step(self) -> int:
        return len(self.symbols) * len(self.features)

    @property
    def output_size(self) -> int:
        return len(self.symbols) * self.prediction_horizon

    @property
    def input_shape(self) -> Tuple[int, int]:
        return self.sequence_length, self.features_per_step

    @property
    def train_dates(self) -> List[str]:
        return self.sample_dates[:self.split_index]

    @property
    def test_dates(self) -> List[str]:
        return self.sample_dates[self.split_index:]

    def summary(self) -> Dict[str, Any]:
        return {
            "unique_symbols": len(self.symbols),
            "timeline_days": self.total_dates,
            "total_rows": self.total_rows,
            "training_samples": self.split_index,
            "test_samples": self.num_samples - self.split_index,
            "sequence_length": self.sequence_length,
            "prediction_horizon": self.prediction_horizon,
            "features_per_symbol": len(self.features),
            "feature_set": list(self.features),
            "symbols": list(self.symbols),
            "first_anchor": self.sample_dates[0] if self.sample_dates else None,
            "last_anchor": self.sample_dates[-1] if self.sample_dates else None,
        }

    def release(self) -> None:
        self.x_train = self.x_test = self.y_train = self.y_test = None
        self.released = True

@dataclass(slots=True)
class ConfusionCounts:
    tp: int = 0
    fp: int = 0
    fn: int = 0
    tn: int = 0

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.fn + self.tn

    def to_dict(self) -> Dict[str, int]:
        return {"tp": self.tp, "fp": self.fp, "fn": self.fn, "tn": self.tn}

@dataclass(frozen=True, slots=True)
class DayFlag:
    predicted: int
    actual: int
    correct: bool

@dataclass(slots=True)
class TimelineEntry:
    correct_count: int
    total: int
    per_day_flags: List[DayFlag] = field(default_factory=list)
    date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "correct_count": self.correct_count,
            "total": self.total,
            "per_day_flags": [
                {"predicted": f.predicted, "actual": f.actual, "correct": f.correct} for f in self.per_day_flags
            ],
        }

@dataclass(slots=True)
class EvaluationReport:
    per_symbol_accuracy: Dict[str, float]
    per_symbol_confusion: Dict[str, ConfusionCounts]
    per_symbol_timeline: Dict[str, List[TimelineEntry]]
    overall_accuracy: float
    total_correct: int = 0
    total_count: int = 0

    def ranked_accuracy(self) -> List[Tuple[str, float]]:
        """Symbols by descending accuracy; ties keep symbol order."""
        return sorted(self.per_symbol_accuracy.items(), key=lambda kv: -kv[1])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_accuracy": self.overall_accuracy,
            "total_correct": self.total_correct,
            "total_count": self.total_count,
            "per_symbol_accuracy": dict(self.per_symbol_accuracy),
            "ranking": [{"rank": i + 1, "symbol": s, "accuracy": a} for i, (s, a) in enumerate(self.ranked_accuracy())],
            "per_symbol_confusion": {s: c.to_dict() for s, c in self.per_symbol_confusion.items()},
            "per_symbol_timeline": {s: [e.to_dict() for e in t] for s, t in self.per_symbol_timeline.items()},
        }
