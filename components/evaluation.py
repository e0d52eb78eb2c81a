from __future__ import annotations
from typing import Dict, List, Optional, Sequence
import numpy as np

from components.types import ConfusionCounts, DayFlag, EvaluationReport, TimelineEntry
from utils.logger import Logger

THRESHOLD = 0.5

class EvaluationAnalyzer:
    @staticmethod
    def binarize(predictions_: np.ndarray, threshold_: float = THRESHOLD) -> np.ndarray:
        return (np.asarray(predictions_) >= threshold_).astype(np.int8)

    @staticmethod
    def analyze(predictions_: np.ndarray, labels_: np.ndarray, symbols_: Sequence[str], horizon_: int,
                sample_dates_: Optional[Sequence[str]] = None) -> EvaluationReport:
        """
        Threshold predictions at 0.5 and score them against the labels, per symbol.
        Both matrices are (samples, symbols*horizon), symbol-major then horizon day.
        Every (sample, symbol, day) cell lands in exactly one confusion bucket.
        """
        predictions = np.asarray(predictions_, dtype=np.float64)
        labels = np.asarray(labels_)
        symbols = list(symbols_)
        if predictions.shape != labels.shape:
            raise ValueError(f"predictions {predictions.shape} and labels {labels.shape} differ in shape")
        if predictions.ndim != 2 or predictions.shape[1] != len(symbols) * horizon_:
            raise ValueError(f"expected (samples, {len(symbols)}*{horizon_}) matrices, got {predictions.shape}")
        if sample_dates_ is not None and len(sample_dates_) != len(predictions):
            raise ValueError(f"{len(sample_dates_)} sample dates for {len(predictions)} samples")

        n = len(predictions)
        pred = EvaluationAnalyzer.binarize(predictions).reshape(n, len(symbols), horizon_)
        actual = (labels >= THRESHOLD).astype(np.int8).reshape(n, len(symbols), horizon_)
        hit = pred == actual

        per_symbol_accuracy: Dict[str, float] = {}
        per_symbol_confusion: Dict[str, ConfusionCounts] = {}
        per_symbol_timeline: Dict[str, List[TimelineEntry]] = {}
        for s, symbol in enumerate(symbols):
            p, a = pred[:, s, :], actual[:, s, :]
            per_symbol_confusion[symbol] = ConfusionCounts(
                tp=int(((p == 1) & (a == 1)).sum()),
                fp=int(((p == 1) & (a == 0)).sum()),
                fn=int(((p == 0) & (a == 1)).sum()),
                tn=int(((p == 0) & (a == 0)).sum()),
            )
            cells = n * horizon_
            per_symbol_accuracy[symbol] = float(hit[:, s, :].sum()) / cells if cells else 0.0
            per_symbol_timeline[symbol] = [
                TimelineEntry(
                    correct_count=int(hit[i, s].sum()),
                    total=horizon_,
                    per_day_flags=[DayFlag(int(p[i, d]), int(a[i, d]), bool(hit[i, s, d])) for d in range(horizon_)],
                    date=sample_dates_[i] if sample_dates_ is not None else None,
                )
                for i in range(n)
            ]

        total_count = int(hit.size)
        total_correct = int(hit.sum())
        overall = total_correct / total_count if total_count else 0.0
        Logger.info(f"Evaluated {n} samples x {len(symbols)} symbols x {horizon_} days: "
                    f"accuracy={overall:.4f} ({total_correct}/{total_count})")
        return EvaluationReport(
            per_symbol_accuracy=per_symbol_accuracy,
            per_symbol_confusion=per_symbol_confusion,
            per_symbol_timeline=per_symbol_timeline,
            overall_accuracy=overall,
            total_correct=total_correct,
            total_count=total_count,
        )
