from __future__ import annotations
from typing import Optional
import math
import torch

from utils.logger import Logger

def resolve_mode(monitor_: str, mode_: str = "auto") -> str:
    if mode_ in ("min", "max"):
        return mode_
    if mode_ != "auto":
        raise ValueError(f"Unknown mode: {mode_}")
    return "max" if "acc" in monitor_ else "min"

class LearningRateControl:
    """Get/set access to an optimizer's learning rate, shared by the training step and the plateau controller."""
    def __init__(self, optimizer_: torch.optim.Optimizer):
        self._optimizer = optimizer_

    def get(self) -> float:
        return float(self._optimizer.param_groups[0]["lr"])

    def set(self, lr_: float) -> None:
        for group in self._optimizer.param_groups:
            group["lr"] = float(lr_)

class CancellationToken:
    """Checked by the training loop at batch and epoch boundaries; there is no forced interrupt."""
    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason_: str = "cancelled by caller") -> None:
        self._cancelled = True
        self.reason = reason_

class _MetricTracker:
    def __init__(self, monitor_: str, min_delta_: float, mode_: str):
        self.monitor = monitor_
        self.min_delta = abs(min_delta_)
        self.mode = resolve_mode(monitor_, mode_)
        self.best = math.inf if self.mode == "min" else -math.inf
        self.wait = 0

    def _is_improvement(self, current_: float) -> bool:
        if current_ is None or not math.isfinite(current_):
            return False
        if self.mode == "min":
            return current_ < self.best - self.min_delta
        return current_ > self.best + self.min_delta

class ReduceLROnPlateau(_MetricTracker):
    """
    Multiplies the learning rate by `factor` (floored at `min_lr`) once the monitored metric has failed to
    improve by at least `min_delta` for `patience` consecutive epochs. The wait counter resets after every
    reduction. Independent of early stopping even when both watch the same metric.
    """
    def __init__(self, lr_control_: LearningRateControl, patience_: int, factor_: float, min_lr_: float,
                 min_delta_: float = 0.0, monitor_: str = "val_loss", mode_: str = "auto"):
        super().__init__(monitor_, min_delta_, mode_)
        if not 0.0 < factor_ < 1.0:
            raise ValueError(f"factor must lie in (0, 1), got {factor_}")
        self.lr_control = lr_control_
        self.patience = patience_
        self.factor = factor_
        self.min_lr = min_lr_

    def on_epoch_end(self, metric_: Optional[float]) -> Optional[float]:
        """New learning rate when a reduction happened, else None."""
        if self._is_improvement(metric_):
            self.best = metric_
            self.wait = 0
            return None
        self.wait += 1
        if self.wait < self.patience:
            return None
        self.wait = 0
        old_lr = self.lr_control.get()
        if old_lr <= self.min_lr:
            return None
        new_lr = max(old_lr * self.factor, self.min_lr)
        self.lr_control.set(new_lr)
        Logger.info(f"{self.monitor} plateaued for {self.patience} epochs: learning rate {old_lr:.3e} -> {new_lr:.3e}")
        return new_lr

class EarlyStopping(_MetricTracker):
    def __init__(self, patience_: int, min_delta_: float = 0.0, monitor_: str = "val_loss", mode_: str = "auto"):
        super().__init__(monitor_, min_delta_, mode_)
        self.patience = patience_
        self.best_epoch = -1
        self.stopped_epoch = -1

    def on_epoch_end(self, epoch_: int, metric_: Optional[float]) -> bool:
        """True when training should stop after `epoch_`."""
        if self._is_improvement(metric_):
            self.best = metric_
            self.best_epoch = epoch_
            self.wait = 0
            return False
        self.wait += 1
        if self.wait >= self.patience:
            self.stopped_epoch = epoch_
            Logger.info(f"Early stopping at epoch {epoch_} (best {self.monitor}={self.best:.6f} @ epoch {self.best_epoch})")
            return True
        return False
