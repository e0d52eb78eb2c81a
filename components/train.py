from __future__ import annotations
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from torch import nn
from torch.utils.data import DataLoader
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union
import math
import numpy as np
import torch

from components.callbacks import CancellationToken, EarlyStopping, LearningRateControl, ReduceLROnPlateau
from components.errors import ConfigurationError, ModelNotBuiltError
from components.models import GRUClassifier
from components.settings import MONITORED_METRICS, ModelSettings, TrainSettings
from components.windowed_dataset import SequenceDataset
from utils.logger import Logger

# ----------------------------- Backend --------------------------------------- #
class TorchBackend:
    """Tensor creation, network/optimizer construction and buffer release for SequenceModel."""
    def __init__(self, device_: Optional[str] = None):
        if device_ is None or device_ == "auto":
            device_ = "cuda" if torch.cuda.is_available() else "cpu"
        self.device = torch.device(device_)

    def build_network(self, input_size_: int, output_size_: int, settings_: ModelSettings) -> nn.Module:
        return GRUClassifier(input_size_, output_size_, settings_).to(self.device)

    def build_optimizer(self, network_: nn.Module, learning_rate_: float) -> torch.optim.Optimizer:
        return torch.optim.Adam(network_.parameters(), lr=learning_rate_)

    def build_loss(self) -> nn.Module:
        return nn.BCELoss() # mean over every label of every sample

    def tensor(self, array_: np.ndarray) -> torch.Tensor:
        return torch.as_tensor(np.asarray(array_, dtype=np.float32), device=self.device)

    def data_loader(self, x_: np.ndarray, y_: np.ndarray, batch_size_: int) -> DataLoader:
        # chronological order is part of the contract: never shuffle
        return DataLoader(SequenceDataset(x_, y_), batch_size=batch_size_, shuffle=False)

    def release(self) -> None:
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    @staticmethod
    def seed(seed_: int) -> None:
        np.random.seed(seed_)
        torch.manual_seed(seed_)
        if torch.cuda.is_available():
            torch.cuda.manual_seed_all(seed_)

# ----------------------------- Training state -------------------------------- #
class TrainingState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CONVERGED = "converged" # early stop with the learning rate already at its floor
    STOPPED = "stopped" # early stop with rate left to reduce, or cancelled
    COMPLETED = "completed" # epoch budget exhausted

    @property
    def is_terminal(self) -> bool:
        return self in (TrainingState.CONVERGED, TrainingState.STOPPED, TrainingState.COMPLETED)

@dataclass(slots=True)
class EpochLogs:
    epoch: int
    loss: float
    binary_accuracy: float
    lr: float
    val_loss: Optional[float] = None
    val_binary_accuracy: Optional[float] = None
    reduced_lr: Optional[float] = None

    def get(self, name_: str) -> Optional[float]:
        if name_ not in MONITORED_METRICS and name_ != "lr":
            raise KeyError(f"Unknown metric: {name_}")
        return getattr(self, name_)

@dataclass(slots=True)
class TrainingHistory:
    epochs: List[EpochLogs] = field(default_factory=list)
    final_state: TrainingState = TrainingState.IDLE
    best_epoch: int = -1
    best_value: float = float("nan")
    stopped_epoch: int = -1

    @property
    def epochs_run(self) -> int:
        return len(self.epochs)

    def as_curve(self) -> Dict[str, list]:
        return {
            "epoch": [e.epoch for e in self.epochs],
            "loss": [e.loss for e in self.epochs],
            "binary_accuracy": [e.binary_accuracy for e in self.epochs],
            "val_loss": [e.val_loss for e in self.epochs],
            "val_binary_accuracy": [e.val_binary_accuracy for e in self.epochs],
            "lr": [e.lr for e in self.epochs],
        }

BatchCallback = Callable[[int, int, float], None]
EpochCallback = Callable[[EpochLogs], None]

# ----------------------------- Model ----------------------------------------- #
class SequenceModel:
    """
    Owns the network, optimizer, learning-rate handle and training history (the model state).
    build() always releases the previous state first; dispose() releases it explicitly.
    """
    def __init__(self, input_shape_: Tuple[int, int], output_size_: int,
                 settings_: ModelSettings = ModelSettings(), backend_: Optional[TorchBackend] = None):
        self.input_shape = tuple(int(v) for v in input_shape_)
        self.output_size = int(output_size_)
        self.settings = settings_
        self.backend = backend_ if backend_ is not None else TorchBackend()
        self.network: Optional[nn.Module] = None
        self.optimizer: Optional[torch.optim.Optimizer] = None
        self.lr_control: Optional[LearningRateControl] = None
        self.loss_fn: Optional[nn.Module] = None
        self.history: Optional[TrainingHistory] = None
        self.state = TrainingState.IDLE

    @property
    def is_built(self) -> bool:
        return self.network is not None

    def _require_built(self) -> None:
        if not self.is_built:
            raise ModelNotBuiltError("Call build() before training, predicting or evaluating the model.")

    def build(self, settings_: Optional[ModelSettings] = None) -> nn.Module:
        if settings_ is not None:
            self.settings = settings_
        self.dispose()
        self.settings.validate()
        if len(self.input_shape) != 2 or min(self.input_shape) <= 0:
            raise ConfigurationError(f"input_shape must be (sequence_length, features) > 0, got {self.input_shape}")
        if self.output_size <= 0:
            raise ConfigurationError(f"output_size must be positive, got {self.output_size}")
        if self.settings.conv_filters and self.input_shape[0] < 2:
            # BatchNorm1d needs more than one value per channel in a training batch
            raise ConfigurationError(f"conv_filters need sequence_length >= 2, got {self.input_shape[0]}")
        self.network = self.backend.build_network(self.input_shape[1], self.output_size, self.settings)
        self.optimizer = self.backend.build_optimizer(self.network, self.settings.learning_rate)
        self.lr_control = LearningRateControl(self.optimizer)
        self.loss_fn = self.backend.build_loss()
        self.history = TrainingHistory()
        self.state = TrainingState.IDLE
        n_params = sum(p.numel() for p in self.network.parameters())
        Logger.info(f"Built GRU classifier input_shape={self.input_shape} output_size={self.output_size} "
                    f"params={n_params:,} device={self.backend.device} settings={self.settings}")
        return self.network

    def get_learning_rate(self) -> float:
        self._require_built()
        return self.lr_control.get()

    def _check_arrays(self, x_: np.ndarray, y_: Optional[np.ndarray], name_: str) -> None:
        if x_.ndim != 3 or tuple(x_.shape[1:]) != self.input_shape:
            raise ValueError(f"{name_}: expected sequences shaped (N, {self.input_shape[0]}, {self.input_shape[1]}), "
                             f"got {x_.shape}")
        if y_ is not None and (y_.ndim != 2 or y_.shape[1] != self.output_size or len(y_) != len(x_)):
            raise ValueError(f"{name_}: expected labels shaped ({len(x_)}, {self.output_size}), got {y_.shape}")

    def _run_epoch(self, loader_: DataLoader, epoch_: int, on_batch_end_: Optional[BatchCallback],
                   cancel_token_: Optional[CancellationToken]) -> Tuple[float, float, bool]:
        self.network.train()
        total_loss, correct, seen, labels_seen = 0.0, 0.0, 0, 0
        for step, (xb, yb) in enumerate(loader_, start=1):
            xb = xb.to(self.backend.device) # (B, T, F)
            yb = yb.to(self.backend.device) # (B, S*H)
            self.optimizer.zero_grad()
            pred = self.network(xb)
            loss = self.loss_fn(pred, yb)
            loss.backward()
            self.optimizer.step()
            l = float(loss.item())
            total_loss += l * len(xb)
            seen += len(xb)
            correct += float(((pred.detach() >= 0.5).float() == yb).sum().item())
            labels_seen += yb.numel()
            if on_batch_end_ is not None:
                on_batch_end_(epoch_, step, l)
            if cancel_token_ is not None and cancel_token_.cancelled:
                return total_loss / max(seen, 1), correct / max(labels_seen, 1), True
        return total_loss / max(seen, 1), correct / max(labels_seen, 1), False

    def iter_train(self, x_train_: np.ndarray, y_train_: np.ndarray,
                   x_val_: Optional[np.ndarray] = None, y_val_: Optional[np.ndarray] = None,
                   train_settings_: TrainSettings = TrainSettings(),
                   on_batch_end_: Optional[BatchCallback] = None,
                   cancel_token_: Optional[CancellationToken] = None) -> Iterator[EpochLogs]:
        """
        Trains epoch by epoch, yielding the logs at every epoch boundary.
        A caller that stops iterating (or closes the generator) leaves the model in STOPPED.
        Early stopping runs only with validation data; without it the plateau controller watches the training loss.
        """
        self._require_built()
        x_train_ = np.asarray(x_train_, dtype=np.float32)
        y_train_ = np.asarray(y_train_, dtype=np.float32)
        self._check_arrays(x_train_, y_train_, "train")
        if len(x_train_) == 0:
            raise ValueError("train: no samples")
        has_val = x_val_ is not None and y_val_ is not None and len(x_val_) > 0
        if has_val:
            x_val_ = np.asarray(x_val_, dtype=np.float32)
            y_val_ = np.asarray(y_val_, dtype=np.float32)
            self._check_arrays(x_val_, y_val_, "validation")
        ts = train_settings_
        monitor = ts.monitor
        if monitor.startswith("val_") and not has_val:
            Logger.warning(f"No validation data: early stopping disabled, plateau controller watches 'loss' instead of '{monitor}'")
            monitor = "loss"
        loader = self.backend.data_loader(x_train_, y_train_, ts.batch_size)
        early = EarlyStopping(ts.early_stopping_patience, ts.min_delta, monitor) if has_val else None
        plateau = ReduceLROnPlateau(self.lr_control, ts.reduce_lr_patience, ts.reduce_lr_factor,
                                    ts.min_learning_rate, ts.min_delta, monitor)
        self.history = TrainingHistory()
        best_weights = None
        self.state = TrainingState.RUNNING
        Logger.info(f"Training on {len(x_train_)} samples"
                    f"{f', validating on {len(x_val_)}' if has_val else ''} for up to {ts.epochs} epochs "
                    f"(batch_size={ts.batch_size}, lr={self.lr_control.get():.3e})")
        try:
            for ep in range(1, ts.epochs + 1):
                lr = self.lr_control.get()
                loss, acc, cancelled = self._run_epoch(loader, ep, on_batch_end_, cancel_token_)
                if cancelled:
                    Logger.info(f"Training cancelled during epoch {ep}: {cancel_token_.reason}")
                    self.state = TrainingState.STOPPED
                    break
                logs = EpochLogs(epoch=ep, loss=loss, binary_accuracy=acc, lr=lr)
                if has_val:
                    val = self.evaluate(x_val_, y_val_, ts.batch_size)
                    logs.val_loss, logs.val_binary_accuracy = val["loss"], val["binary_accuracy"]
                # the plateau controller runs after the epoch's last optimizer step
                logs.reduced_lr = plateau.on_epoch_end(logs.get(monitor))
                stop = False
                if early is not None:
                    stop = early.on_epoch_end(ep, logs.get(monitor))
                    if early.best_epoch == ep:
                        self.history.best_epoch, self.history.best_value = ep, early.best
                        if ts.restore_best_weights:
                            best_weights = {k: v.detach().cpu().clone() for k, v in self.network.state_dict().items()}
                self.history.epochs.append(logs)
                Logger.info(
                    "Epoch %03d | loss=%.6f acc=%.4f | val_loss=%s val_acc=%s | lr=%.3e",
                    ep, loss, acc,
                    f"{logs.val_loss:.6f}" if logs.val_loss is not None else "n/a",
                    f"{logs.val_binary_accuracy:.4f}" if logs.val_binary_accuracy is not None else "n/a",
                    lr,
                )
                yield logs
                if cancel_token_ is not None and cancel_token_.cancelled:
                    Logger.info(f"Training cancelled after epoch {ep}: {cancel_token_.reason}")
                    self.state = TrainingState.STOPPED
                    break
                if stop:
                    self.history.stopped_epoch = ep
                    at_floor = self.lr_control.get() <= ts.min_learning_rate
                    self.state = TrainingState.CONVERGED if at_floor else TrainingState.STOPPED
                    break
            else:
                self.state = TrainingState.COMPLETED
        finally:
            if self.state == TrainingState.RUNNING:
                self.state = TrainingState.STOPPED # caller abandoned the generator
            if best_weights is not None and self.network is not None:
                self.network.load_state_dict(best_weights)
                Logger.info(f"Restored best weights from epoch {self.history.best_epoch}")
            self.history.final_state = self.state
        Logger.info(f"Training finished: state={self.state.value} epochs_run={self.history.epochs_run}")

    def train(self, x_train_: np.ndarray, y_train_: np.ndarray,
              x_val_: Optional[np.ndarray] = None, y_val_: Optional[np.ndarray] = None,
              train_settings_: TrainSettings = TrainSettings(),
              on_epoch_end_: Optional[EpochCallback] = None,
              on_batch_end_: Optional[BatchCallback] = None,
              cancel_token_: Optional[CancellationToken] = None) -> TrainingHistory:
        for logs in self.iter_train(x_train_, y_train_, x_val_, y_val_, train_settings_, on_batch_end_, cancel_token_):
            if on_epoch_end_ is not None:
                on_epoch_end_(logs)
        return self.history

    def predict(self, x_: np.ndarray, batch_size_: int = 256) -> np.ndarray:
        """Per-label probabilities shaped (N, output_size)."""
        self._require_built()
        x_ = np.asarray(x_, dtype=np.float32)
        self._check_arrays(x_, None, "predict")
        self.network.eval()
        preds = []
        with torch.no_grad():
            for start in range(0, len(x_), batch_size_):
                xb = self.backend.tensor(x_[start:start + batch_size_])
                preds.append(self.network(xb).cpu().numpy())
        if not preds:
            return np.empty((0, self.output_size), dtype=np.float32)
        return np.concatenate(preds).astype(np.float32)

    def evaluate(self, x_: np.ndarray, y_: np.ndarray, batch_size_: int = 256) -> Dict[str, float]:
        self._require_built()
        x_ = np.asarray(x_, dtype=np.float32)
        y_ = np.asarray(y_, dtype=np.float32)
        self._check_arrays(x_, y_, "evaluate")
        if len(x_) == 0:
            return {"loss": float("nan"), "binary_accuracy": float("nan")}
        self.network.eval()
        total_loss, correct = 0.0, 0.0
        with torch.no_grad():
            for start in range(0, len(x_), batch_size_):
                xb = self.backend.tensor(x_[start:start + batch_size_])
                yb = self.backend.tensor(y_[start:start + batch_size_])
                pred = self.network(xb)
                total_loss += float(self.loss_fn(pred, yb).item()) * len(xb)
                correct += float(((pred >= 0.5).float() == yb).sum().item())
        loss = total_loss / len(x_)
        return {"loss": loss if math.isfinite(loss) else float("nan"), "binary_accuracy": correct / y_.size}

    def save(self, path_: Union[str, Path]) -> Path:
        self._require_built()
        path = Path(path_)
        path.parent.mkdir(parents=True, exist_ok=True)
        settings = {k: list(v) if isinstance(v, tuple) else v for k, v in asdict(self.settings).items()}
        torch.save({
            "state_dict": {k: v.detach().cpu() for k, v in self.network.state_dict().items()},
            "input_shape": list(self.input_shape),
            "output_size": self.output_size,
            "settings": settings,
        }, path)
        Logger.info(f"Saved model weights -> {path.resolve()}")
        return path

    def load(self, path_: Union[str, Path]) -> None:
        """Load weights saved by save() into the built network; shapes must match."""
        self._require_built()
        state = torch.load(Path(path_), map_location=self.backend.device)
        if isinstance(state, dict) and "state_dict" in state:
            if list(state.get("input_shape", self.input_shape)) != list(self.input_shape) or \
                    int(state.get("output_size", self.output_size)) != self.output_size:
                raise ConfigurationError(f"Saved model shape {state.get('input_shape')}->{state.get('output_size')} "
                                         f"does not match {self.input_shape}->{self.output_size}")
            state = state["state_dict"]
        self.network.load_state_dict(state)
        Logger.info(f"Loaded model weights from {path_}")

    def dispose(self) -> None:
        if self.network is None and self.optimizer is None:
            return
        self.network = None
        self.optimizer = None
        self.lr_control = None
        self.loss_fn = None
        self.history = None
        self.state = TrainingState.IDLE
        self.backend.release()
        Logger.debug("Released model state")
