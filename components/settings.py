from dataclasses import dataclass
from typing import Tuple

from components.errors import ConfigurationError

# per-epoch metrics a training controller can watch
MONITORED_METRICS: Tuple[str, ...] = ("loss", "binary_accuracy", "val_loss", "val_binary_accuracy")

@dataclass(frozen=True, slots=True)
class DatasetSettings:
    sequence_length: int = 12
    prediction_horizon: int = 3
    train_split: float = 0.8

    def __post_init__(self):
        if self.sequence_length < 1:
            raise ConfigurationError(f"sequence_length must be >= 1, got {self.sequence_length}")
        if self.prediction_horizon < 1:
            raise ConfigurationError(f"prediction_horizon must be >= 1, got {self.prediction_horizon}")
        if not 0.0 < self.train_split < 1.0:
            raise ConfigurationError(f"train_split must lie in (0, 1), got {self.train_split}")

@dataclass(frozen=True, slots=True)
class ModelSettings:
    """Topology and optimizer options. Checked by SequenceModel.build(), not on construction."""
    gru_units: Tuple[int, ...] = (96, 64)
    conv_filters: Tuple[int, ...] = ()
    conv_kernel_size: int = 3
    dense_units: Tuple[int, ...] = ()
    bidirectional: bool = False
    dropout_rate: float = 0.2
    recurrent_dropout: float = 0.1
    conv_dropout: float = 0.1
    learning_rate: float = 1e-3

    def validate(self) -> None:
        if not self.gru_units:
            raise ConfigurationError("gru_units must be a non-empty sequence")
        for name in ("gru_units", "conv_filters", "dense_units"):
            sizes = getattr(self, name)
            if any(int(u) <= 0 for u in sizes):
                raise ConfigurationError(f"{name} must contain positive sizes, got {list(sizes)}")
        if self.conv_filters and self.conv_kernel_size < 1:
            raise ConfigurationError(f"conv_kernel_size must be >= 1, got {self.conv_kernel_size}")
        for name in ("dropout_rate", "recurrent_dropout", "conv_dropout"):
            rate = getattr(self, name)
            if not 0.0 <= rate < 1.0:
                raise ConfigurationError(f"{name} must lie in [0, 1), got {rate}")
        if self.learning_rate <= 0:
            raise ConfigurationError(f"learning_rate must be positive, got {self.learning_rate}")

@dataclass(frozen=True, slots=True)
class TrainSettings:
    epochs: int = 60
    batch_size: int = 32
    early_stopping_patience: int = 8
    reduce_lr_patience: int = 3
    reduce_lr_factor: float = 0.5
    min_learning_rate: float = 1e-5
    min_delta: float = 1e-4
    monitor: str = "val_loss"
    restore_best_weights: bool = True

    def __post_init__(self):
        if self.epochs < 1:
            raise ConfigurationError(f"epochs must be >= 1, got {self.epochs}")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.early_stopping_patience < 1 or self.reduce_lr_patience < 1:
            raise ConfigurationError("patience values must be >= 1")
        if not 0.0 < self.reduce_lr_factor < 1.0:
            raise ConfigurationError(f"reduce_lr_factor must lie in (0, 1), got {self.reduce_lr_factor}")
        if self.min_learning_rate < 0:
            raise ConfigurationError(f"min_learning_rate must be >= 0, got {self.min_learning_rate}")
        if self.min_delta < 0:
            raise ConfigurationError(f"min_delta must be >= 0, got {self.min_delta}")
        if self.monitor not in MONITORED_METRICS:
            raise ConfigurationError(f"monitor must be one of {list(MONITORED_METRICS)}, got {self.monitor!r}")
