from __future__ import annotations
from numpy.lib.stride_tricks import sliding_window_view
from torch.utils.data import Dataset
from typing import Tuple
import math
import numpy as np
import torch

from components.errors import InsufficientSamplesError
from components.feature_cube import FeatureCube
from components.settings import DatasetSettings
from components.types import DatasetBundle
from utils.logger import Logger

class SequenceDataset(Dataset):
    """(sequence, label) pairs over already-windowed buffers; indexing never reorders samples."""
    def __init__(self, x_: np.ndarray, y_: np.ndarray):
        if len(x_) != len(y_):
            raise ValueError(f"sequence/label length mismatch: {len(x_)} != {len(y_)}")
        self.X = torch.from_numpy(np.ascontiguousarray(x_, dtype=np.float32))
        self.y = torch.from_numpy(np.ascontiguousarray(y_, dtype=np.float32))

    def __len__(self):
        return len(self.y)

    def __getitem__(self, idx_):
        return self.X[idx_], self.y[idx_]

class WindowedDatasetBuilder:
    @staticmethod
    def candidate_anchors(num_dates_: int, sequence_length_: int, horizon_: int) -> np.ndarray:
        """Anchor positions with a full window [i-L+1, i] and a full horizon [i+1, i+H]."""
        return np.arange(sequence_length_ - 1, num_dates_ - horizon_, dtype=np.int64)

    @staticmethod
    def split_index(num_samples_: int, train_split_: float) -> int:
        return min(num_samples_ - 1, max(1, int(math.floor(num_samples_ * train_split_))))

    @staticmethod
    def build_windows(raw_: FeatureCube, normalized_: FeatureCube,
                      settings_: DatasetSettings) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Returns (sequences, labels, anchors) for every valid window, in increasing anchor order.
        sequences: (n, L, S*F) float32, symbol-major then feature order within a timestep.
        labels:    (n, S*H) float32, symbol-major then horizon day 1..H.
        """
        L, H = settings_.sequence_length, settings_.prediction_horizon
        num_symbols, num_features, num_dates = normalized_.values.shape
        width = num_symbols * num_features
        anchors = WindowedDatasetBuilder.candidate_anchors(num_dates, L, H)
        if len(anchors) == 0:
            return (np.empty((0, L, width), np.float32), np.empty((0, num_symbols * H), np.float32), anchors)
        # (T, S*F) then windows over time -> (T-L+1, S*F, L) -> (n, L, S*F)
        steps = normalized_.values.transpose(2, 0, 1).reshape(num_dates, width)
        windows = sliding_window_view(steps, L, axis=0)[anchors - (L - 1)].transpose(0, 2, 1)
        seq_valid = np.isfinite(windows).all(axis=(1, 2))

        closes = raw_.values[:, raw_.feature_index["Close"], :] # unnormalised
        base = closes[:, anchors] # (S, n)
        future = np.stack([closes[:, anchors + h] for h in range(1, H + 1)], axis=1) # (S, H, n)
        label_valid = np.isfinite(base).all(axis=0) & np.isfinite(future).all(axis=(0, 1))
        with np.errstate(invalid="ignore"):
            up = future > base[:, None, :]
        labels = up.transpose(2, 0, 1).reshape(len(anchors), num_symbols * H)

        keep = seq_valid & label_valid
        dropped = int(len(anchors) - keep.sum())
        if dropped:
            Logger.info(f"Rejected {dropped}/{len(anchors)} windows with non-finite inputs or missing future closes")
        return (np.ascontiguousarray(windows[keep], dtype=np.float32),
                np.ascontiguousarray(labels[keep], dtype=np.float32),
                anchors[keep])

    @staticmethod
    def build(raw_: FeatureCube, normalized_: FeatureCube, settings_: DatasetSettings,
              total_rows_: int = 0) -> DatasetBundle:
        sequences, labels, anchors = WindowedDatasetBuilder.build_windows(raw_, normalized_, settings_)
        n = len(anchors)
        if n < 2:
            Logger.error(f"Only {n} valid windows for {len(raw_.dates)} dates "
                         f"(sequence_length={settings_.sequence_length}, horizon={settings_.prediction_horizon})")
            raise InsufficientSamplesError(
                f"Not enough samples to create a train/test split: {n} valid windows. "
                "Please provide a longer time series.")
        split = WindowedDatasetBuilder.split_index(n, settings_.train_split)
        bundle = DatasetBundle(
            x_train=sequences[:split].copy(), x_test=sequences[split:].copy(),
            y_train=labels[:split].copy(), y_test=labels[split:].copy(),
            sample_dates=[raw_.dates[a] for a in anchors],
            split_index=split,
            symbols=raw_.symbols,
            features=raw_.features,
            sequence_length=settings_.sequence_length,
            prediction_horizon=settings_.prediction_horizon,
            total_dates=len(raw_.dates),
            total_rows=total_rows_,
        )
        Logger.info(f"Windowed dataset: {n} samples, train={split} test={n - split}, "
                    f"input_shape={bundle.input_shape}, output_size={bundle.output_size}")
        return bundle
