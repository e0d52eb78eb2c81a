from __future__ import annotations
from datetime import datetime
from pathlib import Path
from tqdm import tqdm
from typing import Any, Dict, List, Optional, Sequence, Tuple
import argparse
import json
import os
import random
import numpy as np
import torch

from components.callbacks import CancellationToken
from components.evaluation import EvaluationAnalyzer
from components.price_data_loader import PriceDataLoader
from components.schema import Schema
from components.settings import DatasetSettings, ModelSettings, TrainSettings
from components.train import SequenceModel, TorchBackend, TrainingHistory
from components.types import DatasetBundle, EvaluationReport
from utils.logger import Logger
from utils.pathlib_utils import ensure_dir

class Pipeline:
    """CSV -> feature cube -> windowed dataset -> GRU classifier -> evaluation, with JSON artifacts per run."""
    def __init__(self, argv_: Optional[Sequence[str]] = None):
        args, runtime = Pipeline.argparse(argv_)
        Logger.set_level(args.log_level)
        if args.seed is not None:
            random.seed(args.seed)
            TorchBackend.seed(args.seed)
            torch.backends.cudnn.deterministic = True
            torch.backends.cudnn.benchmark = False
            Logger.info(f"Set deterministic seeds to {args.seed}")
        out_root = ensure_dir(Path(os.path.expanduser(args.output_dir)) / runtime)
        out_logs = ensure_dir(out_root / "logs")
        Logger.setup_file(out_logs)
        with open(out_root / "run_args.json", 'w') as f:
            json.dump(vars(args), f, indent=4)
        self.out_root = out_root
        self.dataset_settings, self.model_settings, self.train_settings = Pipeline.settings_from_args(args)
        csv_source = args.csv_path
        if "://" not in csv_source:
            csv_source = str(Path(os.path.expanduser(csv_source)).resolve())
        self.loader = PriceDataLoader(self.dataset_settings, Schema())
        self.model: Optional[SequenceModel] = None
        self.history: Optional[TrainingHistory] = None
        self.report: Optional[EvaluationReport] = None
        try:
            self.run(csv_source, args, out_root)
        finally:
            if self.model is not None:
                self.model.dispose()
            self.loader.release_dataset()
            Logger.close_file()

    @staticmethod
    def settings_from_args(args_: argparse.Namespace) -> Tuple[DatasetSettings, ModelSettings, TrainSettings]:
        dataset_settings = DatasetSettings(
            sequence_length=args_.sequence_length,
            prediction_horizon=args_.prediction_horizon,
            train_split=args_.train_split,
        )
        model_settings = ModelSettings(
            gru_units=tuple(args_.gru_units),
            conv_filters=tuple(args_.conv_filters),
            conv_kernel_size=args_.conv_kernel_size,
            dense_units=tuple(args_.dense_units),
            bidirectional=args_.bidirectional,
            dropout_rate=args_.dropout_rate,
            recurrent_dropout=args_.recurrent_dropout,
            conv_dropout=args_.conv_dropout,
            learning_rate=args_.lr,
        )
        train_settings = TrainSettings(
            epochs=args_.epochs,
            batch_size=args_.batch_size,
            early_stopping_patience=args_.early_stopping_patience,
            reduce_lr_patience=args_.reduce_lr_patience,
            reduce_lr_factor=args_.reduce_lr_factor,
            min_learning_rate=args_.min_lr,
        )
        return dataset_settings, model_settings, train_settings

    def run(self, csv_source_: str, args_: argparse.Namespace, out_root_: Path) -> EvaluationReport:
        rows = self.loader.load_csv(csv_source_)
        Logger.info(f"Loaded {len(rows)} rows")
        bundle = self.loader.prepare_dataset()
        with open(out_root_ / "dataset_summary.json", 'w') as f:
            json.dump(bundle.summary(), f, indent=4)

        self.model = SequenceModel(bundle.input_shape, bundle.output_size, self.model_settings,
                                   TorchBackend(args_.device))
        self.model.build()
        if args_.load_path:
            self.model.load(Path(os.path.expanduser(args_.load_path)))
        self.history = self.train(self.model, bundle, self.train_settings)
        with open(out_root_ / "training_curve.json", 'w') as f:
            json.dump(self.history.as_curve(), f, indent=4)

        weights_path = self.model.save(ensure_dir(out_root_ / "saved_weights") / "model.pt")
        predictions = self.model.predict(bundle.x_test, self.train_settings.batch_size)
        self.report = EvaluationAnalyzer.analyze(predictions, bundle.y_test, bundle.symbols,
                                                 bundle.prediction_horizon, bundle.test_dates)
        eval_path = out_root_ / "evaluation.json"
        with open(eval_path, 'w') as f:
            json.dump(Pipeline.evaluation_payload(self.report, self.history, weights_path), f, indent=4)
        Logger.info(f"Wrote evaluation summary -> {eval_path}")
        for rank, (symbol, acc) in enumerate(self.report.ranked_accuracy(), start=1):
            Logger.info(f"#{rank:<3d} {symbol:<10s} accuracy={acc:.4f}")
        return self.report

    @staticmethod
    def train(model_: SequenceModel, bundle_: DatasetBundle, settings_: TrainSettings,
              cancel_token_: Optional[CancellationToken] = None) -> TrainingHistory:
        """Drive the epoch generator with a progress bar; Ctrl-C stops training at its next cancellation checkpoint."""
        token = cancel_token_ if cancel_token_ is not None else CancellationToken()
        progress = tqdm(total=settings_.epochs, desc="Training", unit="epoch")
        epochs = model_.iter_train(bundle_.x_train, bundle_.y_train, bundle_.x_test, bundle_.y_test,
                                   settings_, cancel_token_=token)
        try:
            for logs in epochs:
                postfix: Dict[str, Any] = {"loss": f"{logs.loss:.4f}", "acc": f"{logs.binary_accuracy:.3f}",
                                           "lr": f"{logs.lr:.1e}"}
                if logs.val_loss is not None:
                    postfix["val_loss"] = f"{logs.val_loss:.4f}"
                progress.set_postfix(postfix)
                progress.update(1)
        except KeyboardInterrupt:
            token.cancel("interrupted from keyboard")
            for _ in epochs: # let the loop reach its next checkpoint
                pass
        finally:
            progress.close()
        Logger.info(f"Training state={model_.state.value}, epochs run={model_.history.epochs_run}, "
                    f"best epoch={model_.history.best_epoch}")
        return model_.history

    @staticmethod
    def evaluation_payload(report_: EvaluationReport, history_: TrainingHistory,
                           weights_path_: Path) -> Dict[str, Any]:
        payload = report_.to_dict()
        payload["training"] = {
            "final_state": history_.final_state.value,
            "epochs_run": history_.epochs_run,
            "best_epoch": history_.best_epoch,
            "best_value": None if np.isnan(history_.best_value) else history_.best_value,
            "stopped_epoch": history_.stopped_epoch,
            "final_lr": history_.epochs[-1].lr if history_.epochs else None,
        }
        payload["saved_weights_path"] = str(weights_path_)
        return payload

    @staticmethod
    def argparse(argv_: Optional[Sequence[str]] = None) -> Tuple[argparse.Namespace, str]:
        runtime = datetime.now().strftime("%Y%m%d-%H%M%S")
        ap = argparse.ArgumentParser(description="Multi-symbol GRU next-days direction classifier")
        ap.add_argument(
            "--csv-path", required=True,
            help="Price CSV path or http(s) URL with Date, Symbol, Open, Close columns")
        ap.add_argument(
            "--output-dir", default="output",
            help="Root directory; each run writes into <output-dir>/<runtime>/")
        ap.add_argument(
            "--sequence-length", type=int, default=12, help="Window length in trading days")
        ap.add_argument(
            "--prediction-horizon", type=int, default=3, help="Number of future days labelled per symbol")
        ap.add_argument(
            "--train-split", type=float, default=0.8, help="Fraction of samples kept for training")
        ap.add_argument(
            "--gru-units", type=int, nargs="+", default=[96, 64], help="Hidden size of each stacked GRU layer")
        ap.add_argument(
            "--conv-filters", type=int, nargs="*", default=[], help="Causal Conv1d filters ahead of the GRUs")
        ap.add_argument(
            "--conv-kernel-size", type=int, default=3)
        ap.add_argument(
            "--dense-units", type=int, nargs="*", default=[], help="Dense layers between the GRUs and the output")
        ap.add_argument(
            "--bidirectional", action="store_true", help="Run every GRU layer in both directions")
        ap.add_argument(
            "--dropout-rate", type=float, default=0.2)
        ap.add_argument(
            "--recurrent-dropout", type=float, default=0.1, help="Dropout between stacked GRU layers")
        ap.add_argument(
            "--conv-dropout", type=float, default=0.1)
        ap.add_argument(
            "--lr", type=float, default=1e-3, help="Learning rate for Adam optimizer")
        ap.add_argument(
            "--epochs", type=int, default=60)
        ap.add_argument(
            "--batch-size", type=int, default=32)
        ap.add_argument(
            "--early-stopping-patience", type=int, default=8)
        ap.add_argument(
            "--reduce-lr-patience", type=int, default=3)
        ap.add_argument(
            "--reduce-lr-factor", type=float, default=0.5)
        ap.add_argument(
            "--min-lr", type=float, default=1e-5, help="Floor for plateau learning-rate reductions")
        ap.add_argument(
            "--load-path", default=None,
            help="Weights file written by a previous run to initialize training from")
        ap.add_argument(
            "--device", default="auto", help="'auto', 'cpu', 'cuda' or any torch device string")
        ap.add_argument(
            "--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
        ap.add_argument(
            "--seed", type=int, default=1254,
            help="Preset seed for deterministic training (sets Python, NumPy, and PyTorch seeds)")
        return ap.parse_args(argv_), runtime

def main(argv_: Optional[List[str]] = None):
    Pipeline(argv_)

if __name__ == "__main__":
    main()
