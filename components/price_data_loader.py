from __future__ import annotations
from pathlib import Path
from typing import List, Optional, Tuple, Union

from components.errors import InputValidationError
from components.feature_cube import FEATURE_KEYS, FeatureCube, FeatureCubeBuilder
from components.row_ingestor import RowIngestor
from components.schema import Schema
from components.settings import DatasetSettings
from components.types import DatasetBundle, Row
from components.windowed_dataset import WindowedDatasetBuilder
from utils.logger import Logger

class PriceDataLoader:
    """
    Holds the current row set and everything derived from it.
    Attributes:
        settings (DatasetSettings): window length, horizon and train fraction.
        rows (List[Row]): replaced wholesale by every load.
        symbols / dates: universe of the last feature cube build.
        feature_cube / normalized_cube: rebuilt fully by every prepare_dataset() call.
        bundle (DatasetBundle): the dataset currently owning the sample buffers.
    """
    def __init__(self, settings_: DatasetSettings = DatasetSettings(), schema_: Schema = Schema()):
        self.settings = settings_
        self.ingestor = RowIngestor(schema_)
        self.rows: List[Row] = []
        self.symbols: Tuple[str, ...] = ()
        self.dates: Tuple[str, ...] = ()
        self.features_per_symbol: Tuple[str, ...] = FEATURE_KEYS
        self.feature_cube: Optional[FeatureCube] = None
        self.normalized_cube: Optional[FeatureCube] = None
        self.bundle: Optional[DatasetBundle] = None

    def reset(self) -> None:
        self.release_dataset()
        self.rows = []
        self.symbols = ()
        self.dates = ()
        self.feature_cube = None
        self.normalized_cube = None

    def release_dataset(self) -> None:
        if self.bundle is not None:
            self.bundle.release()
            self.bundle = None

    def load_csv(self, source_: Union[str, Path]) -> List[Row]:
        """Replace the row set with the rows of a CSV file path or URL."""
        rows = self.ingestor.load(source_)
        self.reset()
        self.rows = rows
        return self.rows

    def parse_csv(self, csv_text_: str) -> List[Row]:
        rows = self.ingestor.parse_text(csv_text_)
        self.reset()
        self.rows = rows
        return self.rows

    def set_rows(self, rows_: List[Row]) -> None:
        self.reset()
        self.rows = sorted(rows_, key=lambda r: (r.date, r.symbol))

    def build_feature_cube(self) -> Tuple[FeatureCube, FeatureCube]:
        if not self.rows:
            raise InputValidationError("No rows loaded; load a CSV before building features.")
        self.feature_cube, self.normalized_cube = FeatureCubeBuilder.build(self.rows)
        self.symbols = self.feature_cube.symbols
        self.dates = self.feature_cube.dates
        return self.feature_cube, self.normalized_cube

    def create_windowed_dataset(self) -> DatasetBundle:
        if self.feature_cube is None or self.normalized_cube is None:
            self.build_feature_cube()
        return WindowedDatasetBuilder.build(self.feature_cube, self.normalized_cube, self.settings, len(self.rows))

    def prepare_dataset(self) -> DatasetBundle:
        """Rebuild the cubes and the windowed dataset; the previous bundle is released first."""
        self.release_dataset()
        self.build_feature_cube()
        self.bundle = self.create_windowed_dataset()
        Logger.info(f"Dataset ready: {len(self.symbols)} symbols x {self.settings.sequence_length}-day windows, "
                    f"{len(self.features_per_symbol)} features per symbol")
        return self.bundle
