from __future__ import annotations
from pathlib import Path
from typing import List, Union
import csv
import io
import pandas as pd
import requests

from components.errors import InputValidationError
from components.schema import Schema
from components.types import Row
from utils.datetime_utils import normalize_date_string
from utils.logger import Logger

class RowIngestor:
    """
    Parses a price CSV (text, file path or http(s) URL) into typed rows.
    Rows whose field count differs from the header are skipped, as are rows without a symbol.
    """
    def __init__(self, schema_: Schema = Schema(), timeout_: float = 30.0):
        self.schema = schema_
        self.timeout = timeout_

    def parse_text(self, csv_text_: str) -> List[Row]:
        return self._parse(csv_text_, "<text>")

    def load(self, source_: Union[str, Path]) -> List[Row]:
        source = str(source_)
        if source.startswith(("http://", "https://")):
            Logger.info(f"Downloading price rows from {source}")
            try:
                r = requests.get(source, timeout=self.timeout)
                r.raise_for_status()
            except requests.RequestException as e:
                Logger.error(f"Could not download {source}: {e}")
                raise InputValidationError(f"Could not download CSV from {source}: {e}") from e
            return self._parse(r.text, source)
        path = Path(source).expanduser()
        if not path.is_file():
            Logger.error(f"CSV file not found: {path}")
            raise InputValidationError(f"CSV file not found: {path}")
        Logger.info(f"Loading price rows from {path}")
        return self._parse(path.read_text(encoding="utf-8-sig"), str(path))

    def _split_records(self, csv_text_: str, label_: str) -> pd.DataFrame:
        """Header plus the records whose field count matches it, as a string frame."""
        records = [rec for rec in csv.reader(io.StringIO(csv_text_)) if any(f.strip() for f in rec)]
        if len(records) <= 1:
            Logger.error(f"CSV {label_} is empty or header-only")
            raise InputValidationError("CSV file is empty.")
        header = [h.strip() for h in records[0]]
        body = [rec for rec in records[1:] if len(rec) == len(header)]
        if len(body) < len(records) - 1:
            Logger.warning(f"Skipped {len(records) - 1 - len(body)} rows of {label_} with a field count "
                           f"different from the header ({len(header)})")
        return pd.DataFrame(body, columns=header, dtype=str)

    def _parse(self, csv_text_: str, label_: str) -> List[Row]:
        df = self._split_records(csv_text_, label_)
        missing = [c for c in self.schema.required_columns if c not in df.columns]
        if missing:
            Logger.error(f"CSV {label_} is missing required columns: {missing}")
            raise InputValidationError(f"CSV is missing required columns: {', '.join(missing)}")
        n_raw = len(df)
        df = df[list(self.schema.required_columns)].apply(lambda s: s.str.strip())
        df = df[df[self.schema.price_symbol] != ""]
        rows: List[Row] = []
        opens = pd.to_numeric(df[self.schema.price_open], errors="coerce")
        closes = pd.to_numeric(df[self.schema.price_close], errors="coerce")
        for raw_date, symbol, open_, close in zip(df[self.schema.price_date], df[self.schema.price_symbol],
                                                  opens, closes):
            date = normalize_date_string(raw_date)
            if date is None:
                Logger.error(f"Invalid date encountered in {label_}: {raw_date!r}")
                raise InputValidationError(f"Invalid date encountered: {raw_date}")
            rows.append(Row(date=date, symbol=symbol, open=float(open_), close=float(close)))
        if not rows:
            raise InputValidationError("No valid data rows were parsed from the CSV.")
        rows.sort(key=lambda r: (r.date, r.symbol))
        Logger.info(f"Parsed {len(rows)} rows from {label_} ({n_raw - len(rows)} skipped)")
        return rows
