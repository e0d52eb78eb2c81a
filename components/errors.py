class StockGruError(Exception):
    """Base class for every error raised by the dataset and model components."""

class InputValidationError(StockGruError):
    """Missing required columns, unparseable dates or an empty row set."""

class InsufficientDataError(StockGruError):
    """Not enough data to build a usable dataset."""

class DataInsufficientError(InsufficientDataError):
    """The feature cube universe has zero dates or zero symbols."""

class InsufficientSamplesError(InsufficientDataError):
    """Windowing produced fewer samples than a train/test split needs."""

class ConfigurationError(StockGruError, ValueError):
    """Invalid dataset, model or training settings."""

class ModelNotBuiltError(StockGruError, RuntimeError):
    """train/predict/evaluate was called before build()."""
