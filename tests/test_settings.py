import pytest

from components.errors import ConfigurationError
from components.settings import MONITORED_METRICS, DatasetSettings, TrainSettings


@pytest.mark.parametrize("monitor", MONITORED_METRICS)
def test_known_monitors_are_accepted(monitor):
    assert TrainSettings(monitor=monitor).monitor == monitor


@pytest.mark.parametrize("monitor", ["val_accuracy", "accuracy", "lr", ""])
def test_unknown_monitor_is_rejected(monitor):
    with pytest.raises(ConfigurationError, match="monitor"):
        TrainSettings(monitor=monitor)


@pytest.mark.parametrize("kwargs", [
    {"epochs": 0}, {"batch_size": 0}, {"early_stopping_patience": 0},
    {"reduce_lr_factor": 1.0}, {"min_learning_rate": -1.0}, {"min_delta": -0.1},
])
def test_bad_train_settings(kwargs):
    with pytest.raises(ConfigurationError):
        TrainSettings(**kwargs)


@pytest.mark.parametrize("kwargs", [{"sequence_length": 0}, {"prediction_horizon": 0}, {"train_split": 1.0}])
def test_bad_dataset_settings(kwargs):
    with pytest.raises(ConfigurationError):
        DatasetSettings(**kwargs)
