import numpy as np
import pytest

from components.errors import InsufficientSamplesError
from components.feature_cube import FEATURE_KEYS, FeatureCubeBuilder
from components.settings import DatasetSettings
from components.windowed_dataset import SequenceDataset, WindowedDatasetBuilder


@pytest.fixture
def ten_day_rows(make_rows):
    return make_rows({
        "AAA": [10, 11, 12, 11, 13, 14, 13, 15, 16, 15],
        "BBB": [20, 19, 21, 22, 21, 23, 22, 24, 23, 25],
    })


def test_two_symbols_ten_days_gives_six_windows(ten_day_rows):
    raw, normalized = FeatureCubeBuilder.build(ten_day_rows)
    settings = DatasetSettings(sequence_length=3, prediction_horizon=2, train_split=0.5)

    sequences, labels, anchors = WindowedDatasetBuilder.build_windows(raw, normalized, settings)

    assert len(anchors) == 10 - 3 - 2 + 1
    assert anchors[0] == 2 and anchors[-1] == 7
    assert sequences.shape == (6, 3, 2 * len(FEATURE_KEYS))
    assert labels.shape == (6, 2 * 2)
    assert sequences.dtype == np.float32 and labels.dtype == np.float32


def test_sequence_layout_is_symbol_major(ten_day_rows):
    raw, normalized = FeatureCubeBuilder.build(ten_day_rows)
    settings = DatasetSettings(sequence_length=3, prediction_horizon=2)

    sequences, _, anchors = WindowedDatasetBuilder.build_windows(raw, normalized, settings)

    f = len(FEATURE_KEYS)
    first = anchors[0]
    for step in range(3):
        t = first - 2 + step
        np.testing.assert_allclose(sequences[0, step, :f], normalized.values[0, :, t], rtol=1e-6, atol=1e-6)
        np.testing.assert_allclose(sequences[0, step, f:], normalized.values[1, :, t], rtol=1e-6, atol=1e-6)


def test_labels_compare_raw_future_close_to_anchor(ten_day_rows):
    raw, normalized = FeatureCubeBuilder.build(ten_day_rows)
    settings = DatasetSettings(sequence_length=3, prediction_horizon=2)

    _, labels, _ = WindowedDatasetBuilder.build_windows(raw, normalized, settings)

    # anchor index 2: AAA 12 -> (11, 13), BBB 21 -> (22, 21)
    np.testing.assert_array_equal(labels[0], [0, 1, 1, 0])


def test_window_count_without_gaps(make_rows):
    rows = make_rows({"AAA": np.linspace(1, 30, 30), "BBB": np.linspace(30, 1, 30)})
    raw, normalized = FeatureCubeBuilder.build(rows)
    for L, H in [(1, 1), (5, 3), (12, 3), (20, 10)]:
        settings = DatasetSettings(sequence_length=L, prediction_horizon=H)
        _, _, anchors = WindowedDatasetBuilder.build_windows(raw, normalized, settings)
        assert len(anchors) == 30 - L - H + 1


def test_windows_touching_a_missing_series_are_rejected(make_rows):
    rows = make_rows({"AAA": list(range(1, 11))})
    raw, normalized = FeatureCubeBuilder.build(rows)
    values = raw.values.copy()
    norm_values = normalized.values.copy()
    values[0, raw.feature_index["Close"], 8] = np.nan  # future close of anchors 6 and 7
    norm_values[0, 0, 1] = np.nan  # inside the windows of anchors 2 and 3
    raw = type(raw)(values, raw.symbols, raw.features, raw.dates, raw.symbol_index, raw.feature_index)
    normalized = type(normalized)(norm_values, normalized.symbols, normalized.features, normalized.dates,
                                  normalized.symbol_index, normalized.feature_index, True)
    settings = DatasetSettings(sequence_length=3, prediction_horizon=2)

    _, labels, anchors = WindowedDatasetBuilder.build_windows(raw, normalized, settings)

    assert anchors.tolist() == [4, 5]
    assert np.isin(labels, [0.0, 1.0]).all()


@pytest.mark.parametrize("n, p, expected", [(10, 0.8, 8), (2, 0.1, 1), (2, 0.99, 1), (5, 0.5, 2), (100, 0.999, 99)])
def test_split_index_is_clamped(n, p, expected):
    assert WindowedDatasetBuilder.split_index(n, p) == expected


def test_build_splits_chronologically(random_walk_rows):
    raw, normalized = FeatureCubeBuilder.build(random_walk_rows)
    settings = DatasetSettings(sequence_length=12, prediction_horizon=3, train_split=0.8)

    bundle = WindowedDatasetBuilder.build(raw, normalized, settings, len(random_walk_rows))

    n = 60 - 12 - 3 + 1
    assert bundle.num_samples == n
    assert bundle.split_index == int(n * 0.8)
    assert len(bundle.x_train) + len(bundle.x_test) == n
    assert len(bundle.y_train) == bundle.split_index
    assert max(bundle.train_dates) <= min(bundle.test_dates)
    assert bundle.sample_dates == sorted(bundle.sample_dates)
    assert bundle.input_shape == (12, 2 * len(FEATURE_KEYS))
    assert bundle.output_size == 2 * 3
    summary = bundle.summary()
    assert summary["training_samples"] + summary["test_samples"] == n
    assert summary["total_rows"] == 120
    assert summary["timeline_days"] == 60


def test_build_is_deterministic(random_walk_rows):
    raw, normalized = FeatureCubeBuilder.build(random_walk_rows)
    settings = DatasetSettings()

    a = WindowedDatasetBuilder.build(raw, normalized, settings)
    b = WindowedDatasetBuilder.build(*FeatureCubeBuilder.build(random_walk_rows), settings)

    np.testing.assert_array_equal(a.x_train, b.x_train)
    np.testing.assert_array_equal(a.y_test, b.y_test)


def test_too_few_samples(make_rows):
    rows = make_rows({"AAA": [1, 2, 3, 4, 5]})
    raw, normalized = FeatureCubeBuilder.build(rows)

    with pytest.raises(InsufficientSamplesError):
        WindowedDatasetBuilder.build(raw, normalized, DatasetSettings(sequence_length=3, prediction_horizon=2))


def test_release_drops_buffers(random_walk_rows):
    bundle = WindowedDatasetBuilder.build(*FeatureCubeBuilder.build(random_walk_rows), DatasetSettings())

    bundle.release()

    assert bundle.released
    assert bundle.x_train is None and bundle.y_test is None


def test_sequence_dataset_keeps_order():
    x = np.arange(24, dtype=np.float32).reshape(4, 3, 2)
    y = np.arange(8, dtype=np.float32).reshape(4, 2)
    ds = SequenceDataset(x, y)

    assert len(ds) == 4
    xb, yb = ds[2]
    assert xb.tolist() == x[2].tolist()
    assert yb.tolist() == y[2].tolist()
