import numpy as np
import pytest

from components.errors import DataInsufficientError
from components.feature_cube import FEATURE_KEYS, FeatureCubeBuilder
from components.types import Row


def test_cube_shape_and_lookup(random_walk_rows):
    raw, normalized = FeatureCubeBuilder.build(random_walk_rows)

    assert raw.shape == (2, len(FEATURE_KEYS), 60)
    assert normalized.shape == raw.shape
    assert raw.symbols == ("AAA", "BBB")
    assert raw.features == FEATURE_KEYS
    assert list(raw.dates) == sorted(raw.dates)
    assert normalized.normalized and not raw.normalized
    aaa_closes = [r.close for r in random_walk_rows if r.symbol == "AAA"]
    np.testing.assert_allclose(raw.series("AAA", "Close"), aaa_closes)


def test_constant_close_gives_zero_derived_features(make_rows):
    raw, normalized = FeatureCubeBuilder.build(make_rows({"AAA": [10, 10, 10, 10]}))

    for feature in ("Return", "Momentum3", "Volatility5"):
        assert np.all(raw.series("AAA", feature) == 0.0)
        assert np.all(normalized.series("AAA", feature) == 0.0)
    assert np.all(normalized.series("AAA", "Close") == 0.0)


def test_single_gap_is_forward_filled(make_rows):
    raw, _ = FeatureCubeBuilder.build(make_rows({"AAA": [1, 2, 3], "BBB": [1, np.nan, 3]}))

    np.testing.assert_array_equal(raw.series("BBB", "Close"), [1.0, 1.0, 3.0])


def test_leading_gap_is_back_filled(make_rows):
    raw, _ = FeatureCubeBuilder.build(make_rows({"AAA": [1, 2, 3, 4], "BBB": [np.nan, np.nan, 5, 6]}))

    np.testing.assert_array_equal(raw.series("BBB", "Close"), [5.0, 5.0, 5.0, 6.0])
    assert np.isfinite(raw.values).all()


def test_series_without_values_stays_missing():
    rows = [
        Row("2024-01-02", "AAA", 1.0, 1.0), Row("2024-01-03", "AAA", 2.0, 2.0),
        Row("2024-01-02", "BBB", np.nan, np.nan),
    ]
    raw, normalized = FeatureCubeBuilder.build(rows)

    assert np.isnan(raw.series("BBB", "Close")).all()
    assert np.isnan(normalized.series("BBB", "Close")).all()
    assert np.all(raw.series("BBB", "Return") == 0.0)


def test_derived_feature_values():
    closes = np.array([10.0, 11.0, 0.0, 12.0, 13.2, 14.0])

    ret = FeatureCubeBuilder.pct_change(closes, 1)
    mom = FeatureCubeBuilder.pct_change(closes, 3)
    vol = FeatureCubeBuilder.rolling_volatility(closes, 5)

    np.testing.assert_allclose(ret, [0.0, 0.1, -1.0, 0.0, 0.1, 14.0 / 13.2 - 1.0])
    np.testing.assert_allclose(mom, [0.0, 0.0, 0.0, 0.2, 0.2, 0.0])
    window = closes[1:6]
    assert np.all(vol[:4] == 0.0)
    assert vol[4] == pytest.approx(closes[:5].std() / closes[:5].mean())
    assert vol[5] == pytest.approx(window.std() / window.mean())


def test_normalization_ranges(random_walk_rows):
    _, normalized = FeatureCubeBuilder.build(random_walk_rows)

    for symbol in normalized.symbols:
        for feature in ("Open", "Close"):
            s = normalized.series(symbol, feature)
            assert s.min() == pytest.approx(0.0)
            assert s.max() == pytest.approx(1.0)
        for feature in ("Return", "Momentum3", "Volatility5"):
            s = normalized.series(symbol, feature)
            assert s.mean() == pytest.approx(0.0, abs=1e-9)
            assert s.std() == pytest.approx(1.0)


def test_normalization_is_per_symbol(make_rows):
    base = [1.0, 2.0, 3.0, 4.0, 5.0, 4.0, 3.0]
    _, small = FeatureCubeBuilder.build(make_rows({"AAA": base, "BBB": [x * 1000 for x in base]}))

    np.testing.assert_allclose(small.series("AAA", "Close"), small.series("BBB", "Close"))


def test_build_is_deterministic(random_walk_rows):
    raw_a, norm_a = FeatureCubeBuilder.build(random_walk_rows)
    raw_b, norm_b = FeatureCubeBuilder.build(random_walk_rows)

    np.testing.assert_array_equal(raw_a.values, raw_b.values)
    np.testing.assert_array_equal(norm_a.values, norm_b.values)


def test_empty_universe_is_rejected():
    with pytest.raises(DataInsufficientError):
        FeatureCubeBuilder.build([])
