import math

import pytest
import torch

from components.callbacks import CancellationToken, EarlyStopping, LearningRateControl, ReduceLROnPlateau, resolve_mode


def _lr_control(lr=1e-3):
    optimizer = torch.optim.SGD([torch.nn.Parameter(torch.zeros(1))], lr=lr)
    return LearningRateControl(optimizer)


def test_plateau_halves_once_when_wait_reaches_patience():
    control = _lr_control(1e-3)
    plateau = ReduceLROnPlateau(control, patience_=2, factor_=0.5, min_lr_=1e-5)

    assert plateau.on_epoch_end(1.0) is None  # first value becomes the best
    assert plateau.on_epoch_end(1.0) is None
    assert plateau.wait == 1
    assert plateau.on_epoch_end(1.0) == pytest.approx(5e-4)
    assert plateau.wait == 0
    assert control.get() == pytest.approx(5e-4)
    assert plateau.on_epoch_end(1.0) is None
    assert control.get() == pytest.approx(5e-4)


def test_plateau_never_goes_below_min_lr():
    control = _lr_control(1e-3)
    plateau = ReduceLROnPlateau(control, patience_=2, factor_=0.5, min_lr_=1e-5)

    reductions = [plateau.on_epoch_end(1.0) for _ in range(40)]

    assert control.get() == pytest.approx(1e-5)
    assert [r for r in reductions if r is not None][-1] == pytest.approx(1e-5)
    assert all(r is None for r in reductions[-6:])


def test_plateau_resets_on_improvement():
    control = _lr_control(1e-3)
    plateau = ReduceLROnPlateau(control, patience_=2, factor_=0.5, min_lr_=1e-5, min_delta_=0.01)

    plateau.on_epoch_end(1.0)
    plateau.on_epoch_end(1.0)
    plateau.on_epoch_end(0.5)
    assert plateau.wait == 0
    assert plateau.best == 0.5
    plateau.on_epoch_end(0.495)  # below min_delta, not an improvement
    assert plateau.wait == 1
    assert control.get() == pytest.approx(1e-3)


def test_plateau_ignores_non_finite_metrics():
    plateau = ReduceLROnPlateau(_lr_control(), patience_=3, factor_=0.5, min_lr_=1e-5)

    plateau.on_epoch_end(float("nan"))

    assert plateau.wait == 1
    assert math.isinf(plateau.best)


def test_accuracy_metrics_are_maximized():
    assert resolve_mode("val_binary_accuracy") == "max"
    assert resolve_mode("val_loss") == "min"
    plateau = ReduceLROnPlateau(_lr_control(), patience_=1, factor_=0.5, min_lr_=1e-5, monitor_="binary_accuracy")
    assert plateau.on_epoch_end(0.6) is None
    assert plateau.on_epoch_end(0.7) is None
    assert plateau.on_epoch_end(0.65) == pytest.approx(5e-4)


def test_early_stopping_after_patience():
    early = EarlyStopping(patience_=3, min_delta_=1e-4)

    stops = [early.on_epoch_end(ep, m) for ep, m in enumerate([1.0, 0.8, 0.9, 0.85, 0.81], start=1)]

    assert stops == [False, False, False, False, True]
    assert early.best_epoch == 2
    assert early.stopped_epoch == 5


def test_cancellation_token():
    token = CancellationToken()
    assert not token.cancelled

    token.cancel("user")

    assert token.cancelled
    assert token.reason == "user"


def test_invalid_factor():
    with pytest.raises(ValueError):
        ReduceLROnPlateau(_lr_control(), patience_=1, factor_=1.5, min_lr_=0.0)
