from __future__ import annotations

import numpy as np
import pytest

from growthtools.fitting.piecewise_models import (
    SHAPE_SPECS,
    flr,
    get_shape_spec,
    lag,
    lagsat,
    local_slopes,
    sat,
    sqfunc,
)
from growthtools.fitting.types import FitControl


def test_sqfunc_is_half_abs_slope_far_from_corner():
    z = np.array([-5.0, -1.0, 1.0, 5.0])
    np.testing.assert_allclose(sqfunc(z, 2.0, 1e-10), np.abs(z), atol=1e-8)
    # smooth at the corner itself
    assert sqfunc(0.0, 1.0, 1e-4) == pytest.approx(0.01)


def test_lag_converges_to_flat_then_linear():
    x_flat = np.array([0.0, 1.0, 2.0, 3.0])
    x_rise = np.array([5.0, 6.0, 8.0])
    np.testing.assert_allclose(lag(x_flat, 1.0, 0.5, 4.0, s=1e-10), 1.0, atol=1e-8)
    np.testing.assert_allclose(lag(x_rise, 1.0, 0.5, 4.0, s=1e-10), 1.0 + 0.5 * (x_rise - 4.0), atol=1e-8)


def test_sat_flr_lagsat_piecewise_limits():
    x = np.array([1.0, 2.0, 3.0, 7.0, 9.0])
    np.testing.assert_allclose(sat(x, 0.5, 1.0, 5.0, s=1e-12), [1.5, 2.5, 3.5, 5.5, 5.5], atol=1e-8)
    np.testing.assert_allclose(flr(x, 6.0, -1.0, 5.0, s=1e-12), [5.0, 4.0, 3.0, 1.0, 1.0], atol=1e-8)
    np.testing.assert_allclose(
        lagsat(x, 1.0, 2.0, 2.5, 8.0, s=1e-12), [1.0, 1.0, 2.0, 10.0, 12.0], atol=1e-8
    )


@pytest.mark.parametrize("shape", ["lag", "sat", "flr", "lagsat"])
def test_error_shrinks_as_smoothness_goes_to_zero(shape):
    x = np.linspace(0.0, 10.0, 41)
    params = {"a": 1.0, "b": -0.7 if shape == "flr" else 0.7, "B1": 3.1, "B2": 7.3}
    spec = get_shape_spec(shape)

    sharp = spec.predict(x, params, FitControl(s=1e-14))
    errors = [
        np.max(np.abs(spec.predict(x, params, FitControl(s=s)) - sharp))
        for s in (1e-2, 1e-4, 1e-6)
    ]
    assert errors[0] > errors[1] > errors[2]
    assert errors[2] < 1e-2


def test_registry_bounds_constrain_slope_sign():
    control = FitControl()
    lower, upper = SHAPE_SPECS["lag"].bounds(control)
    assert lower[SHAPE_SPECS["lag"].param_names.index("b")] == control.slope_lower
    assert np.all(np.isinf(upper))

    lower, upper = SHAPE_SPECS["flr"].bounds(control)
    assert upper[SHAPE_SPECS["flr"].param_names.index("b")] == control.floor_slope_upper
    assert np.all(np.isinf(lower))

    lower, upper = SHAPE_SPECS["linear"].bounds(control)
    assert np.all(np.isinf(lower)) and np.all(np.isinf(upper))


def test_local_slopes_three_point_windows():
    x = np.array([0.0, 1.0, 2.0, 3.0])
    y = np.array([0.0, 1.0, 4.0, 9.0])
    np.testing.assert_allclose(local_slopes(x, y), [2.0, 4.0])


def test_local_slopes_skip_windows_without_time_spread():
    x = np.array([2.0, 2.0, 2.0, 3.0])
    y = np.array([1.0, 2.0, 3.0, 4.0])
    np.testing.assert_allclose(local_slopes(x, y), [1.5])
    assert local_slopes(x[:2], y[:2]).size == 0


def test_start_values_follow_data_range():
    x = np.arange(10.0)
    y = np.array([1, 1.1, 0.9, 1, 2, 3, 4, 5, 5.2, 4.7])
    control = FitControl()

    lag_spec = SHAPE_SPECS["lag"]
    first, fallback = (dict(zip(lag_spec.param_names, lag_spec.start_vector(s, x, y, control)))
                       for s in lag_spec.starts)
    assert first == {"a": 0.9, "b": 1.0, "B1": 2.25}
    assert fallback["B1"] == control.fallback_breakpoint

    lagsat_spec = SHAPE_SPECS["lagsat"]
    start = dict(zip(lagsat_spec.param_names, lagsat_spec.start_vector(lagsat_spec.starts[0], x, y, control)))
    assert start["B1"] == pytest.approx(2.25)
    assert start["B2"] == pytest.approx(6.75)
    assert start["a"] == pytest.approx(1.0)


def test_unknown_shape_rejected():
    with pytest.raises(ValueError):
        get_shape_spec("logistic")


def test_non_positive_smoothness_rejected():
    with pytest.raises(ValueError):
        FitControl(s=0.0)
